from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Autoapply Pipeline"
    environment: str = "dev"
    debug: bool = True

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    local_api_key: str = "change-me"

    data_dir: Path = Path("data")
    runs_dir: Path = Path("data/runs")
    profile_path: Path = Path("data/profile.yaml")

    # file | sql | memory
    repository_backend: str = "file"
    database_url: str = "sqlite:///data/autoapply.db"

    default_board: str = "greenhouse"
    max_applications_per_run: int = 25

    # Safety default: a real submit needs dry_run off AND allow_final_submit on.
    dry_run: bool = True
    allow_final_submit: bool = False

    browser_headless: bool = True
    browser_slow_mo_ms: int = 0
    browser_user_data_dir: Path | None = None
    keep_open: bool = False

    apply_target_timeout_ms: int = 8000
    form_ready_timeout_ms: int = 15000
    poll_interval_ms: int = 500
    page_settle_ms: int = 2000
    click_outcome_timeout_ms: int = 8000
    popup_settle_ms: int = 2000
    navigation_timeout_ms: int = 60000
    navigation_retries: int = 2
    form_max_steps: int = 3

    pause_on_verification: bool = False
    verification_wait_seconds: int = 300
    verification_poll_seconds: float = 2.0

    llm_provider: str = "none"
    llm_model: str = "gpt-4o-mini"
    llm_api_key: str = ""
    llm_base_url: str = "https://api.openai.com/v1"
    llm_temperature: float = 0.4
    llm_max_tokens: int = 400
    llm_timeout_seconds: int = 45
    llm_max_answers_per_run: int = 5

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def missing_fields_path(self) -> Path:
        return self.data_dir / "missing_fields.json"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
