from pathlib import Path

import pytest

from autoapply.core.config import Settings
from autoapply.services.profile import CandidateProfile, Demographics, ResumeAsset
from autoapply.services.run_log import RunLog


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        data_dir=tmp_path / "data",
        runs_dir=tmp_path / "runs",
        profile_path=tmp_path / "data" / "profile.yaml",
        repository_backend="memory",
        page_settle_ms=0,
        apply_target_timeout_ms=1000,
        form_ready_timeout_ms=1000,
        poll_interval_ms=500,
        verification_wait_seconds=4,
        verification_poll_seconds=2.0,
        llm_provider="none",
    )


@pytest.fixture
def run_log(tmp_path: Path) -> RunLog:
    return RunLog(tmp_path / "runs" / "run-1", "run-1")


@pytest.fixture
def profile(tmp_path: Path) -> CandidateProfile:
    resume = tmp_path / "resume.pdf"
    resume.write_bytes(b"%PDF-1.4")
    return CandidateProfile(
        full_name="Alex Carter",
        email="alex@example.com",
        phone="+1 555 0100",
        location="Toronto, ON",
        work_authorization="Yes",
        sponsorship="No",
        linkedin="https://linkedin.com/in/alexcarter",
        github="https://github.com/alexcarter",
        demographics=Demographics(
            gender="Female",
            race_ethnicity="Asian",
            veteran_status="I am not a protected veteran",
            disability_status="Prefer not to answer",
        ),
        answers={"whyCompany": "I admire the team's focus on reliable tooling."},
        summary="Backend engineer focused on Python services.",
        skills=["python", "fastapi"],
        resumes=[ResumeAsset(label="main", path=resume, sha256="abc", is_default=True)],
    )
