from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from autoapply.core.config import Settings, get_settings
from autoapply.services.runtime import RunController


def require_api_key(
    x_api_key: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-API-Key header")
    if x_api_key != settings.local_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


@lru_cache(maxsize=1)
def get_run_controller() -> RunController:
    return RunController(get_settings())
