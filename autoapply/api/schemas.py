from pydantic import BaseModel, Field

from autoapply.core.enums import RunState
from autoapply.services.run_log import ListingHistory, RunSummaryView


class StartRunRequest(BaseModel):
    board: str | None = None
    max_applications: int | None = Field(default=None, ge=0)
    dry_run: bool | None = None
    urls: list[str] = Field(default_factory=list)


class RunStatusResponse(BaseModel):
    run_id: str | None = None
    state: RunState
    applied_count: int = 0
    last_message: str | None = None
    waiting_for_verification: bool = False


class ControlResponse(BaseModel):
    accepted: bool
    status: RunStatusResponse


class RunDetailResponse(BaseModel):
    summary: RunSummaryView
    listings: list[ListingHistory]
