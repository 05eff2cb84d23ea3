from fastapi import APIRouter, Depends, HTTPException

from autoapply.api.deps import require_api_key
from autoapply.api.schemas import RunDetailResponse
from autoapply.core.config import Settings, get_settings
from autoapply.services.run_log import (
    ListingHistory,
    RunSummaryView,
    list_runs,
    run_details,
    safe_filename,
    summarize_run,
)

router = APIRouter(prefix="/runs", tags=["audit"], dependencies=[Depends(require_api_key)])


def _run_dir(settings: Settings, run_id: str):
    if safe_filename(run_id) != run_id:
        raise HTTPException(status_code=404, detail="Run not found")
    run_dir = settings.runs_dir / run_id
    if not run_dir.is_dir():
        raise HTTPException(status_code=404, detail="Run not found")
    return run_dir


@router.get("", response_model=list[RunSummaryView])
def list_run_summaries(limit: int = 20, settings: Settings = Depends(get_settings)):
    return list_runs(settings.runs_dir, limit=limit)


@router.get("/{run_id}", response_model=RunDetailResponse)
def get_run(run_id: str, settings: Settings = Depends(get_settings)):
    run_dir = _run_dir(settings, run_id)
    return RunDetailResponse(summary=summarize_run(run_dir), listings=list(run_details(run_dir).values()))


@router.get("/{run_id}/listings/{listing_id}", response_model=ListingHistory)
def get_listing_history(run_id: str, listing_id: str, settings: Settings = Depends(get_settings)):
    history = run_details(_run_dir(settings, run_id)).get(listing_id)
    if history is None:
        raise HTTPException(status_code=404, detail="Listing not found in run")
    return history
