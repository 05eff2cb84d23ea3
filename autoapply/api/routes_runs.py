from fastapi import APIRouter, Depends, HTTPException, status

from autoapply.api.deps import get_run_controller, require_api_key
from autoapply.api.schemas import ControlResponse, RunStatusResponse, StartRunRequest
from autoapply.services.listings import listing_from_url
from autoapply.services.runtime import RunController, Runtime

router = APIRouter(prefix="/runs", tags=["runs"], dependencies=[Depends(require_api_key)])


def _status(runtime: Runtime) -> RunStatusResponse:
    current = runtime.orchestrator.status()
    return RunStatusResponse(
        run_id=runtime.run_id,
        state=current.state,
        applied_count=current.applied_count,
        last_message=current.last_message,
        waiting_for_verification=runtime.verification.waiting,
    )


def _current(controller: RunController) -> Runtime:
    runtime = controller.runtime
    if runtime is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No run has been started")
    return runtime


@router.post("", response_model=RunStatusResponse, status_code=status.HTTP_202_ACCEPTED)
def start_run(payload: StartRunRequest, controller: RunController = Depends(get_run_controller)):
    listings = [listing_from_url(url) for url in payload.urls] or None
    board = payload.board
    if listings and board is None:
        board = listings[0].source
    try:
        runtime = controller.start(
            board=board,
            max_applications=payload.max_applications,
            dry_run=payload.dry_run,
            listings=listings,
        )
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _status(runtime)


@router.get("/current", response_model=RunStatusResponse)
def current_run(controller: RunController = Depends(get_run_controller)):
    return _status(_current(controller))


@router.post("/current/pause", response_model=ControlResponse)
def pause_run(controller: RunController = Depends(get_run_controller)):
    runtime = _current(controller)
    accepted = runtime.orchestrator.pause()
    return ControlResponse(accepted=accepted, status=_status(runtime))


@router.post("/current/resume", response_model=ControlResponse)
def resume_run(controller: RunController = Depends(get_run_controller)):
    runtime = _current(controller)
    accepted = runtime.orchestrator.resume()
    return ControlResponse(accepted=accepted, status=_status(runtime))


@router.post("/current/stop", response_model=ControlResponse)
def stop_run(controller: RunController = Depends(get_run_controller)):
    runtime = _current(controller)
    runtime.orchestrator.stop()
    return ControlResponse(accepted=True, status=_status(runtime))


@router.post("/current/verification", response_model=ControlResponse)
def release_verification(controller: RunController = Depends(get_run_controller)):
    runtime = _current(controller)
    accepted = runtime.verification.release()
    return ControlResponse(accepted=accepted, status=_status(runtime))
