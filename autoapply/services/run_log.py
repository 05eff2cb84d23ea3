import json
import re
import secrets
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from pydantic import BaseModel, Field

from autoapply.core.logging import get_logger

logger = get_logger(__name__)

SAFE_FILENAME = re.compile(r"[^a-zA-Z0-9_.-]+")

MANIFEST_NAME = "manifest.json"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_run_id(now: datetime | None = None) -> str:
    stamp = (now or utcnow()).strftime("%Y%m%d%H%M%S%f")[:-3]
    return f"{stamp}_{secrets.token_hex(3)}"


def safe_filename(value: str) -> str:
    return SAFE_FILENAME.sub("-", value or "").strip("-") or "unknown"


class RunEvent(BaseModel):
    model_config = {"frozen": True}

    run_id: str
    listing_id: str
    apply_type: str
    step: str
    status: str | None = None
    reason: str | None = None
    field: str | None = None
    hint: str | None = None
    title: str | None = None
    company: str | None = None
    message: str | None = None
    submit_policy: str | None = None
    submit_policy_reason: str | None = None
    external_url: str | None = None
    external_ats: str | None = None
    screenshot_path: str | None = None
    data: dict[str, Any] | None = None
    timestamp: datetime = Field(default_factory=utcnow)


class RunManifest(BaseModel):
    run_id: str
    started_at: datetime
    board: str
    dry_run: bool
    max_applications: int


class RunLog:
    """Append-only JSON-lines event stream plus screenshot naming for one run."""

    def __init__(self, run_dir: Path, run_id: str) -> None:
        self.run_dir = run_dir
        self.run_id = run_id
        self.path = run_dir / f"run-{run_id}.jsonl"
        self._lock = threading.Lock()
        self.run_dir.mkdir(parents=True, exist_ok=True)

    def log_event(self, event: RunEvent) -> RunEvent:
        line = event.model_dump_json(exclude_none=True)
        with self._lock:
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
                handle.flush()
        return event

    def event(self, listing_id: str, apply_type: str, step: str, **fields: Any) -> RunEvent:
        return self.log_event(
            RunEvent(run_id=self.run_id, listing_id=listing_id, apply_type=apply_type, step=step, **fields)
        )

    def screenshot_path(self, listing_id: str, step: str) -> Path:
        return self.run_dir / f"apply_{safe_filename(listing_id)}_{safe_filename(step)}.png"

    def write_manifest(self, manifest: RunManifest) -> Path:
        path = self.run_dir / MANIFEST_NAME
        path.write_text(manifest.model_dump_json(indent=2), encoding="utf-8")
        return path


def read_manifest(run_dir: Path) -> RunManifest | None:
    path = run_dir / MANIFEST_NAME
    if not path.exists():
        return None
    return RunManifest.model_validate_json(path.read_text(encoding="utf-8"))


def find_event_log(run_dir: Path) -> Path | None:
    logs = sorted(run_dir.glob("run-*.jsonl"))
    return logs[0] if logs else None


def read_events(path: Path) -> list[RunEvent]:
    events: list[RunEvent] = []
    if not path.exists():
        return events
    with path.open("r", encoding="utf-8") as handle:
        for line_no, line in enumerate(handle, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                events.append(RunEvent.model_validate_json(line))
            except ValueError as exc:
                # A torn final line from an interrupted run is skipped, not fatal.
                logger.warning("Skipping unreadable audit line %s:%d: %s", path, line_no, exc)
    return events


class ListingHistory(BaseModel):
    listing_id: str
    apply_type: str = ""
    title: str | None = None
    company: str | None = None
    last_step: str = ""
    status: str | None = None
    reason: str | None = None
    submit_state: str | None = None
    submit_reason: str | None = None
    submit_policy: str | None = None
    submit_policy_reason: str | None = None
    screenshots: list[str] = Field(default_factory=list)
    events: list[RunEvent] = Field(default_factory=list)


def replay(events: Iterable[RunEvent]) -> dict[str, ListingHistory]:
    """Rebuild each listing's decision history by folding events in write order."""
    histories: dict[str, ListingHistory] = {}
    for event in events:
        history = histories.get(event.listing_id)
        if history is None:
            history = ListingHistory(listing_id=event.listing_id, apply_type=event.apply_type)
            histories[event.listing_id] = history
        history.events.append(event)
        history.last_step = event.step
        if event.title:
            history.title = event.title
        if event.company:
            history.company = event.company
        if event.screenshot_path:
            history.screenshots.append(event.screenshot_path)
        if event.step == "submit-detect":
            history.submit_state = event.status
            history.submit_reason = event.reason
        elif event.step == "submit-policy":
            history.submit_policy = event.status
            history.submit_policy_reason = event.reason
        elif event.step in {"result", "skip", "error"}:
            history.status = event.status
            history.reason = event.reason or event.message
    return histories


class RunSummaryView(BaseModel):
    run_id: str
    started_at: datetime | None = None
    board: str | None = None
    dry_run: bool | None = None
    attempts: int = 0
    skipped: int = 0
    errors: int = 0
    statuses: dict[str, int] = Field(default_factory=dict)


def summarize_run(run_dir: Path) -> RunSummaryView:
    manifest = read_manifest(run_dir)
    log_path = find_event_log(run_dir)
    events = read_events(log_path) if log_path else []
    summary = RunSummaryView(
        run_id=manifest.run_id if manifest else run_dir.name,
        started_at=manifest.started_at if manifest else None,
        board=manifest.board if manifest else None,
        dry_run=manifest.dry_run if manifest else None,
    )
    for event in events:
        if event.step == "attempt":
            summary.attempts += 1
        elif event.step == "skip":
            summary.skipped += 1
        elif event.step == "error":
            summary.errors += 1
    for history in replay(events).values():
        if history.status:
            summary.statuses[history.status] = summary.statuses.get(history.status, 0) + 1
    return summary


def list_runs(runs_dir: Path, *, limit: int = 20) -> list[RunSummaryView]:
    if not runs_dir.exists():
        return []
    run_dirs = sorted((path for path in runs_dir.iterdir() if path.is_dir()), reverse=True)
    return [summarize_run(path) for path in run_dirs[:limit]]


def run_details(run_dir: Path) -> dict[str, ListingHistory]:
    log_path = find_event_log(run_dir)
    return replay(read_events(log_path)) if log_path else {}
