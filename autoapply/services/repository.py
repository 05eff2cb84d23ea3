import json
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from autoapply.core.config import Settings
from autoapply.core.logging import get_logger, log_extra
from autoapply.db import crud
from autoapply.db.session import build_engine, build_session_factory, init_db, session_scope
from autoapply.services.listings import JobListing, normalize_url
from autoapply.services.results import ApplyResult

logger = get_logger(__name__)

JOBS_LEDGER = "jobs.json"
APPLIED_LEDGER = "applied_jobs.json"


class AppliedEntry(BaseModel):
    identity: str
    url: str
    listing_id: str
    status: str
    message: str = ""
    applied_at: datetime


class JobRepository(ABC):
    """Durable record of which listings were already attempted.

    ``has_applied`` accepts either a listing identity or an apply URL.
    Only attempted outcomes (submitted, dry-run) are recorded.
    """

    @abstractmethod
    def has_applied(self, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def mark_applied(self, listing: JobListing, result: ApplyResult) -> bool:
        raise NotImplementedError

    @abstractmethod
    def upsert(self, listing: JobListing) -> None:
        raise NotImplementedError

    @abstractmethod
    def clear(self, key: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_applied(self) -> list[AppliedEntry]:
        raise NotImplementedError

    def close(self) -> None:
        return None


def _entry_for(listing: JobListing, result: ApplyResult) -> AppliedEntry:
    return AppliedEntry(
        identity=listing.identity,
        url=listing.apply_url,
        listing_id=listing.id,
        status=result.status.value,
        message=result.message,
        applied_at=datetime.now(timezone.utc),
    )


def _matches(entry: AppliedEntry, key: str) -> bool:
    return entry.identity == key or normalize_url(entry.url) == normalize_url(key)


class InMemoryJobRepository(JobRepository):
    def __init__(self) -> None:
        self.listings: dict[str, JobListing] = {}
        self.applied: dict[str, AppliedEntry] = {}

    def has_applied(self, key: str) -> bool:
        return any(_matches(entry, key) for entry in self.applied.values())

    def mark_applied(self, listing: JobListing, result: ApplyResult) -> bool:
        if not result.attempted:
            return False
        self.applied[listing.identity] = _entry_for(listing, result)
        return True

    def upsert(self, listing: JobListing) -> None:
        self.listings[listing.identity] = listing

    def clear(self, key: str) -> bool:
        doomed = [identity for identity, entry in self.applied.items() if _matches(entry, key)]
        for identity in doomed:
            del self.applied[identity]
        return bool(doomed)

    def list_applied(self) -> list[AppliedEntry]:
        return list(self.applied.values())


def _write_json_atomic(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    os.replace(tmp_path, path)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Ledger file {path} is not valid JSON; fix or remove it before running") from exc


class FileJobRepository(JobRepository):
    """jobs.json keyed by listing identity plus an applied_jobs.json list."""

    def __init__(self, data_dir: Path) -> None:
        self.jobs_path = data_dir / JOBS_LEDGER
        self.applied_path = data_dir / APPLIED_LEDGER
        self._lock = threading.Lock()
        raw_jobs = _read_json(self.jobs_path, {})
        self._jobs: dict[str, dict[str, Any]] = raw_jobs if isinstance(raw_jobs, dict) else {}
        self._applied: dict[str, AppliedEntry] = {}
        for item in _read_json(self.applied_path, []):
            entry = AppliedEntry.model_validate(item)
            self._applied[entry.identity] = entry

    def has_applied(self, key: str) -> bool:
        with self._lock:
            return any(_matches(entry, key) for entry in self._applied.values())

    def mark_applied(self, listing: JobListing, result: ApplyResult) -> bool:
        if not result.attempted:
            return False
        with self._lock:
            self._applied[listing.identity] = _entry_for(listing, result)
            self._persist_applied()
        return True

    def upsert(self, listing: JobListing) -> None:
        with self._lock:
            self._jobs[listing.identity] = listing.model_dump(mode="json")
            _write_json_atomic(self.jobs_path, self._jobs)

    def upsert_many(self, listings: list[JobListing]) -> int:
        with self._lock:
            for listing in listings:
                self._jobs[listing.identity] = listing.model_dump(mode="json")
            _write_json_atomic(self.jobs_path, self._jobs)
        return len(listings)

    def listings(self) -> list[JobListing]:
        with self._lock:
            return [JobListing.model_validate(item) for item in self._jobs.values()]

    def clear(self, key: str) -> bool:
        with self._lock:
            doomed = [identity for identity, entry in self._applied.items() if _matches(entry, key)]
            for identity in doomed:
                del self._applied[identity]
            if doomed:
                self._persist_applied()
        return bool(doomed)

    def list_applied(self) -> list[AppliedEntry]:
        with self._lock:
            return list(self._applied.values())

    def _persist_applied(self) -> None:
        _write_json_atomic(
            self.applied_path,
            [entry.model_dump(mode="json") for entry in self._applied.values()],
        )


class SqlJobRepository(JobRepository):
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str) -> "SqlJobRepository":
        engine = build_engine(database_url)
        init_db(engine)
        return cls(build_session_factory(engine))

    def has_applied(self, key: str) -> bool:
        with session_scope(self._session_factory) as db:
            return crud.find_applied(db, key=key) is not None

    def mark_applied(self, listing: JobListing, result: ApplyResult) -> bool:
        if not result.attempted:
            return False
        with session_scope(self._session_factory) as db:
            crud.record_applied(db, listing=listing, result=result)
        return True

    def upsert(self, listing: JobListing) -> None:
        with session_scope(self._session_factory) as db:
            crud.upsert_listing(db, listing=listing)

    def clear(self, key: str) -> bool:
        with session_scope(self._session_factory) as db:
            return crud.clear_applied(db, key=key) > 0

    def list_applied(self) -> list[AppliedEntry]:
        with session_scope(self._session_factory) as db:
            return [
                AppliedEntry(
                    identity=row.identity,
                    url=row.url_key,
                    listing_id=row.listing_id,
                    status=row.status,
                    message=row.message or "",
                    applied_at=row.applied_at,
                )
                for row in crud.list_applied(db)
            ]


def build_job_repository(settings: Settings) -> JobRepository:
    backend = (settings.repository_backend or "file").strip().lower()
    if backend == "memory":
        return InMemoryJobRepository()
    if backend == "file":
        return FileJobRepository(settings.data_dir)
    if backend == "sql":
        return SqlJobRepository.from_url(settings.database_url)
    raise ValueError("Unsupported REPOSITORY_BACKEND. Supported values: file, sql, memory.")


class MissingFieldsLedger:
    """Append-only review queue of fields the profile could not answer."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def append(
        self,
        *,
        run_id: str,
        listing_id: str,
        apply_type: str,
        missing: list[dict[str, Any]],
    ) -> None:
        if not missing:
            return
        with self._lock:
            entries = _read_json(self.path, [])
            entries.append(
                {
                    "run_id": run_id,
                    "listing_id": listing_id,
                    "apply_type": apply_type,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "missing": missing,
                }
            )
            _write_json_atomic(self.path, entries)
        logger.info(
            "Recorded missing fields for review",
            extra=log_extra(run_id=run_id, listing_id=listing_id, count=len(missing)),
        )

    def entries(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(_read_json(self.path, []))
