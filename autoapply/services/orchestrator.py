import threading
from collections import Counter

from pydantic import BaseModel, Field

from autoapply.core.enums import ApplyStatus, RunState
from autoapply.core.logging import get_logger, log_extra
from autoapply.services.connectors import BoardConnector, ConnectorRegistry
from autoapply.services.listings import JobListing
from autoapply.services.repository import JobRepository
from autoapply.services.results import ApplyResult

logger = get_logger(__name__)


class RunOptions(BaseModel):
    board: str
    max_applications: int = Field(default=25, ge=0)


class RunStatus(BaseModel):
    state: RunState
    applied_count: int = 0
    last_message: str | None = None
    run_id: str | None = None


class RunSummary(BaseModel):
    run_id: str | None = None
    board: str
    state: RunState
    applied_count: int = 0
    already_applied: int = 0
    counts: dict[str, int] = Field(default_factory=dict)
    results: list[ApplyResult] = Field(default_factory=list)
    last_message: str | None = None


class Orchestrator:
    """idle -> running -> (paused <-> running) -> stopped.

    Listings are processed one at a time. ``pause``/``resume``/``stop`` may be
    called from another thread; they take effect at the next listing boundary.
    """

    def __init__(self, connectors: ConnectorRegistry, repository: JobRepository, *, run_id: str | None = None) -> None:
        self.connectors = connectors
        self.repository = repository
        self.run_id = run_id
        self._state = RunState.IDLE
        self._applied_count = 0
        self._last_message: str | None = None
        self._cond = threading.Condition()

    def status(self) -> RunStatus:
        with self._cond:
            return RunStatus(
                state=self._state,
                applied_count=self._applied_count,
                last_message=self._last_message,
                run_id=self.run_id,
            )

    def pause(self) -> bool:
        with self._cond:
            if self._state is not RunState.RUNNING:
                return False
            self._state = RunState.PAUSED
            self._cond.notify_all()
        logger.info("Run paused", extra=log_extra(run_id=self.run_id))
        return True

    def resume(self) -> bool:
        with self._cond:
            if self._state is not RunState.PAUSED:
                return False
            self._state = RunState.RUNNING
            self._cond.notify_all()
        logger.info("Run resumed", extra=log_extra(run_id=self.run_id))
        return True

    def stop(self) -> None:
        with self._cond:
            self._state = RunState.STOPPED
            self._cond.notify_all()
        logger.info("Run stopped", extra=log_extra(run_id=self.run_id))

    def _wait_while_paused(self) -> bool:
        with self._cond:
            while self._state is RunState.PAUSED:
                self._cond.wait()
            return self._state is RunState.RUNNING

    def _finish(self, message: str | None = None) -> None:
        with self._cond:
            if message is not None:
                self._last_message = message
            self._state = RunState.STOPPED
            self._cond.notify_all()

    def run(self, options: RunOptions) -> RunSummary:
        with self._cond:
            if self._state in (RunState.RUNNING, RunState.PAUSED):
                raise RuntimeError("A run is already in progress")
            connector = self.connectors.get(options.board)
            if connector is None:
                self._state = RunState.STOPPED
                self._applied_count = 0
                self._last_message = f"Unknown board: {options.board}"
                logger.error("%s", self._last_message, extra=log_extra(run_id=self.run_id))
                return RunSummary(
                    run_id=self.run_id,
                    board=options.board,
                    state=self._state,
                    last_message=self._last_message,
                )
            self._state = RunState.RUNNING
            self._applied_count = 0
            self._last_message = None

        summary = RunSummary(run_id=self.run_id, board=options.board, state=RunState.RUNNING)
        try:
            listings = connector.search()
        except Exception as exc:
            logger.exception("Listing source failed", extra=log_extra(run_id=self.run_id, board=options.board))
            self._finish(f"Listing source failed: {exc}")
            return self._close_summary(summary)

        logger.info(
            "Run started with %d listings",
            len(listings),
            extra=log_extra(run_id=self.run_id, board=options.board, max_applications=options.max_applications),
        )
        try:
            self._process(connector, listings, options, summary)
        except Exception as exc:
            logger.exception("Repository failed", extra=log_extra(run_id=self.run_id, board=options.board))
            self._finish(f"Repository failed: {exc}")
            return self._close_summary(summary)

        with self._cond:
            if self._state is RunState.RUNNING:
                self._state = RunState.STOPPED
        return self._close_summary(summary)

    def _process(
        self,
        connector: BoardConnector,
        listings: list[JobListing],
        options: RunOptions,
        summary: RunSummary,
    ) -> None:
        for listing in listings:
            if not self._wait_while_paused():
                break
            if self._applied_count >= options.max_applications:
                with self._cond:
                    self._last_message = "Reached max applications"
                break
            if self.repository.has_applied(listing.apply_url) or self.repository.has_applied(listing.identity):
                summary.already_applied += 1
                continue

            self.repository.upsert(listing)
            try:
                result = connector.apply(listing)
            except Exception as exc:
                logger.exception("Connector apply failed", extra=log_extra(run_id=self.run_id, listing_id=listing.id))
                result = ApplyResult(listing_id=listing.id, status=ApplyStatus.FAILED, message=str(exc))
            summary.results.append(result)
            self.repository.mark_applied(listing, result)

            with self._cond:
                if result.status is not ApplyStatus.SKIPPED:
                    self._applied_count += 1
                self._last_message = result.message
            logger.info(
                "Listing %s: %s",
                result.status.value,
                result.message,
                extra=log_extra(
                    run_id=self.run_id,
                    listing_id=listing.id,
                    title=listing.title,
                    company=listing.company,
                    status=result.status.value,
                ),
            )

    def _close_summary(self, summary: RunSummary) -> RunSummary:
        status = self.status()
        summary.state = status.state
        summary.applied_count = status.applied_count
        summary.last_message = status.last_message
        summary.counts = dict(Counter(result.status.value for result in summary.results))
        logger.info(
            "Run finished: %s",
            summary.counts,
            extra=log_extra(run_id=self.run_id, applied=summary.applied_count, already_applied=summary.already_applied),
        )
        return summary
