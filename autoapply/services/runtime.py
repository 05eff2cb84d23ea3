import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from autoapply.core.config import Settings
from autoapply.core.logging import get_logger, log_extra
from autoapply.services.answers import AnswerGenerator, build_answer_generator
from autoapply.services.apply_flow import ApplyEnvironment, ApplyFlow
from autoapply.services.automation import AutomationSession, LazySession, PlaywrightSession
from autoapply.services.connectors import ConnectorRegistry, IndeedConnector, ListingFeedConnector
from autoapply.services.form_engine import FormEngine
from autoapply.services.listings import ATS_PROFILES, JobListing, load_listings
from autoapply.services.locator import ApplyTargetLocator, LocatorTimings
from autoapply.services.orchestrator import Orchestrator, RunOptions, RunSummary
from autoapply.services.profile import CandidateProfile, ProfileStore
from autoapply.services.repository import JobRepository, MissingFieldsLedger, build_job_repository
from autoapply.services.run_log import RunLog, RunManifest, new_run_id, utcnow
from autoapply.services.submit_gate import SubmitGate
from autoapply.services.verification import VerificationSignal

logger = get_logger(__name__)

LISTINGS_FEED = "listings.json"
MANUAL_BOARD = "manual"


@dataclass
class Runtime:
    settings: Settings
    run_id: str
    run_dir: Path
    run_log: RunLog
    repository: JobRepository
    ledger: MissingFieldsLedger
    profile: CandidateProfile
    generator: AnswerGenerator | None
    session: AutomationSession
    flow: ApplyFlow
    connectors: ConnectorRegistry
    orchestrator: Orchestrator
    verification: VerificationSignal = field(default_factory=VerificationSignal)

    def run(self, board: str | None = None, max_applications: int | None = None) -> RunSummary:
        options = RunOptions(
            board=board or self.settings.default_board,
            max_applications=self.settings.max_applications_per_run if max_applications is None else max_applications,
        )
        self.run_log.write_manifest(
            RunManifest(
                run_id=self.run_id,
                started_at=utcnow(),
                board=options.board,
                dry_run=self.settings.dry_run or not self.settings.allow_final_submit,
                max_applications=options.max_applications,
            )
        )
        return self.orchestrator.run(options)

    def close(self) -> None:
        if not self.settings.keep_open:
            self.session.close()
        self.repository.close()


def _listing_source(
    settings: Settings,
    listings: list[JobListing] | None,
    listings_path: Path | None,
) -> Callable[[], list[JobListing]]:
    if listings is not None:
        snapshot = list(listings)
        return lambda: list(snapshot)
    path = listings_path or settings.data_dir / LISTINGS_FEED
    return lambda: load_listings(path) if path.exists() else []


def build_runtime(
    settings: Settings,
    *,
    listings: list[JobListing] | None = None,
    listings_path: Path | None = None,
    session: AutomationSession | None = None,
    repository: JobRepository | None = None,
    profile: CandidateProfile | None = None,
    generator: AnswerGenerator | None = None,
    verification: VerificationSignal | None = None,
    run_id: str | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Runtime:
    """Wire one run: ids and artifact dir, stores, browser, pipeline components and connectors."""
    run_id = run_id or new_run_id()
    run_dir = settings.runs_dir / run_id
    run_log = RunLog(run_dir, run_id)

    repository = repository or build_job_repository(settings)
    ledger = MissingFieldsLedger(settings.missing_fields_path)
    store = ProfileStore(settings.profile_path)
    if profile is None:
        profile = store.load()
        persist_answer = store.save_answer
    else:
        persist_answer = None
    if generator is None:
        generator = build_answer_generator(settings)
    verification = verification or VerificationSignal()
    session = session or LazySession(lambda: PlaywrightSession(settings))

    form_engine = FormEngine(
        run_log=run_log,
        ledger=ledger,
        generator=generator,
        persist_answer=persist_answer,
        verification=verification,
        pause_on_verification=settings.pause_on_verification,
        verification_wait_seconds=settings.verification_wait_seconds,
        verification_poll_seconds=settings.verification_poll_seconds,
        max_steps=settings.form_max_steps,
        sleep=sleep,
    )
    flow = ApplyFlow(
        ApplyEnvironment(
            settings=settings,
            session=session,
            run_log=run_log,
            repository=repository,
            profile=profile,
            locator=ApplyTargetLocator.default(run_log=run_log, timings=LocatorTimings.from_settings(settings)),
            form_engine=form_engine,
            gate=SubmitGate(run_log),
            sleep=sleep,
        )
    )

    source = _listing_source(settings, listings, listings_path)
    registry = ConnectorRegistry(
        [
            ListingFeedConnector(board, flow=flow, source=source, preferences=profile.preferences)
            for board in [*ATS_PROFILES, MANUAL_BOARD]
        ]
    )
    registry.register(IndeedConnector(flow=flow, source=source, preferences=profile.preferences))
    orchestrator = Orchestrator(registry, repository, run_id=run_id)
    logger.info(
        "Runtime ready",
        extra=log_extra(run_id=run_id, run_dir=str(run_dir), boards=registry.names(), dry_run=settings.dry_run),
    )
    return Runtime(
        settings=settings,
        run_id=run_id,
        run_dir=run_dir,
        run_log=run_log,
        repository=repository,
        ledger=ledger,
        profile=profile,
        generator=generator,
        session=session,
        flow=flow,
        connectors=registry,
        orchestrator=orchestrator,
        verification=verification,
    )


RuntimeFactory = Callable[..., Runtime]


class RunController:
    """Owns at most one active run and executes it on a worker thread."""

    def __init__(self, settings: Settings, *, factory: RuntimeFactory = build_runtime) -> None:
        self.settings = settings
        self.factory = factory
        self._lock = threading.Lock()
        self._runtime: Runtime | None = None
        self._thread: threading.Thread | None = None
        self.last_summary: RunSummary | None = None

    @property
    def runtime(self) -> Runtime | None:
        with self._lock:
            return self._runtime

    def is_active(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start(
        self,
        *,
        board: str | None = None,
        max_applications: int | None = None,
        dry_run: bool | None = None,
        listings: list[JobListing] | None = None,
    ) -> Runtime:
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                raise RuntimeError("A run is already in progress")
            settings = self.settings
            if dry_run is not None:
                settings = settings.model_copy(update={"dry_run": dry_run})
            runtime = self.factory(settings, listings=listings)
            thread = threading.Thread(
                target=self._execute,
                args=(runtime, board, max_applications),
                name=f"run-{runtime.run_id}",
                daemon=True,
            )
            self._runtime = runtime
            self._thread = thread
        thread.start()
        return runtime

    def _execute(self, runtime: Runtime, board: str | None, max_applications: int | None) -> None:
        try:
            self.last_summary = runtime.run(board, max_applications)
        except Exception:
            logger.exception("Run crashed", extra=log_extra(run_id=runtime.run_id))
            runtime.orchestrator.stop()
        finally:
            runtime.close()

    def join(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
