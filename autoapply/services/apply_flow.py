import time
from dataclasses import dataclass, field
from typing import Callable

from autoapply.core.config import Settings
from autoapply.core.enums import ApplyStatus
from autoapply.core.logging import get_logger, log_extra
from autoapply.services.automation import AutomationSession
from autoapply.services.form_engine import FillTarget, FormEngine, capture_step
from autoapply.services.listings import JobListing
from autoapply.services.locator import ApplyTargetLocator, Found
from autoapply.services.profile import CandidateProfile
from autoapply.services.repository import JobRepository
from autoapply.services.results import ApplyArtifacts, ApplyAttempt, ApplyResult
from autoapply.services.run_log import RunLog
from autoapply.services.submit_gate import SubmitGate
from autoapply.services.verification import wait_until_clear

logger = get_logger(__name__)


@dataclass
class ApplyEnvironment:
    settings: Settings
    session: AutomationSession
    run_log: RunLog
    repository: JobRepository
    profile: CandidateProfile
    locator: ApplyTargetLocator
    form_engine: FormEngine
    gate: SubmitGate
    sleep: Callable[[float], None] = field(default=time.sleep)


class ApplyHooks:
    """Board-specific checkpoints inside the shared flow. The defaults change nothing."""

    def before_locate(self, flow: "ApplyFlow", attempt: ApplyAttempt) -> ApplyResult | None:
        return None

    def after_locate(self, flow: "ApplyFlow", attempt: ApplyAttempt, found: Found) -> None:
        return None


NO_HOOKS = ApplyHooks()


class ApplyFlow:
    """One listing, start to finish: locate, fill, gate, then dry-run or submit."""

    def __init__(self, env: ApplyEnvironment) -> None:
        self.env = env

    @property
    def submit_enabled(self) -> bool:
        settings = self.env.settings
        return not settings.dry_run and settings.allow_final_submit

    def apply(
        self,
        listing: JobListing,
        *,
        apply_type: str | None = None,
        hooks: ApplyHooks | None = None,
    ) -> ApplyResult:
        env = self.env
        kind = apply_type or listing.ats
        if env.repository.has_applied(listing.identity) or env.repository.has_applied(listing.apply_url):
            return ApplyResult(listing_id=listing.id, status=ApplyStatus.SKIPPED, message="Already applied (persisted)")

        attempt: ApplyAttempt | None = None
        try:
            attempt = ApplyAttempt(listing=listing, apply_type=kind, page=env.session.new_page())
            return self._run(attempt, hooks or NO_HOOKS)
        except Exception as exc:
            logger.exception("Apply failed", extra=log_extra(listing_id=listing.id))
            screenshot = None
            if attempt is not None:
                screenshot = attempt.last_screenshot = capture_step(
                    env.run_log, attempt.page, listing.id, kind, "apply-error"
                )
            env.run_log.event(
                listing.id,
                kind,
                "error",
                status=ApplyStatus.FAILED.value,
                reason=str(exc)[:500],
                title=listing.title,
                company=listing.company,
                screenshot_path=screenshot,
            )
            return ApplyResult(
                listing_id=listing.id,
                status=ApplyStatus.FAILED,
                message=str(exc),
                artifacts=attempt.artifacts() if attempt is not None else ApplyArtifacts(),
            )
        finally:
            if attempt is not None and not env.settings.keep_open:
                for page in attempt.pages():
                    try:
                        page.close()
                    except Exception as exc:
                        logger.warning("Page close failed: %s", exc, extra=log_extra(listing_id=listing.id))

    def _run(self, attempt: ApplyAttempt, hooks: ApplyHooks) -> ApplyResult:
        env = self.env
        settings = env.settings
        listing = attempt.listing
        kind = attempt.apply_type

        attempt.page.goto(listing.apply_url)
        attempt.page.wait(settings.page_settle_ms)
        wait_until_clear(
            attempt.page,
            label="landing",
            budget_seconds=settings.verification_wait_seconds,
            poll_seconds=settings.verification_poll_seconds,
            sleep=env.sleep,
        )
        env.run_log.event(
            listing.id,
            kind,
            "attempt",
            title=listing.title,
            company=listing.company,
            external_url=listing.apply_url,
            external_ats=listing.ats,
        )

        early = hooks.before_locate(self, attempt)
        if early is not None:
            return early

        outcome = env.locator.locate(attempt)
        if not isinstance(outcome, Found):
            attempt.last_screenshot = capture_step(env.run_log, attempt.page, listing.id, kind, "no-apply-button")
            env.run_log.event(
                listing.id,
                kind,
                "skip",
                status=ApplyStatus.SKIPPED.value,
                reason="no apply button",
                message=outcome.reason,
                screenshot_path=attempt.last_screenshot,
            )
            return ApplyResult(
                listing_id=listing.id,
                status=ApplyStatus.SKIPPED,
                message="No application entry point found",
                artifacts=attempt.artifacts(),
            )
        hooks.after_locate(self, attempt, outcome)

        wait_until_clear(
            attempt.page,
            label="application",
            budget_seconds=settings.verification_wait_seconds,
            poll_seconds=settings.verification_poll_seconds,
            sleep=env.sleep,
        )
        report = env.form_engine.fill_application(
            attempt.page,
            FillTarget(
                run_id=env.run_log.run_id,
                listing_id=listing.id,
                apply_type=kind,
                profile=env.profile,
                resume=env.profile.select_resume(),
                answers=dict(env.profile.answers),
            ),
        )

        detection = env.gate.detect(attempt.page, listing_id=listing.id, apply_type=kind)
        attempt.last_screenshot = detection.screenshot_path or attempt.last_screenshot
        extra = {
            "submit_state": detection.state.value,
            "submit_reason": detection.reason,
            "submit_policy": detection.policy.value,
            "submit_policy_reason": detection.policy_reason,
            "filled": len(report.filled),
            "skipped": len(report.skipped),
        }

        if self.submit_enabled and detection.can_submit:
            attempt.last_screenshot = env.gate.submit(attempt.page, detection, listing_id=listing.id, apply_type=kind)
            status = ApplyStatus.SUBMITTED
            message = "Submitted"
        else:
            status = ApplyStatus.DRY_RUN
            message = f"Dry-run: {detection.state.value} ({detection.reason})"

        env.run_log.event(
            listing.id,
            kind,
            "result",
            status=status.value,
            reason=detection.reason,
            message=message,
            title=listing.title,
            company=listing.company,
            submit_policy=detection.policy.value,
            submit_policy_reason=detection.policy_reason,
            screenshot_path=attempt.last_screenshot,
        )
        return ApplyResult(
            listing_id=listing.id,
            status=status,
            message=message,
            artifacts=attempt.artifacts(**extra),
        )
