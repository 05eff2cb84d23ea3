from dataclasses import dataclass, field
from typing import Any

from autoapply.core.enums import PolicyOutcome, SubmitState
from autoapply.core.logging import get_logger, log_extra
from autoapply.services import dom_queries as dom
from autoapply.services.automation import AutomationPage
from autoapply.services.run_log import RunLog

logger = get_logger(__name__)


@dataclass(frozen=True)
class SubmitSignals:
    submit_selectors: tuple[str, ...] = ()
    has_captcha: bool = False
    has_error_banner: bool = False
    required_missing: bool = False

    @property
    def submit_count(self) -> int:
        return len(self.submit_selectors)


@dataclass(frozen=True)
class SubmitDetection:
    state: SubmitState
    reason: str
    policy: PolicyOutcome
    policy_reason: str
    signals: SubmitSignals = field(default_factory=SubmitSignals)
    screenshot_path: str | None = None

    @property
    def can_submit(self) -> bool:
        return self.policy is PolicyOutcome.PASS and self.state is SubmitState.READY


def derive_submit_state(signals: SubmitSignals) -> tuple[SubmitState, str]:
    if signals.has_captcha:
        return SubmitState.BLOCKED, "captcha detected"
    if signals.has_error_banner:
        return SubmitState.BLOCKED, "error banner detected"
    if signals.required_missing:
        return SubmitState.INCOMPLETE, "missing required fields"
    if signals.submit_count >= 1:
        return SubmitState.READY, "submit button detected"
    return SubmitState.BLOCKED, "submit action not found"


def evaluate_policy(signals: SubmitSignals, state: SubmitState) -> tuple[PolicyOutcome, str]:
    if signals.has_captcha:
        return PolicyOutcome.FAIL, "captcha detected"
    if signals.has_error_banner:
        return PolicyOutcome.FAIL, "error banner detected"
    if signals.required_missing:
        return PolicyOutcome.FAIL, "missing required fields"
    if signals.submit_count != 1:
        return PolicyOutcome.FAIL, "submit button count not equal to 1"
    if state is not SubmitState.READY:
        return PolicyOutcome.FAIL, "not ready to submit"
    return PolicyOutcome.PASS, "all submit guards passed"


def signals_from_snapshot(snapshot: dict[str, Any]) -> SubmitSignals:
    buttons = [button for button in snapshot.get("buttons") or [] if button.get("visible", True)]
    selectors = tuple(dom.button_selector(button["index"]) for button in buttons if dom.is_submit_button(button))
    return SubmitSignals(
        submit_selectors=selectors,
        has_captcha=int(snapshot.get("captcha_count") or 0) > 0,
        has_error_banner=int(snapshot.get("error_banner_count") or 0) > 0,
        required_missing=int(snapshot.get("invalid_count") or 0) > 0
        or int(snapshot.get("required_empty_count") or 0) > 0,
    )


def collect_signals(page: AutomationPage) -> SubmitSignals:
    snapshot = page.evaluate(
        dom.QUERY_SUBMIT_SIGNALS,
        {
            "captchaSelectors": list(dom.CAPTCHA_SELECTORS),
            "errorSelectors": list(dom.ERROR_BANNER_SELECTORS),
        },
    )
    return signals_from_snapshot(snapshot or {})


class SubmitGate:
    def __init__(self, run_log: RunLog) -> None:
        self.run_log = run_log

    def detect(self, page: AutomationPage, *, listing_id: str, apply_type: str) -> SubmitDetection:
        """Read the live page, derive readiness, then apply the stricter policy; never cached."""
        signals = collect_signals(page)
        state, reason = derive_submit_state(signals)
        policy, policy_reason = evaluate_policy(signals, state)

        path = self.run_log.screenshot_path(listing_id, "submit-detect")
        screenshot_path: str | None = str(path)
        try:
            page.screenshot(path)
        except Exception as exc:
            logger.warning("Submit-detect screenshot failed: %s", exc, extra=log_extra(listing_id=listing_id))
            screenshot_path = None

        self.run_log.event(
            listing_id,
            apply_type,
            "submit-detect",
            status=state.value,
            reason=reason,
            screenshot_path=screenshot_path,
            data={
                "submit_count": signals.submit_count,
                "has_captcha": signals.has_captcha,
                "has_error_banner": signals.has_error_banner,
                "required_missing": signals.required_missing,
            },
        )
        self.run_log.event(
            listing_id,
            apply_type,
            "submit-policy",
            status=policy.value,
            reason=policy_reason,
            submit_policy=policy.value,
            submit_policy_reason=policy_reason,
        )
        logger.info(
            "Submit state %s (%s), policy %s (%s)",
            state.value,
            reason,
            policy.value,
            policy_reason,
            extra=log_extra(listing_id=listing_id),
        )
        return SubmitDetection(
            state=state,
            reason=reason,
            policy=policy,
            policy_reason=policy_reason,
            signals=signals,
            screenshot_path=screenshot_path,
        )

    def submit(self, page: AutomationPage, detection: SubmitDetection, *, listing_id: str, apply_type: str) -> str:
        if not detection.can_submit or detection.signals.submit_count != 1:
            raise RuntimeError(f"Refusing to submit: {detection.policy_reason}")
        page.click(detection.signals.submit_selectors[0])
        path = self.run_log.screenshot_path(listing_id, "submitted")
        page.screenshot(path)
        self.run_log.event(
            listing_id,
            apply_type,
            "submit-click",
            status="clicked",
            screenshot_path=str(path),
        )
        return str(path)
