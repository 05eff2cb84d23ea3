import threading
import time
from typing import Callable

from autoapply.core.logging import get_logger
from autoapply.core.retry import retry_call
from autoapply.services import dom_queries as dom
from autoapply.services.automation import AutomationPage

logger = get_logger(__name__)

CONTEXT_DESTROYED = "execution context was destroyed"


class VerificationSignal:
    """Hand-off point between a paused apply flow and a human operator."""

    def __init__(self) -> None:
        self._released = threading.Event()
        self._waiting = threading.Event()

    @property
    def waiting(self) -> bool:
        return self._waiting.is_set()

    def release(self) -> bool:
        if not self._waiting.is_set():
            return False
        self._released.set()
        return True

    def wait(
        self,
        *,
        budget_seconds: float,
        poll_seconds: float,
        sleep: Callable[[float], None] = time.sleep,
    ) -> bool:
        self._released.clear()
        self._waiting.set()
        try:
            checks = max(1, int(budget_seconds / poll_seconds)) if poll_seconds > 0 else 1
            for _ in range(checks):
                if self._released.is_set():
                    return True
                sleep(poll_seconds)
            return self._released.is_set()
        finally:
            self._waiting.clear()


def _is_context_destroyed(exc: BaseException) -> bool:
    return CONTEXT_DESTROYED in str(exc).lower()


def page_needs_verification(page: AutomationPage, *, sleep: Callable[[float], None] = time.sleep) -> bool:
    text = retry_call(
        page.evaluate,
        dom.PAGE_TEXT,
        max_attempts=3,
        base_delay=1.5,
        backoff_factor=1.0,
        jitter=False,
        should_retry=_is_context_destroyed,
        sleep=sleep,
    )
    return dom.contains_any(text or "", dom.VERIFICATION_PHRASES)


def wait_until_clear(
    page: AutomationPage,
    *,
    label: str,
    budget_seconds: float,
    poll_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Poll an interstitial (bot check, extra verification) until it goes away or the budget runs out."""
    if not page_needs_verification(page, sleep=sleep):
        return True
    logger.warning("Manual verification required (%s); waiting up to %ss", label, budget_seconds)
    checks = max(1, int(budget_seconds / poll_seconds)) if poll_seconds > 0 else 1
    for _ in range(checks):
        sleep(poll_seconds)
        if not page_needs_verification(page, sleep=sleep):
            logger.info("Verification cleared (%s)", label)
            return True
    logger.warning("Verification still present after %ss (%s)", budget_seconds, label)
    return False
