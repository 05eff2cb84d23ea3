"""Apply-target discovery as an ordered chain of fallback strategies.

Each strategy either reaches a page that shows an application form (``Found``)
or reports why it could not (``NotFound``). The chain stops at the first
``Found``; a strategy that raises is treated as ``NotFound`` so the next one runs.
"""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from autoapply.core.config import Settings
from autoapply.core.enums import ClickPath
from autoapply.core.logging import get_logger, log_extra
from autoapply.services import dom_queries as dom
from autoapply.services.automation import AutomationPage
from autoapply.services.listings import ATS_PROFILES, fallback_apply_url
from autoapply.services.results import ApplyAttempt
from autoapply.services.run_log import RunLog

logger = get_logger(__name__)

INVENTORY_LIMIT = 20
FRAME_INVENTORY_LIMIT = 10


@dataclass(frozen=True)
class Found:
    strategy: str
    path: str
    url: str = ""


@dataclass(frozen=True)
class NotFound:
    strategy: str
    reason: str


LocateOutcome = Found | NotFound


@dataclass(frozen=True)
class LocatorTimings:
    apply_target_timeout_ms: int = 8000
    form_ready_timeout_ms: int = 15000
    poll_interval_ms: int = 500
    click_outcome_timeout_ms: int = 8000
    scroll_settle_ms: int = 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocatorTimings":
        return cls(
            apply_target_timeout_ms=settings.apply_target_timeout_ms,
            form_ready_timeout_ms=settings.form_ready_timeout_ms,
            poll_interval_ms=settings.poll_interval_ms,
            click_outcome_timeout_ms=settings.click_outcome_timeout_ms,
        )

    def checks(self, timeout_ms: int) -> int:
        if self.poll_interval_ms <= 0:
            return 1
        return max(1, timeout_ms // self.poll_interval_ms)


def poll(page: AutomationPage, check: Callable[[], object], *, checks: int, interval_ms: int):
    for attempt in range(checks):
        result = check()
        if result:
            return result
        if attempt < checks - 1:
            page.wait(interval_ms)
    return None


def page_has_form(page: AutomationPage) -> bool:
    return bool(page.evaluate(dom.PAGE_HAS_FORM))


def wait_for_form(page: AutomationPage, timings: LocatorTimings) -> bool:
    return bool(
        poll(
            page,
            lambda: page_has_form(page),
            checks=timings.checks(timings.form_ready_timeout_ms),
            interval_ms=timings.poll_interval_ms,
        )
    )


class LocatorStrategy(ABC):
    name = "strategy"

    def __init__(self, *, run_log: RunLog, timings: LocatorTimings) -> None:
        self.run_log = run_log
        self.timings = timings

    @abstractmethod
    def attempt(self, state: ApplyAttempt) -> LocateOutcome:
        raise NotImplementedError

    def found(self, state: ApplyAttempt, path: str) -> Found:
        return Found(strategy=self.name, path=path, url=state.page.url)

    def not_found(self, reason: str) -> NotFound:
        return NotFound(strategy=self.name, reason=reason)

    def event(self, state: ApplyAttempt, step: str, **fields) -> None:
        self.run_log.event(state.listing.id, state.apply_type, step, **fields)


class _ClickStrategy(LocatorStrategy):
    def find_target(self, state: ApplyAttempt) -> str | None:
        target = poll(
            state.page,
            state.page.locate_apply_target,
            checks=self.timings.checks(self.timings.apply_target_timeout_ms),
            interval_ms=self.timings.poll_interval_ms,
        )
        return target.selector if target else None

    def click_and_validate(self, state: ApplyAttempt, selector: str) -> LocateOutcome:
        outcome = state.page.click_with_outcome(selector, timeout_ms=self.timings.click_outcome_timeout_ms)
        if outcome.path is ClickPath.NEW_TAB and outcome.page is not None:
            state.switch_to(outcome.page)
        self.event(state, "cta-click", status=outcome.path.value, reason=outcome.path.value, external_url=state.page.url)
        if wait_for_form(state.page, self.timings):
            return self.found(state, outcome.path.value)
        return self.not_found(f"no form after {outcome.path.value}")


class ScanApplyControls(_ClickStrategy):
    name = "scan-apply-controls"

    def attempt(self, state: ApplyAttempt) -> LocateOutcome:
        state.page.evaluate(dom.SCROLL_TO_TOP)
        selector = self.find_target(state)
        if selector is None:
            return self.not_found("no apply control")
        return self.click_and_validate(state, selector)


class ScrollAndScan(_ClickStrategy):
    """Late-rendered content: scroll to the bottom, then rescan including shadow roots."""

    name = "scroll-and-scan"

    def attempt(self, state: ApplyAttempt) -> LocateOutcome:
        state.page.evaluate(dom.SCROLL_TO_BOTTOM)
        state.page.wait(self.timings.scroll_settle_ms)
        selector = self.find_target(state)
        if selector is None:
            elements = state.page.evaluate(dom.QUERY_CLICKABLES, {"deep": True}) or []
            match = dom.first_apply_control(elements)
            selector = dom.click_selector(match["index"]) if match else None
        if selector is None:
            return self.not_found("no apply control after scroll")
        return self.click_and_validate(state, selector)


class LandingForm(LocatorStrategy):
    name = "landing-form"

    def attempt(self, state: ApplyAttempt) -> LocateOutcome:
        if page_has_form(state.page):
            return self.found(state, "landing-form")
        return self.not_found("no form on landing page")


class InventoryAudit(LocatorStrategy):
    """Records what the page offers so a failed discovery can be diagnosed later."""

    name = "inventory-audit"

    def attempt(self, state: ApplyAttempt) -> LocateOutcome:
        elements = state.page.evaluate(dom.QUERY_CLICKABLES, {"deep": True}) or []
        inventory = [
            {
                "tag": element.get("tag", ""),
                "text": element.get("text", ""),
                "aria": element.get("aria", ""),
                "title": element.get("title", ""),
            }
            for element in elements
            if element.get("text") or element.get("aria") or element.get("title")
        ][:INVENTORY_LIMIT]
        self.event(state, "clickable-inventory", reason=json.dumps(inventory), data={"count": len(elements)})

        frames = state.page.evaluate(dom.QUERY_FRAMES) or []
        self.event(state, "frame-inventory", reason=json.dumps(frames[:FRAME_INVENTORY_LIMIT]), data={"count": len(frames)})
        return self.not_found("inventory recorded")


class _NavigateStrategy(LocatorStrategy):
    def go(self, state: ApplyAttempt, url: str, step: str) -> LocateOutcome:
        self.event(state, step, reason=url, external_url=url, external_ats=state.listing.ats)
        state.page.goto(url)
        if wait_for_form(state.page, self.timings):
            return self.found(state, step)
        return self.not_found(f"no form at {url}")


def _ats_hosts(preferred: str) -> tuple[str, ...]:
    ordered = [ATS_PROFILES[preferred]] if preferred in ATS_PROFILES else []
    ordered += [profile for name, profile in ATS_PROFILES.items() if name != preferred]
    hosts: list[str] = []
    for profile in ordered:
        hosts.extend(profile.hosts)
    return tuple(hosts)


class EmbeddedApplyUrl(_NavigateStrategy):
    name = "embedded-apply-url"

    def attempt(self, state: ApplyAttempt) -> LocateOutcome:
        payload = state.page.evaluate(dom.QUERY_EMBEDDED_URLS) or {}
        url = dom.preferred_embedded_url(
            list(payload.get("urls") or []),
            str(payload.get("origin") or ""),
            _ats_hosts(state.listing.ats),
        )
        if not url:
            return self.not_found("no embedded apply url")
        return self.go(state, url, "embedded-apply-url")


class FrameSourceUrl(_NavigateStrategy):
    name = "frame-source-url"

    def attempt(self, state: ApplyAttempt) -> LocateOutcome:
        frames = state.page.evaluate(dom.QUERY_FRAMES) or []
        hosts = _ats_hosts(state.listing.ats)
        for frame in frames:
            src = str(frame.get("src") or "")
            if src and any(host in src.lower() for host in hosts):
                return self.go(state, src, "frame-apply-url")
        return self.not_found("no ats frame")


class TemplateFallbackUrl(_NavigateStrategy):
    name = "template-fallback-url"

    def attempt(self, state: ApplyAttempt) -> LocateOutcome:
        url = fallback_apply_url(state.listing)
        if not url:
            return self.not_found("no fallback template for listing")
        outcome = self.go(state, url, "fallback-apply-url")
        self.event(state, "fallback-final-url", reason=state.page.url, external_url=state.page.url)
        return outcome


DEFAULT_STRATEGIES: tuple[type[LocatorStrategy], ...] = (
    ScanApplyControls,
    ScrollAndScan,
    LandingForm,
    InventoryAudit,
    EmbeddedApplyUrl,
    FrameSourceUrl,
    TemplateFallbackUrl,
)


class ApplyTargetLocator:
    def __init__(self, strategies: list[LocatorStrategy]) -> None:
        self.strategies = strategies

    @classmethod
    def default(cls, *, run_log: RunLog, timings: LocatorTimings) -> "ApplyTargetLocator":
        return cls([strategy(run_log=run_log, timings=timings) for strategy in DEFAULT_STRATEGIES])

    def locate(self, state: ApplyAttempt) -> LocateOutcome:
        last: LocateOutcome = NotFound(strategy="none", reason="no strategies configured")
        for strategy in self.strategies:
            try:
                outcome = strategy.attempt(state)
            except Exception as exc:
                logger.warning(
                    "Locator strategy %s failed: %s",
                    strategy.name,
                    exc,
                    extra=log_extra(listing_id=state.listing.id),
                )
                outcome = NotFound(strategy=strategy.name, reason=f"error: {exc}"[:300])
            if isinstance(outcome, Found):
                state.entry_path = outcome.path
                state.strategy = outcome.strategy
                logger.info(
                    "Apply target found via %s (%s)",
                    outcome.strategy,
                    outcome.path,
                    extra=log_extra(listing_id=state.listing.id),
                )
                return outcome
            last = outcome
        return last
