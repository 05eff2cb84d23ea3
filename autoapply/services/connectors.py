from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable

from autoapply.core.enums import ApplyStatus
from autoapply.core.logging import get_logger, log_extra
from autoapply.services import dom_queries as dom
from autoapply.services.apply_flow import ApplyFlow, ApplyHooks
from autoapply.services.automation import ApplyTarget
from autoapply.services.form_engine import capture_step
from autoapply.services.listings import JobListing, ListingFilter, filter_listings, load_listings
from autoapply.services.locator import Found
from autoapply.services.results import ApplyAttempt, ApplyResult

logger = get_logger(__name__)


class BoardConnector(ABC):
    name: str

    @abstractmethod
    def search(self) -> list[JobListing]:
        raise NotImplementedError

    @abstractmethod
    def apply(self, listing: JobListing) -> ApplyResult:
        raise NotImplementedError


class ListingFeedConnector(BoardConnector):
    """Serves already-discovered listings for one board and applies through the shared flow."""

    def __init__(
        self,
        name: str,
        *,
        flow: ApplyFlow,
        source: Callable[[], list[JobListing]],
        preferences: ListingFilter | None = None,
    ) -> None:
        self.name = name
        self.flow = flow
        self.source = source
        self.preferences = preferences

    @classmethod
    def from_file(
        cls,
        name: str,
        path: Path,
        *,
        flow: ApplyFlow,
        preferences: ListingFilter | None = None,
    ) -> "ListingFeedConnector":
        return cls(name, flow=flow, source=lambda: load_listings(path), preferences=preferences)

    @classmethod
    def from_listings(
        cls,
        name: str,
        listings: list[JobListing],
        *,
        flow: ApplyFlow,
        preferences: ListingFilter | None = None,
    ) -> "ListingFeedConnector":
        snapshot = list(listings)
        return cls(name, flow=flow, source=lambda: list(snapshot), preferences=preferences)

    def search(self) -> list[JobListing]:
        listings = self.source()
        if self.preferences is None:
            return listings
        matched, counts = filter_listings(listings, self.preferences)
        logger.info("Listing filter for %s: %s", self.name, counts)
        return matched

    def apply(self, listing: JobListing) -> ApplyResult:
        return self.flow.apply(listing, apply_type=self.name)


class ConnectorRegistry:
    def __init__(self, connectors: list[BoardConnector] | None = None) -> None:
        self._connectors: dict[str, BoardConnector] = {}
        for connector in connectors or []:
            self.register(connector)

    def register(self, connector: BoardConnector) -> None:
        self._connectors[connector.name.lower()] = connector

    def get(self, name: str) -> BoardConnector | None:
        return self._connectors.get((name or "").lower())

    def names(self) -> list[str]:
        return sorted(self._connectors)


EXTERNAL_TEXT_MARKERS = ("company site", "company")

EXTERNAL_ATS_HINTS = (
    ("greenhouse.io", "greenhouse"),
    ("lever.co", "lever"),
    ("ashbyhq.com", "ashby"),
    ("workday", "workday"),
    ("smartrecruiters", "smartrecruiters"),
    ("icims", "icims"),
    ("jobvite", "jobvite"),
    ("breezy.hr", "breezy"),
)


def is_board_href(href: str, board_host: str) -> bool:
    lowered = (href or "").strip().lower()
    if not lowered or lowered.startswith(("/", "#", "?", "javascript:")):
        return True
    return board_host in lowered


def external_ats(href: str) -> str:
    lowered = (href or "").lower()
    for marker, name in EXTERNAL_ATS_HINTS:
        if marker in lowered:
            return name
    return "unknown"


def classify_apply_target(target: ApplyTarget, board_host: str) -> str | None:
    """Return the external ATS name when the apply control leaves the board, else None."""
    text = (target.text or "").lower()
    if any(marker in text for marker in EXTERNAL_TEXT_MARKERS) or not is_board_href(target.href, board_host):
        return external_ats(target.href) if target.href else "external"
    return None


class IndeedConnector(ListingFeedConnector, ApplyHooks):
    """Board-hosted listings. Apply controls that leave the board are recorded and skipped."""

    board_host = "indeed.com"

    def __init__(
        self,
        *,
        flow: ApplyFlow,
        source: Callable[[], list[JobListing]],
        preferences: ListingFilter | None = None,
    ) -> None:
        super().__init__("indeed", flow=flow, source=source, preferences=preferences)

    def apply(self, listing: JobListing) -> ApplyResult:
        return self.flow.apply(listing, apply_type=self.name, hooks=self)

    def before_locate(self, flow: ApplyFlow, attempt: ApplyAttempt) -> ApplyResult | None:
        target = attempt.page.locate_apply_target()
        if target is None:
            return None
        ats = classify_apply_target(target, self.board_host)
        if ats is None:
            return None

        run_log = flow.env.run_log
        listing = attempt.listing
        attempt.last_screenshot = capture_step(run_log, attempt.page, listing.id, "external", "external-apply")
        for step, reason in (("external-detected", ats), ("skip", "external apply")):
            run_log.event(
                listing.id,
                "external",
                step,
                status=ApplyStatus.SKIPPED.value,
                reason=reason,
                external_url=target.href or None,
                external_ats=ats,
                screenshot_path=attempt.last_screenshot,
            )
        logger.info("External apply target: %s", target.href, extra=log_extra(listing_id=listing.id, ats=ats))
        return ApplyResult(
            listing_id=listing.id,
            status=ApplyStatus.SKIPPED,
            message=f"Apply button leads to external site ({ats})",
            artifacts=attempt.artifacts(external_url=target.href, external_ats=ats),
        )

    def after_locate(self, flow: ApplyFlow, attempt: ApplyAttempt, found: Found) -> None:
        snapshot = attempt.page.evaluate(dom.QUERY_APPLY_FLOW, self.board_host) or {}
        flow_type = dom.classify_apply_flow(snapshot)
        flow.env.run_log.event(attempt.listing.id, flow_type, "apply-flow-detected", reason=found.path)
