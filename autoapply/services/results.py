from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from autoapply.core.enums import ATTEMPTED_STATUSES, ApplyStatus
from autoapply.services.automation import AutomationPage
from autoapply.services.listings import JobListing


class ApplyArtifacts(BaseModel):
    screenshot_path: str | None = None
    entry_path: str | None = None
    final_url: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class ApplyResult(BaseModel):
    listing_id: str
    status: ApplyStatus
    message: str = ""
    artifacts: ApplyArtifacts = Field(default_factory=ApplyArtifacts)

    @property
    def attempted(self) -> bool:
        return self.status in ATTEMPTED_STATUSES


@dataclass
class ApplyAttempt:
    """Per-attempt state threaded through locate, fill and submit, then folded into the result."""

    listing: JobListing
    apply_type: str
    page: AutomationPage
    extra_pages: list[AutomationPage] = field(default_factory=list)
    entry_path: str | None = None
    strategy: str | None = None
    last_screenshot: str | None = None

    def switch_to(self, page: AutomationPage) -> None:
        if page is self.page:
            return
        self.extra_pages.append(self.page)
        self.page = page

    def pages(self) -> list[AutomationPage]:
        return [self.page, *self.extra_pages]

    def artifacts(self, **extra: Any) -> ApplyArtifacts:
        return ApplyArtifacts(
            screenshot_path=self.last_screenshot,
            entry_path=self.entry_path,
            final_url=self.page.url or None,
            extra={"strategy": self.strategy, **extra} if self.strategy else dict(extra),
        )
