import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from autoapply.core.config import Settings
from autoapply.core.enums import ClickPath
from autoapply.core.logging import get_logger
from autoapply.core.retry import retry_call
from autoapply.services import dom_queries as dom

logger = get_logger(__name__)


@dataclass
class ApplyTarget:
    selector: str
    href: str = ""
    text: str = ""


@dataclass
class ClickOutcome:
    path: ClickPath
    page: "AutomationPage | None" = None


class AutomationPage(ABC):
    """One browser tab as seen by the pipeline."""

    @property
    @abstractmethod
    def url(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def goto(self, url: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def fill(self, selector: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def click(self, selector: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def click_with_outcome(self, selector: str, timeout_ms: int = 8000) -> ClickOutcome:
        raise NotImplementedError

    @abstractmethod
    def upload_file(self, selector: str, path: Path) -> None:
        raise NotImplementedError

    @abstractmethod
    def wait_for(self, selector: str, timeout_ms: int = 10000) -> bool:
        raise NotImplementedError

    @abstractmethod
    def screenshot(self, path: Path) -> None:
        raise NotImplementedError

    @abstractmethod
    def evaluate(self, script: str, arg: Any = None) -> Any:
        raise NotImplementedError

    @abstractmethod
    def wait(self, ms: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def go_back(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError

    def locate_apply_target(self) -> ApplyTarget | None:
        elements = self.evaluate(dom.QUERY_CLICKABLES, {"deep": False}) or []
        match = dom.first_apply_control(elements)
        if match is None:
            return None
        return ApplyTarget(
            selector=dom.click_selector(match["index"]),
            href=str(match.get("href") or ""),
            text=str(match.get("text") or ""),
        )


class AutomationSession(ABC):
    @abstractmethod
    def new_page(self) -> AutomationPage:
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        raise NotImplementedError


class PlaywrightPage(AutomationPage):
    def __init__(self, page, *, settings: Settings) -> None:
        self._page = page
        self._settings = settings

    @property
    def url(self) -> str:
        return self._page.url

    def goto(self, url: str) -> None:
        retry_call(
            self._page.goto,
            url,
            timeout=self._settings.navigation_timeout_ms,
            wait_until="domcontentloaded",
            max_attempts=self._settings.navigation_retries + 1,
            retryable=(PlaywrightError,),
        )

    def fill(self, selector: str, value: str) -> None:
        self._page.fill(selector, value)

    def click(self, selector: str) -> None:
        retry_call(
            self._page.click,
            selector,
            timeout=self._settings.click_outcome_timeout_ms,
            max_attempts=self._settings.navigation_retries + 1,
            retryable=(PlaywrightError,),
        )

    def click_with_outcome(self, selector: str, timeout_ms: int = 8000) -> ClickOutcome:
        context = self._page.context
        before_pages = list(context.pages)
        before_url = self._page.url
        self._page.click(selector, timeout=timeout_ms)

        deadline = time.monotonic() + self._settings.popup_settle_ms / 1000
        while True:
            opened = [candidate for candidate in context.pages if candidate not in before_pages]
            if opened:
                popup = opened[-1]
                try:
                    popup.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
                except PlaywrightError as exc:
                    logger.warning("Popup did not finish loading: %s", exc)
                popup.bring_to_front()
                return ClickOutcome(path=ClickPath.NEW_TAB, page=PlaywrightPage(popup, settings=self._settings))
            if self._page.url != before_url:
                try:
                    self._page.wait_for_load_state("domcontentloaded", timeout=timeout_ms)
                except PlaywrightError as exc:
                    logger.warning("Navigation did not finish loading: %s", exc)
                return ClickOutcome(path=ClickPath.SAME_PAGE_NAVIGATION)
            if time.monotonic() >= deadline:
                return ClickOutcome(path=ClickPath.SAME_PAGE_NO_NAV)
            self._page.wait_for_timeout(250)

    def upload_file(self, selector: str, path: Path) -> None:
        self._page.set_input_files(selector, str(path))

    def wait_for(self, selector: str, timeout_ms: int = 10000) -> bool:
        try:
            self._page.wait_for_selector(selector, timeout=timeout_ms)
        except PlaywrightError:
            return False
        return True

    def screenshot(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        self._page.screenshot(path=str(path), full_page=True)

    def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return self._page.evaluate(script)
        return self._page.evaluate(script, arg)

    def wait(self, ms: int) -> None:
        self._page.wait_for_timeout(ms)

    def go_back(self) -> None:
        self._page.go_back(wait_until="domcontentloaded")

    def close(self) -> None:
        if not self._page.is_closed():
            self._page.close()


class PlaywrightSession(AutomationSession):
    """Sync Playwright browser; must be created and used from a single thread."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._playwright = sync_playwright().start()
        chromium = self._playwright.chromium
        self._browser = None
        if settings.browser_user_data_dir:
            self._context = chromium.launch_persistent_context(
                str(settings.browser_user_data_dir),
                headless=settings.browser_headless,
                slow_mo=settings.browser_slow_mo_ms,
            )
        else:
            self._browser = chromium.launch(
                headless=settings.browser_headless,
                slow_mo=settings.browser_slow_mo_ms,
            )
            self._context = self._browser.new_context()

    def new_page(self) -> AutomationPage:
        return PlaywrightPage(self._context.new_page(), settings=self._settings)

    def close(self) -> None:
        self._context.close()
        if self._browser is not None:
            self._browser.close()
        self._playwright.stop()


class LazySession(AutomationSession):
    """Defers browser start-up to the first ``new_page`` so it happens on the thread that drives it."""

    def __init__(self, factory: Callable[[], AutomationSession]) -> None:
        self._factory = factory
        self._session: AutomationSession | None = None

    @property
    def started(self) -> bool:
        return self._session is not None

    def new_page(self) -> AutomationPage:
        if self._session is None:
            self._session = self._factory()
        return self._session.new_page()

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
