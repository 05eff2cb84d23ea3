from autoapply.core.enums import ClickPath
from autoapply.services import dom_queries as dom
from autoapply.services.automation import ClickOutcome
from autoapply.services.listings import JobListing
from autoapply.services.locator import (
    ApplyTargetLocator,
    Found,
    LocatorStrategy,
    LocatorTimings,
    NotFound,
)
from autoapply.services.results import ApplyAttempt
from autoapply.services.run_log import read_events
from tests.fakes import FakePage, clickable

TIMINGS = LocatorTimings(apply_target_timeout_ms=1000, form_ready_timeout_ms=1000, poll_interval_ms=500)


def _listing(**overrides):
    data = {
        "id": "4012345",
        "source": "greenhouse",
        "apply_url": "https://careers.acme.example/jobs/4012345",
        "title": "Backend Engineer",
        "company": "Acme",
        "company_slug": "acme",
    }
    data.update(overrides)
    return JobListing(**data)


def _attempt(page, **listing):
    return ApplyAttempt(listing=_listing(**listing), apply_type="greenhouse", page=page)


def _locator(run_log):
    return ApplyTargetLocator.default(run_log=run_log, timings=TIMINGS)


def _reveal_form(page, _selector):
    page.has_form = True


def test_visible_apply_control_wins_without_later_strategies(run_log):
    page = FakePage(clickables=[clickable(0, "Apply for this job")], on_click=_reveal_form)
    attempt = _attempt(page)

    outcome = _locator(run_log).locate(attempt)

    assert outcome == Found(strategy="scan-apply-controls", path="same-page-no-nav", url=page.url)
    assert attempt.entry_path == "same-page-no-nav"
    assert attempt.strategy == "scan-apply-controls"
    assert page.clicked == [dom.click_selector(0)]
    assert dom.SCROLL_TO_BOTTOM not in page.scripts
    assert dom.QUERY_FRAMES not in page.scripts
    assert [event.step for event in read_events(run_log.path)] == ["cta-click"]


class _Stub(LocatorStrategy):
    def __init__(self, name, outcome, calls, *, run_log):
        super().__init__(run_log=run_log, timings=TIMINGS)
        self.name = name
        self.outcome = outcome
        self.calls = calls

    def attempt(self, state):
        self.calls.append(self.name)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def test_strategies_run_in_order_until_first_found(run_log):
    calls = []
    locator = ApplyTargetLocator(
        [
            _Stub("a", NotFound("a", "nothing"), calls, run_log=run_log),
            _Stub("b", RuntimeError("detached"), calls, run_log=run_log),
            _Stub("c", Found("c", "landing-form"), calls, run_log=run_log),
            _Stub("d", Found("d", "never"), calls, run_log=run_log),
        ]
    )

    outcome = locator.locate(_attempt(FakePage()))

    assert calls == ["a", "b", "c"]
    assert outcome.strategy == "c"


def test_all_strategies_failing_returns_last_not_found(run_log):
    calls = []
    locator = ApplyTargetLocator(
        [
            _Stub("a", NotFound("a", "nothing"), calls, run_log=run_log),
            _Stub("b", RuntimeError("boom"), calls, run_log=run_log),
        ]
    )

    outcome = locator.locate(_attempt(FakePage()))

    assert isinstance(outcome, NotFound)
    assert outcome.strategy == "b"
    assert outcome.reason == "error: boom"


def test_new_tab_click_switches_the_attempt_page(run_log):
    tab = FakePage("https://job-boards.greenhouse.io/acme/jobs/4012345", has_form=True)
    page = FakePage(
        clickables=[clickable(0, "Apply now")],
        click_outcome=ClickOutcome(path=ClickPath.NEW_TAB, page=tab),
    )
    attempt = _attempt(page)

    outcome = _locator(run_log).locate(attempt)

    assert isinstance(outcome, Found)
    assert outcome.path == "new-tab"
    assert attempt.page is tab
    assert attempt.pages() == [tab, page]
    event = read_events(run_log.path)[0]
    assert event.step == "cta-click"
    assert event.external_url == tab.url


def test_scroll_reveals_late_rendered_control(run_log):
    def reveal(page):
        page.clickables = [clickable(3, "Apply today")]

    page = FakePage(on_scroll=reveal, on_click=_reveal_form)

    outcome = _locator(run_log).locate(_attempt(page))

    assert outcome.strategy == "scroll-and-scan"
    assert page.clicked == [dom.click_selector(3)]


def test_shadow_root_control_found_by_deep_scan(run_log):
    page = FakePage(
        deep_clickables=[clickable(7, "Apply", tag="button", in_shadow=True)],
        on_click=_reveal_form,
    )

    outcome = _locator(run_log).locate(_attempt(page))

    assert outcome.strategy == "scroll-and-scan"
    assert page.clicked == [dom.click_selector(7)]


def test_form_submit_button_is_not_an_entry_point(run_log):
    page = FakePage(
        clickables=[clickable(0, "Submit application", tag="button", type="submit", in_form=True)],
        has_form=True,
    )

    outcome = _locator(run_log).locate(_attempt(page))

    assert outcome == Found(strategy="landing-form", path="landing-form", url=page.url)
    assert page.clicked == []


def test_embedded_apply_url_is_followed(run_log):
    target = "https://boards.greenhouse.io/embed/job_app?token=4012345"

    def arrive(page, url):
        page.has_form = url == target

    page = FakePage(
        embedded={"origin": "https://careers.acme.example", "urls": ["https://careers.acme.example/about", target]},
        on_goto=arrive,
    )

    outcome = _locator(run_log).locate(_attempt(page))

    assert outcome.strategy == "embedded-apply-url"
    assert page.visited == [target]
    steps = [event.step for event in read_events(run_log.path)]
    assert steps[:2] == ["clickable-inventory", "frame-inventory"]
    assert "embedded-apply-url" in steps


def test_ats_frame_source_is_followed(run_log):
    frame_src = "https://job-boards.greenhouse.io/embed/job_app?for=acme&token=4012345"

    def arrive(page, url):
        page.has_form = url == frame_src

    page = FakePage(
        frames=[{"src": "https://www.youtube.com/embed/xyz", "name": ""}, {"src": frame_src, "name": "grnhse_iframe"}],
        on_goto=arrive,
    )

    outcome = _locator(run_log).locate(_attempt(page))

    assert outcome.strategy == "frame-source-url"
    assert outcome.path == "frame-apply-url"
    assert page.visited == [frame_src]


def test_template_fallback_url_is_last_resort(run_log):
    fallback = "https://job-boards.greenhouse.io/acme/jobs/4012345"

    def arrive(page, url):
        page.has_form = url == fallback

    page = FakePage(on_goto=arrive)

    outcome = _locator(run_log).locate(_attempt(page))

    assert outcome.strategy == "template-fallback-url"
    assert page.visited == [fallback]
    steps = [event.step for event in read_events(run_log.path)]
    assert steps[-2:] == ["fallback-apply-url", "fallback-final-url"]


def test_nothing_found_reports_missing_template(run_log):
    page = FakePage()
    attempt = _attempt(page, company_slug=None)

    outcome = _locator(run_log).locate(attempt)

    assert outcome == NotFound(strategy="template-fallback-url", reason="no fallback template for listing")
    assert attempt.entry_path is None
    assert page.visited == []
