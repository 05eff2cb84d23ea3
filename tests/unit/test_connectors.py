import pytest

from autoapply.core.enums import ApplyStatus
from autoapply.services import dom_queries as dom
from autoapply.services.apply_flow import ApplyEnvironment, ApplyFlow
from autoapply.services.automation import ApplyTarget
from autoapply.services.connectors import IndeedConnector, classify_apply_target
from autoapply.services.form_engine import FormEngine
from autoapply.services.listings import JobListing
from autoapply.services.locator import ApplyTargetLocator, LocatorTimings
from autoapply.services.repository import InMemoryJobRepository
from autoapply.services.run_log import read_events
from autoapply.services.runtime import build_runtime
from autoapply.services.submit_gate import SubmitGate
from tests.fakes import FakePage, FakeSession, clickable, control

LISTING = JobListing(
    id="7",
    source="indeed",
    apply_url="https://www.indeed.com/viewjob?jk=7",
    title="Platform Engineer",
    company="Acme",
)


def _flow(settings, run_log, profile, session):
    return ApplyFlow(
        ApplyEnvironment(
            settings=settings,
            session=session,
            run_log=run_log,
            repository=InMemoryJobRepository(),
            profile=profile,
            locator=ApplyTargetLocator.default(run_log=run_log, timings=LocatorTimings.from_settings(settings)),
            form_engine=FormEngine(run_log=run_log, sleep=lambda _: None),
            gate=SubmitGate(run_log),
            sleep=lambda _: None,
        )
    )


def _connector(flow):
    return IndeedConnector(flow=flow, source=lambda: [LISTING])


@pytest.mark.parametrize(
    ("text", "href", "expected"),
    [
        ("Apply on company site", "https://boards.greenhouse.io/acme/jobs/7", "greenhouse"),
        ("Apply now", "https://acme.icims.com/jobs/7/job", "icims"),
        ("Apply now", "https://careers.acme.example/apply", "unknown"),
        ("Apply on company site", "", "external"),
        ("Apply now", "https://www.indeed.com/applystart?jk=7", None),
        ("Apply now", "/applystart?jk=7", None),
        ("Apply now", "", None),
    ],
)
def test_classify_apply_target(text, href, expected):
    target = ApplyTarget(selector=dom.click_selector(0), href=href, text=text)

    assert classify_apply_target(target, "indeed.com") == expected


@pytest.mark.parametrize(
    ("snapshot", "expected"),
    [
        ({"modal": True, "board_frame": True, "form": True}, "modal-iframe"),
        ({"modal": True, "board_frame": False, "form": False}, "modal"),
        ({"modal": False, "board_frame": True, "form": True}, "inline-form"),
        ({}, "unknown"),
    ],
)
def test_classify_apply_flow(snapshot, expected):
    assert dom.classify_apply_flow(snapshot) == expected


def test_external_apply_target_is_recorded_and_skipped(settings, run_log, profile):
    href = "https://boards.greenhouse.io/acme/jobs/7"
    page = FakePage(clickables=[clickable(0, "Apply on company site", href=href)])
    connector = _connector(_flow(settings, run_log, profile, FakeSession(page)))

    result = connector.apply(LISTING)

    assert result.status is ApplyStatus.SKIPPED
    assert result.message == "Apply button leads to external site (greenhouse)"
    assert result.artifacts.extra["external_ats"] == "greenhouse"
    assert page.clicked == []
    assert page.screenshots[-1].name == "apply_7_external-apply.png"
    assert page.closed is True

    events = read_events(run_log.path)
    assert [event.step for event in events] == ["attempt", "external-apply", "external-detected", "skip"]
    detected, skip = events[-2:]
    assert (detected.status, detected.reason) == ("skipped", "greenhouse")
    assert (skip.status, skip.reason) == ("skipped", "external apply")
    for event in (detected, skip):
        assert event.apply_type == "external"
        assert event.external_url == href
        assert event.external_ats == "greenhouse"
        assert event.screenshot_path == str(page.screenshots[-1])


def test_board_hosted_apply_runs_shared_flow_and_reports_flow_type(settings, run_log, profile):
    def reveal(page, _selector):
        page.clickables = []
        page.has_form = True
        page.controls = [control(0, label="First Name"), control(1, type="file", name="resume", visible=False)]

    page = FakePage(
        clickables=[clickable(0, "Apply now", tag="button")],
        on_click=reveal,
        apply_flow={"modal": True, "board_frame": True, "form": True},
    )
    connector = _connector(_flow(settings, run_log, profile, FakeSession(page)))

    result = connector.apply(LISTING)

    assert result.status is ApplyStatus.DRY_RUN
    assert page.filled[dom.control_selector(0)] == "Alex"
    detected = [event for event in read_events(run_log.path) if event.step == "apply-flow-detected"]
    assert len(detected) == 1
    assert detected[0].apply_type == "modal-iframe"
    assert detected[0].reason == "same-page-no-nav"
    assert not any(event.step == "external-detected" for event in read_events(run_log.path))


def test_board_connector_without_apply_control_falls_through_to_locator(settings, run_log, profile):
    page = FakePage()
    connector = _connector(_flow(settings, run_log, profile, FakeSession(page)))

    result = connector.apply(LISTING)

    assert result.status is ApplyStatus.SKIPPED
    assert result.message == "No application entry point found"


def test_runtime_registers_board_connector(settings, profile):
    runtime = build_runtime(settings, listings=[LISTING], session=FakeSession(), profile=profile)

    connector = runtime.connectors.get("indeed")
    assert isinstance(connector, IndeedConnector)
    assert connector.search() == [LISTING]
    assert "indeed" in runtime.connectors.names()
