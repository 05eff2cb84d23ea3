import json

from autoapply.core.enums import ApplyStatus, RunState
from autoapply.services.repository import FileJobRepository
from autoapply.services.run_log import read_events, read_manifest, summarize_run
from autoapply.services.runtime import build_runtime
from tests.fakes import FakePage, FakeSession, clickable, control

APPLY_URL = "https://job-boards.example.io/acme/jobs/42"


def _job_page():
    def open_form(page, _selector):
        page.clickables = []
        page.has_form = True
        page.controls = [
            control(0, label="First Name", name="first_name"),
            control(1, label="Last Name", name="last_name"),
            control(2, type="email", label="Email", name="email"),
            control(3, type="tel", label="Phone", name="phone"),
            control(4, type="file", name="resume", visible=False),
            control(5, tag="textarea", type="textarea", label="Why do you want to work at Acme?", name="why"),
        ]

    return FakePage(clickables=[clickable(0, "Apply for this job")], on_click=open_form)


def _runtime(settings, profile, session, run_id):
    return build_runtime(
        settings,
        listings_path=settings.data_dir / "listings.json",
        session=session,
        repository=FileJobRepository(settings.data_dir),
        profile=profile,
        run_id=run_id,
        sleep=lambda _: None,
    )


def test_dry_run_pipeline_records_and_never_repeats(settings, profile):
    settings.data_dir.mkdir(parents=True)
    (settings.data_dir / "listings.json").write_text(
        json.dumps([{"id": "42", "source": "manual", "apply_url": APPLY_URL, "title": "Backend Engineer", "company": "Acme"}]),
        encoding="utf-8",
    )

    page = _job_page()
    first = _runtime(settings, profile, FakeSession(page), "run-one")
    summary = first.run(board="manual", max_applications=5)
    first.close()

    assert summary.state is RunState.STOPPED
    assert [result.status for result in summary.results] == [ApplyStatus.DRY_RUN]
    assert summary.applied_count == 1
    assert page.filled == {
        '[data-autoapply-control="0"]': "Alex",
        '[data-autoapply-control="1"]': "Carter",
        '[data-autoapply-control="2"]': "alex@example.com",
        '[data-autoapply-control="3"]': "+1 555 0100",
        '[data-autoapply-control="5"]': "I admire the team's focus on reliable tooling.",
    }
    assert len(page.uploads) == 1
    assert read_manifest(first.run_dir).dry_run is True

    events = read_events(first.run_log.path)
    result = [event for event in events if event.step == "result"][0]
    assert result.status == "dry-run"
    assert result.submit_policy == "pass"
    assert summarize_run(first.run_dir).attempts == 1

    second_session = FakeSession()
    second = _runtime(settings, profile, second_session, "run-two")
    assert second.repository.has_applied(APPLY_URL)

    again = second.run(board="manual")
    second.close()

    assert again.already_applied == 1
    assert again.results == []
    assert second_session.opened == []
    assert summarize_run(second.run_dir).attempts == 0
