from datetime import datetime, timezone

from autoapply.services.run_log import (
    RunLog,
    RunManifest,
    list_runs,
    new_run_id,
    read_events,
    replay,
    run_details,
    safe_filename,
    summarize_run,
)


def _write_run(runs_dir, run_id, *, board="greenhouse"):
    log = RunLog(runs_dir / run_id, run_id)
    log.write_manifest(
        RunManifest(
            run_id=run_id,
            started_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
            board=board,
            dry_run=True,
            max_applications=5,
        )
    )
    log.event("42", "greenhouse", "attempt", title="Backend Engineer", company="Acme")
    log.event("42", "greenhouse", "field-skipped", status="skipped", field="location", reason="low confidence")
    log.event("42", "greenhouse", "submit-detect", status="ready-to-submit", reason="submit button detected")
    log.event(
        "42",
        "greenhouse",
        "submit-policy",
        status="pass",
        reason="all submit guards passed",
        submit_policy="pass",
        submit_policy_reason="all submit guards passed",
        screenshot_path=str(log.screenshot_path("42", "submit-detect")),
    )
    log.event("42", "greenhouse", "result", status="dry-run", reason="submit button detected")
    log.event("43", "greenhouse", "attempt", title="Data Engineer", company="Globex")
    log.event("43", "greenhouse", "skip", status="skipped", reason="no apply button")
    return log


def test_events_are_appended_as_json_lines(tmp_path):
    log = _write_run(tmp_path, "run-a")

    lines = log.path.read_text(encoding="utf-8").splitlines()
    events = read_events(log.path)

    assert len(lines) == 7
    assert [event.step for event in events][:2] == ["attempt", "field-skipped"]
    assert events[1].field == "location"
    assert '"hint"' not in lines[1]


def test_replay_rebuilds_per_listing_decisions(tmp_path):
    log = _write_run(tmp_path, "run-a")

    histories = replay(read_events(log.path))

    accepted = histories["42"]
    assert accepted.title == "Backend Engineer"
    assert accepted.submit_state == "ready-to-submit"
    assert accepted.submit_policy == "pass"
    assert accepted.submit_policy_reason == "all submit guards passed"
    assert accepted.status == "dry-run"
    assert accepted.last_step == "result"
    assert accepted.screenshots == [str(log.screenshot_path("42", "submit-detect"))]

    skipped = histories["43"]
    assert skipped.status == "skipped"
    assert skipped.reason == "no apply button"


def test_torn_final_line_is_skipped(tmp_path):
    log = _write_run(tmp_path, "run-a")
    with log.path.open("a", encoding="utf-8") as handle:
        handle.write('{"run_id": "run-a", "listing_id": "44", "ste')

    assert len(read_events(log.path)) == 7


def test_summarize_and_list_runs(tmp_path):
    _write_run(tmp_path, "20260301120000000_aaaaaa")
    _write_run(tmp_path, "20260302120000000_bbbbbb", board="lever")

    summary = summarize_run(tmp_path / "20260301120000000_aaaaaa")
    assert summary.board == "greenhouse"
    assert summary.dry_run is True
    assert summary.attempts == 2
    assert summary.skipped == 1
    assert summary.errors == 0
    assert summary.statuses == {"dry-run": 1, "skipped": 1}

    runs = list_runs(tmp_path, limit=1)
    assert [run.run_id for run in runs] == ["20260302120000000_bbbbbb"]
    assert list_runs(tmp_path / "missing") == []


def test_run_details_without_log_is_empty(tmp_path):
    (tmp_path / "empty").mkdir()

    assert run_details(tmp_path / "empty") == {}
    assert summarize_run(tmp_path / "empty").run_id == "empty"


def test_screenshot_names_are_filesystem_safe(tmp_path):
    log = RunLog(tmp_path / "run", "run")

    assert log.screenshot_path("gh/42?x", "before fill").name == "apply_gh-42-x_before-fill.png"
    assert safe_filename("") == "unknown"


def test_new_run_id_is_sortable():
    run_id = new_run_id(datetime(2026, 3, 1, 12, 0, 5, 123000, tzinfo=timezone.utc))

    assert run_id.startswith("20260301120005123_")
