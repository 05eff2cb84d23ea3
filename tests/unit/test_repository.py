import json

import pytest

from autoapply.core.config import Settings
from autoapply.core.enums import ApplyStatus
from autoapply.services.listings import JobListing
from autoapply.services.repository import (
    FileJobRepository,
    InMemoryJobRepository,
    MissingFieldsLedger,
    SqlJobRepository,
    build_job_repository,
)
from autoapply.services.results import ApplyResult

LISTING = JobListing(
    id="42",
    source="greenhouse",
    apply_url="https://job-boards.greenhouse.io/acme/jobs/42?gh_src=feed",
    title="Backend Engineer",
    company="Acme",
    company_slug="acme",
)


def _result(status):
    return ApplyResult(listing_id=LISTING.id, status=status, message=status.value)


@pytest.fixture(params=["memory", "file", "sql"])
def repository(request, tmp_path):
    if request.param == "memory":
        repo = InMemoryJobRepository()
    elif request.param == "file":
        repo = FileJobRepository(tmp_path)
    else:
        repo = SqlJobRepository.from_url(f"sqlite:///{tmp_path / 'autoapply.db'}")
    yield repo
    repo.close()


def test_attempted_outcome_is_recorded_by_identity_and_url(repository):
    repository.upsert(LISTING)
    assert repository.has_applied(LISTING.identity) is False

    assert repository.mark_applied(LISTING, _result(ApplyStatus.DRY_RUN)) is True

    assert repository.has_applied("greenhouse:42")
    assert repository.has_applied("https://job-boards.greenhouse.io/acme/jobs/42/")
    assert not repository.has_applied("greenhouse:43")
    assert [entry.status for entry in repository.list_applied()] == ["dry-run"]


@pytest.mark.parametrize("status", [ApplyStatus.SKIPPED, ApplyStatus.FAILED])
def test_skipped_and_failed_outcomes_are_not_recorded(repository, status):
    assert repository.mark_applied(LISTING, _result(status)) is False
    assert repository.has_applied(LISTING.identity) is False


def test_marking_twice_keeps_one_entry(repository):
    repository.mark_applied(LISTING, _result(ApplyStatus.DRY_RUN))
    repository.mark_applied(LISTING, _result(ApplyStatus.SUBMITTED))

    entries = repository.list_applied()
    assert len(entries) == 1
    assert entries[0].status == "submitted"


def test_clear_removes_entry(repository):
    repository.mark_applied(LISTING, _result(ApplyStatus.SUBMITTED))

    assert repository.clear(LISTING.apply_url) is True
    assert repository.has_applied(LISTING.identity) is False
    assert repository.clear(LISTING.apply_url) is False


def test_file_repository_survives_restart(tmp_path):
    first = FileJobRepository(tmp_path)
    first.upsert(LISTING)
    first.mark_applied(LISTING, _result(ApplyStatus.DRY_RUN))

    second = FileJobRepository(tmp_path)

    assert second.has_applied(LISTING.identity)
    assert [listing.id for listing in second.listings()] == ["42"]
    assert json.loads((tmp_path / "applied_jobs.json").read_text())[0]["identity"] == "greenhouse:42"
    assert not (tmp_path / "applied_jobs.json.tmp").exists()


def test_corrupt_ledger_fails_loudly(tmp_path):
    (tmp_path / "applied_jobs.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(ValueError, match="not valid JSON"):
        FileJobRepository(tmp_path)


def test_build_job_repository_backends(tmp_path):
    assert isinstance(build_job_repository(Settings(_env_file=None, repository_backend="memory")), InMemoryJobRepository)
    assert isinstance(
        build_job_repository(Settings(_env_file=None, repository_backend="file", data_dir=tmp_path)),
        FileJobRepository,
    )
    with pytest.raises(ValueError):
        build_job_repository(Settings(_env_file=None, repository_backend="mongo"))


def test_missing_fields_ledger_appends_entries(tmp_path):
    ledger = MissingFieldsLedger(tmp_path / "missing_fields.json")
    missing = [{"field": "location", "reason": "low confidence", "hint": "Country"}]

    ledger.append(run_id="run-1", listing_id="42", apply_type="greenhouse", missing=missing)
    ledger.append(run_id="run-1", listing_id="43", apply_type="greenhouse", missing=[])
    ledger.append(run_id="run-2", listing_id="44", apply_type="lever", missing=missing)

    entries = ledger.entries()
    assert [entry["listing_id"] for entry in entries] == ["42", "44"]
    assert entries[0]["missing"] == missing
    assert entries[1]["run_id"] == "run-2"
