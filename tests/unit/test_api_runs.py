import pytest
from fastapi.testclient import TestClient

from autoapply.api.deps import get_run_controller
from autoapply.api.main import app
from autoapply.core.config import get_settings
from autoapply.services.run_log import RunLog, RunManifest, utcnow
from autoapply.services.runtime import RunController, build_runtime
from tests.fakes import FakePage, FakeSession

HEADERS = {"X-API-Key": "test-key"}


@pytest.fixture
def api_settings(settings):
    return settings.model_copy(update={"local_api_key": "test-key"})


@pytest.fixture
def controller(api_settings, profile):
    def factory(settings, listings=None):
        return build_runtime(
            settings,
            listings=listings,
            session=FakeSession(factory=FakePage),
            profile=profile,
            sleep=lambda _: None,
        )

    return RunController(api_settings, factory=factory)


@pytest.fixture
def client(api_settings, controller):
    app.dependency_overrides[get_settings] = lambda: api_settings
    app.dependency_overrides[get_run_controller] = lambda: controller
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_healthz_is_open(client):
    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_runs_require_api_key(client):
    assert client.get("/runs/current").status_code == 401
    assert client.get("/runs/current", headers={"X-API-Key": "wrong"}).status_code == 401


def test_current_run_is_404_before_start(client):
    assert client.get("/runs/current", headers=HEADERS).status_code == 404


def test_start_run_and_read_audit(client, controller):
    response = client.post(
        "/runs",
        headers=HEADERS,
        json={"urls": ["https://careers.acme.example/jobs/77"], "max_applications": 1},
    )
    assert response.status_code == 202
    run_id = response.json()["run_id"]

    controller.join(10)

    current = client.get("/runs/current", headers=HEADERS).json()
    assert current["run_id"] == run_id
    assert current["state"] == "stopped"

    detail = client.get(f"/runs/{run_id}", headers=HEADERS)
    assert detail.status_code == 200
    body = detail.json()
    assert body["summary"]["board"] == "manual"
    assert body["summary"]["skipped"] == 1
    assert body["listings"][0]["status"] == "skipped"

    listing = client.get(f"/runs/{run_id}/listings/77", headers=HEADERS)
    assert listing.status_code == 200
    assert listing.json()["reason"] == "no apply button"

    assert [run["run_id"] for run in client.get("/runs", headers=HEADERS).json()] == [run_id]


def test_control_endpoints_report_acceptance(client, controller):
    client.post("/runs", headers=HEADERS, json={"urls": ["https://careers.acme.example/jobs/77"]})
    controller.join(10)

    pause = client.post("/runs/current/pause", headers=HEADERS).json()
    release = client.post("/runs/current/verification", headers=HEADERS).json()
    stop = client.post("/runs/current/stop", headers=HEADERS).json()

    assert pause["accepted"] is False
    assert release["accepted"] is False
    assert stop["accepted"] is True
    assert stop["status"]["state"] == "stopped"


def test_unknown_run_is_404(client, api_settings):
    assert client.get("/runs/nope", headers=HEADERS).status_code == 404
    assert client.get("/runs/..%2Fdata", headers=HEADERS).status_code == 404


def test_run_summary_uses_manifest(client, api_settings):
    log = RunLog(api_settings.runs_dir / "20260301120000000_abcdef", "20260301120000000_abcdef")
    log.write_manifest(
        RunManifest(
            run_id="20260301120000000_abcdef",
            started_at=utcnow(),
            board="lever",
            dry_run=True,
            max_applications=3,
        )
    )

    body = client.get("/runs/20260301120000000_abcdef", headers=HEADERS).json()

    assert body["summary"]["board"] == "lever"
    assert body["listings"] == []
