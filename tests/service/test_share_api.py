"""
Service-level test for the share ingest control API.

Drives the FastAPI app end to end: a job is launched over HTTP, runs on its
background thread against an in-memory share, and its outcome is observed
through the status endpoint and the ledger it leaves behind. The OS mount
facility is replaced by a recorder so the mount routes can run unprivileged.
"""

import inspect
import subprocess
import threading
import time

import pytest
from fastapi.testclient import TestClient

from app import main as main_module
from app.api import mounts as mounts_router
from app.main import app
from app.models.schemas import TERMINAL_STATUSES
from domains.share_ingest import mount as mount_module
from domains.share_ingest.scheduler import COMPLETED, BatchScheduler
from fakes import FakeShareClient, FakeTransfer

JOB_BODY = {"share": "//nas/docs", "username": "svc-ingest", "password": "hunter2"}


@pytest.fixture
def share_client(share_files) -> FakeShareClient:
    return FakeShareClient(share_files)


@pytest.fixture
def mount_commands(monkeypatch):
    commands = []

    def run(command, **kwargs):
        commands.append(command)
        returncode = 1 if command[0] == "findmnt" else 0
        return subprocess.CompletedProcess(command, returncode, "", "")

    monkeypatch.setattr(mount_module.subprocess, "run", run)
    return commands


@pytest.fixture
def api(settings, share_client, mount_commands, monkeypatch):
    """TestClient whose service objects run against the fakes."""
    monkeypatch.setattr(main_module, "settings", settings)

    with TestClient(app) as client:
        app.state.scheduler = BatchScheduler(
            app.state.registry,
            client=share_client,
            transfer=FakeTransfer(share_client),
            settings=settings,
        )
        yield client


def wait_for_terminal(api, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = api.get(f"/shares/jobs/{job_id}").json()
        if body["status"] in TERMINAL_STATUSES:
            return body
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


def test_job_runs_to_completion(api, settings):
    response = api.post("/shares/jobs", json={**JOB_BODY, "ignores": ["*.docx"]})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["share"] == "//nas/docs"

    status = wait_for_terminal(api, body["job_id"])

    assert status["status"] == "completed"
    assert status["progress"] == 100
    assert status["result"] == COMPLETED
    ledger = (settings.staging_root / "nas" / "docs" / "file_data.csv").read_text()
    assert "docs/a.txt,true," in ledger
    assert "e.docx" not in ledger


@pytest.mark.parametrize(
    "body",
    [
        {**JOB_BODY, "password": ""},
        {**JOB_BODY, "share": "//nas"},
        {**JOB_BODY, "share": "//nas/docs/../secret"},
    ],
)
def test_start_job_rejects_bad_requests(api, body):
    response = api.post("/shares/jobs", json=body)

    assert response.status_code == 400
    assert len(app.state.registry) == 0



def test_second_job_on_running_share_conflicts(api, share_files):
    release = threading.Event()
    for path in share_files:
        app.state.scheduler.transfer.hooks[path] = lambda: release.wait(5)

    try:
        first = api.post("/shares/jobs", json=JOB_BODY).json()["job_id"]
        response = api.post("/shares/jobs", json=JOB_BODY)

        assert response.status_code == 409
        assert "nas/docs" in response.json()["detail"]
    finally:
        release.set()

    assert wait_for_terminal(api, first)["status"] == "completed"

def test_status_of_unknown_job(api):
    response = api.get("/shares/jobs/does-not-exist")

    assert response.status_code == 404
    assert response.json()["detail"] == "Process not found"


def test_stop_single_job(api):
    job_id = app.state.registry.create()

    response = api.post(f"/shares/jobs/{job_id}/stop")

    assert response.status_code == 200
    assert response.json()["stopped"] == 1
    status = api.get(f"/shares/jobs/{job_id}").json()
    assert status["should_stop"] is True
    assert status["status"] == "started"

    assert api.post("/shares/jobs/missing/stop").status_code == 404


def test_stop_all_jobs(api):
    assert api.post("/shares/jobs/stop-all").status_code == 400

    first = app.state.registry.create()
    app.state.registry.create()

    response = api.post("/shares/jobs/stop-all")

    assert response.status_code == 200
    assert response.json()["stopped"] == 2
    assert api.get(f"/shares/jobs/{first}").status_code == 404


def test_accepted_extensions(api):
    extensions = api.get("/shares/accepts").json()["extensions"]

    assert ".pdf" in extensions
    assert ".txt" in extensions


def test_health_reports_active_jobs(api):
    app.state.registry.create()

    body = api.get("/health").json()

    assert body["status"] == "healthy"
    assert body["active_jobs"] == 1
    assert body["staging_writable"] is True
    assert body["sweeper_running"] is True


def test_mount_lifecycle(api, settings, mount_commands):
    assert api.get("/mounts").json() == []

    response = api.post("/mounts", json=JOB_BODY)

    assert response.status_code == 200
    record = response.json()
    assert record["status"] == "mounted"
    assert record["target_path"] == "//nas/docs"
    assert [c[0] for c in mount_commands] == ["mount"]

    assert [m["mount_id"] for m in api.get("/mounts").json()] == [record["mount_id"]]

    response = api.delete("/mounts", params={"mount_point": record["mount_point"]})

    assert response.status_code == 200
    assert response.json()["status"] == "unmounted"
    assert api.get("/mounts").json()[0]["status"] == "unmounted"


def test_mount_errors(api, monkeypatch):
    assert api.post("/mounts", json={**JOB_BODY, "share": "nas"}).status_code == 400
    assert api.delete("/mounts", params={"mount_point": "/nowhere"}).status_code == 404

    def refuse(command, **kwargs):
        if command[0] == "findmnt":
            return subprocess.CompletedProcess(command, 1, "", "")
        raise subprocess.CalledProcessError(32, command, stderr="mount error(13): Permission denied")

    monkeypatch.setattr(mount_module.subprocess, "run", refuse)

    response = api.post("/mounts", json=JOB_BODY)

    assert response.status_code == 502
    assert "Permission denied" in response.json()["detail"]
    assert api.get("/mounts").json()[0]["status"] == "failed"


def test_mount_routes_run_in_threadpool():
    """Mount routes shell out, so they must not block the event loop."""
    for route in (mounts_router.list_mounts, mounts_router.mount_share, mounts_router.unmount_share):
        assert not inspect.iscoroutinefunction(route)
