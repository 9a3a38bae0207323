# ============================================================================
# API ROUTE TESTS
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Tests - HTTP endpoints
# PURPOSE: Verify run, workflow and status endpoints end to end
# CREATED: 14 OCT 2026
# ============================================================================
"""
API Route Tests

Uses FastAPI TestClient against the real router with an in-process
Orchestrator (local backend, in-memory repository). The client is used as
a context manager so every request shares one event loop and runs keep
progressing between requests.

Run with:
    pytest tests/test_api.py -v
"""

import time
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.routes import router, set_services
from core.config import SchedulerDefaults
from infrastructure.storage import MemoryBlobStorage
from orchestrator.loop import Orchestrator
from repositories.run_repo import MemoryRunRepository
from services.workflow_service import WorkflowService, parse_workflow


# ============================================================================
# FIXTURES
# ============================================================================

BUILD_AND_SHIP = {
    "workflow_id": "ship",
    "name": "Build and ship",
    "jobs": {
        "build": {
            "steps": [
                {"id": "v", "uses": "set-output", "with": {"version": "2.0"}},
                {"uses": "upload-artifact", "with": {"name": "bundle", "content": "bits"}},
            ],
            "outputs": {"version": "${{ steps.v.outputs.version }}"},
        },
        "ship": {
            "needs": "build",
            "steps": [{"uses": "echo", "with": {"message": "${{ needs.build.outputs.version }}"}}],
        },
    },
}

SLOW = {
    "workflow_id": "slow",
    "jobs": {"wait": {"steps": [{"uses": "sleep", "with": {"seconds": 30}}]}},
}


def _make_test_app():
    """Create a test FastAPI app with the run routes and a live orchestrator."""
    app = FastAPI()
    app.include_router(router, prefix="/api/v1")

    workflow_service = WorkflowService("/nonexistent-workflows-dir")
    workflow_service.load_all()
    workflow_service.register(parse_workflow(BUILD_AND_SHIP))
    workflow_service.register(parse_workflow(SLOW))

    orchestrator = Orchestrator(
        workflow_service,
        repository=MemoryRunRepository(),
        blob_storage=MemoryBlobStorage(),
        settings=SchedulerDefaults(cancel_grace_seconds=0.2),
        poll_interval=0.05,
    )
    set_services(orchestrator, workflow_service)
    return app


@pytest.fixture
def client():
    with TestClient(_make_test_app()) as test_client:
        yield test_client
    set_services(None, None)


def _wait_for(client, run_id, statuses=("success", "failure", "cancelled"), timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/v1/runs/{run_id}").json()
        if body["run"]["status"] in statuses:
            return body
        time.sleep(0.02)
    raise AssertionError(f"Run {run_id} did not reach {statuses}")


# ============================================================================
# WORKFLOWS
# ============================================================================

class TestWorkflowRoutes:

    def test_list_workflows(self, client):
        response = client.get("/api/v1/workflows")
        assert response.status_code == 200
        body = response.json()
        assert {w["workflow_id"] for w in body["workflows"]} == {"ship", "slow"}
        assert body["errors"] == {}

    def test_get_workflow(self, client):
        body = client.get("/api/v1/workflows/ship").json()
        assert body["name"] == "Build and ship"
        assert body["jobs"] == ["build", "ship"]

    def test_unknown_workflow(self, client):
        assert client.get("/api/v1/workflows/nope").status_code == 404


# ============================================================================
# RUNS
# ============================================================================

class TestRunRoutes:

    def test_submit_and_inspect(self, client):
        response = client.post("/api/v1/runs", json={"workflow_id": "ship"})
        assert response.status_code == 202
        run_id = response.json()["run_id"]

        body = _wait_for(client, run_id)
        assert body["run"]["status"] == "success"
        assert body["run"]["node_summary"] == {"success": 2}
        assert [n["node_id"] for n in body["nodes"]] == ["build", "ship"]
        assert body["events"][0]["event_type"] == "run_created"

        outputs = client.get(f"/api/v1/runs/{run_id}/nodes/build/outputs").json()
        assert outputs == {
            "run_id": run_id,
            "node_id": "build",
            "status": "success",
            "outputs": {"version": "2.0"},
        }

        artifacts = client.get(f"/api/v1/runs/{run_id}/artifacts").json()
        assert [a["name"] for a in artifacts["artifacts"]] == ["bundle"]

    def test_inline_workflow(self, client):
        doc = {"jobs": {"only": {"steps": [{"uses": "echo"}]}}}
        response = client.post("/api/v1/runs", json={"workflow": doc})
        assert response.status_code == 202
        body = _wait_for(client, response.json()["run_id"])
        assert body["run"]["workflow_id"] == "inline"
        assert body["run"]["status"] == "success"

    def test_invalid_inline_workflow(self, client):
        response = client.post("/api/v1/runs", json={"workflow": {"jobs": ["not", "a", "map"]}})
        assert response.status_code == 422

    def test_missing_workflow_reference(self, client):
        assert client.post("/api/v1/runs", json={"event": {}}).status_code == 422

    def test_unknown_workflow(self, client):
        assert client.post("/api/v1/runs", json={"workflow_id": "nope"}).status_code == 404

    def test_structural_error_is_accepted_as_failed_run(self, client):
        doc = {"jobs": {"a": {"needs": "ghost"}}}
        response = client.post("/api/v1/runs", json={"workflow": doc})
        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "failure"
        assert "ghost" in body["error"]

    def test_idempotent_run_id(self, client):
        first = client.post("/api/v1/runs", json={"workflow_id": "ship", "run_id": "r-1"}).json()
        _wait_for(client, "r-1")
        second = client.post("/api/v1/runs", json={"workflow_id": "ship", "run_id": "r-1"}).json()
        assert first["run_id"] == second["run_id"] == "r-1"
        assert second["status"] == "success"

    def test_list_runs(self, client):
        ship = client.post("/api/v1/runs", json={"workflow_id": "ship"}).json()["run_id"]
        _wait_for(client, ship)
        client.post("/api/v1/runs", json={"workflow": {"jobs": {"a": {"needs": "a"}}}})

        assert client.get("/api/v1/runs").json()["total"] == 2
        failed = client.get("/api/v1/runs", params={"status": "failure"}).json()
        assert [r["workflow_id"] for r in failed["runs"]] == ["inline"]
        assert client.get("/api/v1/runs", params={"limit": 0}).status_code == 422

    def test_nodes_filter(self, client):
        run_id = client.post("/api/v1/runs", json={"workflow_id": "ship"}).json()["run_id"]
        _wait_for(client, run_id)
        body = client.get(f"/api/v1/runs/{run_id}/nodes", params={"status": "success"}).json()
        assert body["total"] == 2
        assert client.get(f"/api/v1/runs/{run_id}/nodes", params={"status": "skipped"}).json()["total"] == 0

    def test_unknown_run_and_node(self, client):
        assert client.get("/api/v1/runs/nope").status_code == 404
        assert client.get("/api/v1/runs/nope/artifacts").status_code == 404
        run_id = client.post("/api/v1/runs", json={"workflow_id": "ship"}).json()["run_id"]
        assert client.get(f"/api/v1/runs/{run_id}/nodes/ghost/outputs").status_code == 404

    def test_cancel_run(self, client):
        run_id = client.post("/api/v1/runs", json={"workflow_id": "slow"}).json()["run_id"]
        _wait_for(client, run_id, statuses=("running",))

        response = client.post(f"/api/v1/runs/{run_id}/cancel")
        assert response.status_code == 202
        assert response.json()["cancel_requested"] is True

        body = _wait_for(client, run_id)
        assert body["run"]["status"] == "cancelled"
        assert body["nodes"][0]["status"] == "cancelled"

    def test_cancel_unknown_run(self, client):
        assert client.post("/api/v1/runs/nope/cancel").status_code == 404


# ============================================================================
# STATUS
# ============================================================================

class TestStatusRoute:

    def test_orchestrator_status(self, client):
        body = client.get("/api/v1/orchestrator/status").json()
        assert body["backend"] == "local"
        assert body["poll_interval_seconds"] == 0.05
        assert body["metrics"]["runs_submitted"] == 0
        assert body["concurrency_groups"] == {}

    def test_services_not_initialized(self):
        app = FastAPI()
        app.include_router(router, prefix="/api/v1")
        set_services(None, None)
        with TestClient(app) as test_client:
            assert test_client.get("/api/v1/orchestrator/status").status_code == 500
            assert test_client.get("/api/v1/workflows").status_code == 500


# ============================================================================
# APPLICATION
# ============================================================================

class TestMainApp:

    def test_lifespan_and_probes(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.delenv("POSTGRES_HOST", raising=False)
        monkeypatch.delenv("ARTIFACT_STORAGE_ACCOUNT", raising=False)
        monkeypatch.setenv("WORKFLOWS_DIR", str(Path(__file__).parent.parent / "workflows"))
        import main

        with TestClient(main.app) as test_client:
            assert test_client.get("/livez").json() == {"status": "ok"}
            assert test_client.get("/").json()["service"] == "Runflow"
            workflows = test_client.get("/api/v1/workflows").json()["workflows"]
            assert {w["workflow_id"] for w in workflows} == {"ci", "fan-out"}
            assert test_client.get("/api/v1/orchestrator/status").json()["status"] == "running"
        set_services(None, None)
