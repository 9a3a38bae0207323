# ============================================================================
# ORCHESTRATOR TESTS
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Tests - Multi-run orchestration
# PURPOSE: Verify submit, wait, cancel, stop/resume, housekeeping and stats
# CREATED: 14 OCT 2026
# ============================================================================
"""
Orchestrator Tests

All runs use the in-process LocalExecutionBackend and an in-memory
repository shared between orchestrator instances to simulate restarts.

Run with:
    pytest tests/test_orchestrator.py -v
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from core.config import SchedulerDefaults
from core.contracts import NodeStatus, RunStatus
from infrastructure.storage import LocalBlobStorage, MemoryBlobStorage
from orchestrator.loop import Orchestrator
from repositories.run_repo import MemoryRunRepository
from services.run_store import RunStore
from services.workflow_service import WorkflowService, parse_workflow


WORKFLOWS = {
    "quick": {
        "jobs": {
            "hello": {
                "steps": [{"id": "say", "uses": "echo", "with": {"message": "hi ${{ github.actor }}"}}],
                "outputs": {"said": "${{ steps.say.outputs.message }}"},
            },
        },
    },
    "slow": {
        "jobs": {
            "wait": {"steps": [{"uses": "sleep", "with": {"seconds": 30}}]},
            "after": {"needs": "wait", "steps": [{"uses": "echo"}]},
        },
    },
    "artifacts": {
        "jobs": {
            "up": {
                "steps": [{
                    "uses": "upload-artifact",
                    "with": {"name": "report", "content": "ok", "retention-days": 1},
                }],
            },
        },
    },
    "cyclic": {
        "jobs": {"a": {"needs": "b"}, "b": {"needs": "a"}},
    },
}


@pytest.fixture
def workflow_service(tmp_path):
    service = WorkflowService(str(tmp_path))
    service.load_all()
    for workflow_id, doc in WORKFLOWS.items():
        service.register(parse_workflow(doc, default_id=workflow_id))
    return service


def _orchestrator(workflow_service, repository=None):
    return Orchestrator(
        workflow_service,
        repository=repository or MemoryRunRepository(),
        blob_storage=MemoryBlobStorage(),
        settings=SchedulerDefaults(cancel_grace_seconds=0.2),
        poll_interval=0.05,
    )


async def _until_running(orchestrator, run_id, node_id, timeout=5.0):
    async def poll():
        while (await orchestrator.get_run(run_id)).nodes[node_id].status != NodeStatus.RUNNING:
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout=timeout)


# ============================================================================
# SUBMIT / WAIT
# ============================================================================

class TestSubmit:

    def test_submit_and_wait(self, workflow_service):
        async def go():
            orchestrator = _orchestrator(workflow_service)
            await orchestrator.start()
            try:
                run = await orchestrator.submit("quick", event={"actor": "octo"})
                return await orchestrator.wait(run.run_id, timeout=5), orchestrator.stats
            finally:
                await orchestrator.stop()

        run, stats = asyncio.run(go())
        assert run.status == RunStatus.SUCCESS
        assert run.nodes["hello"].outputs == {"said": "hi octo"}
        assert stats["runs_submitted"] == 1
        assert stats["runs_finished"]["success"] == 1
        assert stats["active_runs"] == []

    def test_unknown_workflow(self, workflow_service):
        async def go():
            orchestrator = _orchestrator(workflow_service)
            await orchestrator.submit("nope")

        with pytest.raises(KeyError):
            asyncio.run(go())

    def test_structural_error_is_failed_run(self, workflow_service):
        async def go():
            orchestrator = _orchestrator(workflow_service)
            run = await orchestrator.submit("cyclic")
            stored = await orchestrator.get_run(run.run_id)
            return run, stored, orchestrator.stats

        run, stored, stats = asyncio.run(go())
        assert run.status == RunStatus.FAILURE
        assert "Cycle" in run.error
        assert stored.status == RunStatus.FAILURE
        assert stats["runs_finished"]["failure"] == 1

    def test_inline_definition(self, workflow_service):
        workflow = parse_workflow({"jobs": {"x": {"steps": [{"uses": "echo"}]}}}, default_id="inline")

        async def go():
            orchestrator = _orchestrator(workflow_service)
            run = await orchestrator.submit(workflow)
            return await orchestrator.wait(run.run_id, timeout=5)

        assert asyncio.run(go()).status == RunStatus.SUCCESS

    def test_run_id_is_idempotent(self, workflow_service):
        async def go():
            orchestrator = _orchestrator(workflow_service)
            first = await orchestrator.submit("slow", run_id="fixed")
            second = await orchestrator.submit("slow", run_id="fixed")
            active = orchestrator.stats["active_runs"]
            await orchestrator.stop()
            return first, second, active

        first, second, active = asyncio.run(go())
        assert first is second
        assert active == ["fixed"]

    def test_list_runs(self, workflow_service):
        async def go():
            orchestrator = _orchestrator(workflow_service)
            quick = await orchestrator.submit("quick")
            await orchestrator.wait(quick.run_id, timeout=5)
            await orchestrator.submit("cyclic")
            return (
                await orchestrator.list_runs(),
                await orchestrator.list_runs(workflow_id="quick"),
                await orchestrator.list_runs(status=RunStatus.FAILURE),
            )

        everything, quick, failed = asyncio.run(go())
        assert len(everything) == 2
        assert [r.workflow_id for r in quick] == ["quick"]
        assert [r.workflow_id for r in failed] == ["cyclic"]

    def test_get_unknown_run(self, workflow_service):
        with pytest.raises(KeyError):
            asyncio.run(_orchestrator(workflow_service).get_run("nope"))


# ============================================================================
# CANCEL
# ============================================================================

class TestCancel:

    def test_cancel_live_run(self, workflow_service):
        async def go():
            orchestrator = _orchestrator(workflow_service)
            run = await orchestrator.submit("slow")
            await _until_running(orchestrator, run.run_id, "wait")
            await orchestrator.cancel(run.run_id)
            return await orchestrator.wait(run.run_id, timeout=5)

        run = asyncio.run(go())
        assert run.status == RunStatus.CANCELLED
        assert run.node_summary() == {"cancelled": 2}

    def test_cancel_unknown_run(self, workflow_service):
        with pytest.raises(KeyError):
            asyncio.run(_orchestrator(workflow_service).cancel("nope"))

    def test_cancel_finished_run_is_noop(self, workflow_service):
        async def go():
            orchestrator = _orchestrator(workflow_service)
            run = await orchestrator.submit("quick")
            await orchestrator.wait(run.run_id, timeout=5)
            return await orchestrator.cancel(run.run_id)

        run = asyncio.run(go())
        assert run.status == RunStatus.SUCCESS
        assert run.cancel_requested is False


# ============================================================================
# STOP / RESUME
# ============================================================================

class TestResume:

    def test_stop_leaves_run_resumable(self, workflow_service):
        repository = MemoryRunRepository()

        async def go():
            first = _orchestrator(workflow_service, repository)
            await first.start()
            run = await first.submit("slow")
            await _until_running(first, run.run_id, "wait")
            await first.stop()
            interrupted = await repository.get_run(run.run_id)

            second = _orchestrator(workflow_service, repository)
            await second.start()
            try:
                resumed = second.stats["runs_resumed"]
                final = await second.wait(run.run_id, timeout=5)
            finally:
                await second.stop()
            return interrupted, resumed, final

        interrupted, resumed, final = asyncio.run(go())
        assert interrupted.status == RunStatus.RUNNING
        assert interrupted.nodes["wait"].status == NodeStatus.RUNNING
        assert resumed == 1
        assert final.nodes["wait"].error_type == "ExecutionLost"
        assert final.nodes["after"].status == NodeStatus.SKIPPED
        assert final.status == RunStatus.FAILURE

    def test_cancel_persisted_run(self, workflow_service):
        repository = MemoryRunRepository()

        async def go():
            first = _orchestrator(workflow_service, repository)
            run = await first.submit("slow")
            await _until_running(first, run.run_id, "wait")
            await first.stop()

            second = _orchestrator(workflow_service, repository)
            await second.start(resume=False)
            await second.cancel(run.run_id)
            final = await second.wait(run.run_id, timeout=5)
            await second.stop()
            return final

        final = asyncio.run(go())
        assert final.status == RunStatus.CANCELLED
        assert final.nodes["after"].status == NodeStatus.CANCELLED


# ============================================================================
# HOUSEKEEPING AND STATS
# ============================================================================

class TestHousekeeping:

    def test_purge_expired_artifacts(self, workflow_service):
        async def go():
            orchestrator = _orchestrator(workflow_service)
            run = await orchestrator.submit("artifacts")
            await orchestrator.wait(run.run_id, timeout=5)
            before = [a.name for a in orchestrator.store_for(run.run_id).list_artifacts()]
            purged = orchestrator.purge_expired_artifacts(datetime.utcnow() + timedelta(days=2))
            return run.run_id, before, purged

        run_id, before, purged = asyncio.run(go())
        assert before == ["report"]
        assert purged == {run_id: ["report"]}

    def test_stats_shape(self, workflow_service):
        async def go():
            orchestrator = _orchestrator(workflow_service)
            idle = orchestrator.stats
            await orchestrator.start()
            running = orchestrator.stats
            await orchestrator.stop()
            return idle, running, orchestrator.is_running

        idle, running, is_running = asyncio.run(go())
        assert idle["running"] is False
        assert idle["started_at"] is None
        assert running["running"] is True
        assert running["backend"] == "local"
        assert running["uptime_seconds"] >= 0
        assert running["concurrency_groups"] == {}
        assert is_running is False

    def test_purge_reaches_runs_from_earlier_process(self, workflow_service, tmp_path):
        root = str(tmp_path / "blobs")
        RunStore("run-old", LocalBlobStorage(root)).put_artifact("report", "ok", retention_days=1)

        blobs = LocalBlobStorage(root)
        orchestrator = Orchestrator(workflow_service, blob_storage=blobs)
        purged = orchestrator.purge_expired_artifacts(datetime.utcnow() + timedelta(days=5))

        assert purged == {"run-old": ["report"]}
        assert blobs.list("runs/run-old/artifacts/report/") == []
        assert orchestrator.store_for("run-old").list_artifacts() == []

    def test_finished_run_store_is_released(self, workflow_service):
        async def go():
            orchestrator = _orchestrator(workflow_service)
            run = await orchestrator.submit("artifacts")
            live = orchestrator.store_for(run.run_id) is orchestrator.store_for(run.run_id)
            await orchestrator.wait(run.run_id, timeout=5)
            first = orchestrator.store_for(run.run_id)
            second = orchestrator.store_for(run.run_id)
            return live, first, second

        live, first, second = asyncio.run(go())
        assert live is True
        assert first is not second
        assert [a.name for a in second.list_artifacts()] == ["report"]
