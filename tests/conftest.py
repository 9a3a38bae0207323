# ============================================================================
# SHARED TEST FIXTURES
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Tests - Shared fixtures
# PURPOSE: Workflow factories and a scripted execution backend
# CREATED: 14 OCT 2026
# ============================================================================
"""
Shared fixtures.

ScriptedBackend completes nodes without running any handler: each job
name maps to a behaviour (success with step outputs, failure, hang until
cancelled, or a delayed success), so scheduler scenarios stay fast and
deterministic.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import pytest

from core.config import SchedulerDefaults
from core.models import WorkflowDefinition
from services.workflow_service import parse_workflow
from worker.contracts import (
    DispatchRequest,
    ExecutionBackend,
    ExecutionCallbacks,
    ExecutionHandle,
    ExecutionResult,
)


class ScriptedBackend(ExecutionBackend):
    """
    Backend whose outcome per job is scripted by the test.

    script values:
        {"steps": {...}}            success with these step outputs (default)
        {"fail": "message"}         failure
        {"hang": True}              never completes until cancelled
        {"delay": 0.05, ...}        complete after a delay
        callable(request) -> dict   any of the above, chosen per node
    """

    name = "scripted"

    def __init__(self, script: Optional[Dict[str, Dict[str, Any]]] = None):
        self.script = script or {}
        self.dispatched: List[Tuple[str, Dict[str, str]]] = []
        self.cancelled: List[str] = []
        self.running: Dict[str, asyncio.Task] = {}
        self.max_running = 0

    async def dispatch(self, request: DispatchRequest, callbacks: ExecutionCallbacks) -> ExecutionHandle:
        node = request.node
        handle = ExecutionHandle.new(request.run_id, node.node_id)
        self.dispatched.append((node.node_id, dict(request.env)))
        behaviour = self.script.get(node.job_name, {})
        if callable(behaviour):
            behaviour = behaviour(request)
        self.running[handle.handle_id] = asyncio.create_task(
            self._run(handle, request, behaviour, callbacks)
        )
        self.max_running = max(self.max_running, len(self.running))
        return handle

    async def _run(self, handle, request, behaviour, callbacks) -> None:
        if behaviour.get("hang"):
            await asyncio.Event().wait()
        await asyncio.sleep(behaviour.get("delay", 0))
        self.running.pop(handle.handle_id, None)
        if "fail" in behaviour:
            result = ExecutionResult.failure(behaviour["fail"], error_type="StepFailed")
        else:
            result = ExecutionResult.success(behaviour.get("steps", {}))
        await callbacks.on_complete(handle, result)

    async def cancel(self, handle: ExecutionHandle) -> None:
        self.cancelled.append(handle.node_id)
        task = self.running.pop(handle.handle_id, None)
        if task is not None:
            task.cancel()

    async def shutdown(self) -> None:
        for task in self.running.values():
            task.cancel()
        self.running.clear()

    def dispatched_jobs(self) -> List[str]:
        return [node_id for node_id, _ in self.dispatched]


@pytest.fixture
def make_workflow():
    """Factory: YAML-shaped mapping -> WorkflowDefinition."""
    def _make(jobs: Dict[str, Any], workflow_id: str = "wf", **extra: Any) -> WorkflowDefinition:
        return parse_workflow({"workflow_id": workflow_id, "jobs": jobs, **extra})
    return _make


@pytest.fixture
def scripted_backend():
    """Factory for ScriptedBackend instances."""
    return ScriptedBackend


@pytest.fixture
def fast_settings():
    """Scheduler settings with one timeout unit = 50ms."""
    return SchedulerDefaults(
        max_concurrent_nodes=16,
        timeout_unit_seconds=0.05,
        default_timeout_units=200,
        skipped_satisfies_needs=True,
        cancel_grace_seconds=0.1,
    )
