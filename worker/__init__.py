# ============================================================================
# WORKER MODULE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Execution backend components
# PURPOSE: Backend contract and the in-process backend
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Worker Module

Components that execute job nodes on behalf of the scheduler:
- contracts: dispatch request, handle, result, callbacks, backend ABC
- executor: in-process step executor and LocalExecutionBackend
"""

from worker.contracts import (
    DispatchRequest,
    ExecutionHandle,
    ExecutionResult,
    ExecutionCallbacks,
    ExecutionBackend,
)
from worker.executor import (
    StepExecutor,
    LocalExecutionBackend,
)

__all__ = [
    # Contracts
    "DispatchRequest",
    "ExecutionHandle",
    "ExecutionResult",
    "ExecutionCallbacks",
    "ExecutionBackend",
    # Executor
    "StepExecutor",
    "LocalExecutionBackend",
]
