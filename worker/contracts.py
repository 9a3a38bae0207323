# ============================================================================
# EXECUTION BACKEND CONTRACTS
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Scheduler <-> backend contract
# PURPOSE: Define dispatch requests, handles, results and callbacks
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Execution Backend Contracts

The scheduler never runs job steps itself. It hands a DispatchRequest to an
ExecutionBackend and gets an ExecutionHandle back; the backend later reports
through the ExecutionCallbacks it was given:

    handle = await backend.dispatch(request, callbacks)
    ...
    await callbacks.on_complete(handle, ExecutionResult.success(steps))
    await callbacks.on_timeout(handle)       # backend-detected timeout

The scheduler may preempt at any time with `await backend.cancel(handle)`.
A cancelled handle produces no further reports.

ExecutionResult.steps mirrors the `steps` expression context:

    {"build": {"outputs": {"version": "1.2.3"}, "outcome": "success"}}
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from core.contracts import ExecutionStatus
from core.models import JobNode, JobSpec
from orchestrator.engine.expressions import EvaluationContext
from services.run_store import RunStore

logger = logging.getLogger(__name__)


# ============================================================================
# REQUEST / HANDLE
# ============================================================================

@dataclass
class DispatchRequest:
    """Everything a backend needs to execute one node."""
    run_id: str
    node: JobNode
    job: JobSpec
    env: Dict[str, str] = field(default_factory=dict)

    # Expression context of the node (matrix, needs, env, ...)
    context: Optional[EvaluationContext] = None

    # Run-scoped store for artifact upload/download
    store: Optional[RunStore] = None


@dataclass(frozen=True)
class ExecutionHandle:
    """Opaque reference to one dispatched node execution."""
    handle_id: str
    run_id: str
    node_id: str
    dispatched_at: datetime

    @classmethod
    def new(cls, run_id: str, node_id: str) -> "ExecutionHandle":
        return cls(
            handle_id=f"h-{uuid.uuid4().hex[:12]}",
            run_id=run_id,
            node_id=node_id,
            dispatched_at=datetime.utcnow(),
        )


# ============================================================================
# RESULT
# ============================================================================

class ExecutionResult(BaseModel):
    """
    Completion report from a backend.

    steps: step id -> {"outputs": {...}, "outcome": "success"|"failure"}
    """

    status: ExecutionStatus = Field(...)
    steps: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    error_message: Optional[str] = Field(default=None, max_length=2000)
    error_type: Optional[str] = Field(default=None, max_length=64)
    duration_ms: Optional[int] = Field(default=None, ge=0)

    @classmethod
    def success(
        cls,
        steps: Optional[Dict[str, Dict[str, Any]]] = None,
        duration_ms: Optional[int] = None,
    ) -> "ExecutionResult":
        """Create a success result."""
        return cls(status=ExecutionStatus.SUCCESS, steps=steps or {}, duration_ms=duration_ms)

    @classmethod
    def failure(
        cls,
        error_message: str,
        error_type: str = "ExecutionError",
        steps: Optional[Dict[str, Dict[str, Any]]] = None,
        duration_ms: Optional[int] = None,
    ) -> "ExecutionResult":
        """Create a failure result."""
        return cls(
            status=ExecutionStatus.FAILURE,
            steps=steps or {},
            error_message=error_message[:2000] if error_message else None,
            error_type=error_type,
            duration_ms=duration_ms,
        )

    @classmethod
    def cancelled(cls, reason: Optional[str] = None) -> "ExecutionResult":
        """Create a cancelled result."""
        return cls(status=ExecutionStatus.CANCELLED, error_message=reason)


# ============================================================================
# CALLBACKS / BACKEND
# ============================================================================

class ExecutionCallbacks(ABC):
    """Implemented by the scheduler; invoked by backends."""

    @abstractmethod
    async def on_complete(self, handle: ExecutionHandle, result: ExecutionResult) -> None:
        """The node finished (success, failure or cancelled)."""

    @abstractmethod
    async def on_timeout(self, handle: ExecutionHandle) -> None:
        """The backend itself detected that the node ran out of time."""


class ExecutionBackend(ABC):
    """
    Executes nodes on behalf of the scheduler.

    Implementations own container/VM/runtime concerns, secret injection and
    log masking. The core only sees dispatch, completion and cancellation.
    """

    name: str = "backend"

    @abstractmethod
    async def dispatch(
        self,
        request: DispatchRequest,
        callbacks: ExecutionCallbacks,
    ) -> ExecutionHandle:
        """Start executing a node. Must return promptly."""

    @abstractmethod
    async def cancel(self, handle: ExecutionHandle) -> None:
        """Preempt a running node. Idempotent."""

    async def shutdown(self) -> None:
        """Release backend resources."""


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "DispatchRequest",
    "ExecutionHandle",
    "ExecutionResult",
    "ExecutionCallbacks",
    "ExecutionBackend",
]
