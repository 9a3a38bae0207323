# ============================================================================
# JOB NODE MODEL
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core model - Node runtime state
# PURPOSE: Track state of each (matrix-expanded) job instance within a run
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: JobNode, make_node_id
# DEPENDENCIES: pydantic
# ============================================================================
"""
Job Node Model

JobNode tracks the runtime state of one concrete job instance within a run.

Key concept:
- WorkflowDefinition.JobSpec = TEMPLATE (what to do)
- JobNode = INSTANCE (runtime state for one run, one matrix combination)

Each run creates one JobNode per job (or per matrix combination).
Only the scheduler mutates nodes; terminal nodes are immutable.
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, computed_field

from core.contracts import NodeStatus


def make_node_id(job_name: str, matrix: Optional[Dict[str, Any]] = None) -> str:
    """
    Build a deterministic node id: job name plus a hash of the matrix values.

    Non-matrix jobs use the bare job name.
    """
    if not matrix:
        return job_name
    canonical = json.dumps(matrix, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{job_name}-{digest[:8]}"


def make_display_name(job_name: str, matrix: Optional[Dict[str, Any]] = None) -> str:
    """Human label, e.g. 'test (linux, 3.12)'."""
    if not matrix:
        return job_name
    values = ", ".join(str(v) for v in matrix.values())
    return f"{job_name} ({values})"


class JobNode(BaseModel):
    """
    Runtime state of a job instance within a workflow run.

    Lifecycle:
        1. Created BLOCKED at graph-build time (or on dynamic expansion)
        2. READY when every needed node is terminal and `if` is truthy
        3. RUNNING when dispatched to the execution backend
        4. SUCCESS / FAILURE / CANCELLED when the backend reports
        5. SKIPPED instead of READY when `if` is falsy
    """

    node_id: str = Field(..., max_length=128)
    job_name: str = Field(..., max_length=100)
    display_name: str = ""
    matrix: Dict[str, Any] = Field(default_factory=dict)

    status: NodeStatus = Field(default=NodeStatus.BLOCKED)

    # Explicit flags consulted by the scheduler
    run_if_always: bool = False
    continue_on_error: bool = False

    # Execution linkage (set when dispatched)
    handle_id: Optional[str] = Field(default=None, max_length=128)
    concurrency_group: Optional[str] = None

    # Results (outputs sealed at terminal transition)
    outputs: Dict[str, str] = Field(default_factory=dict)
    error_type: Optional[str] = Field(default=None, max_length=64)
    error_message: Optional[str] = Field(default=None, max_length=2000)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """Check if node is in a terminal state."""
        return self.status.is_terminal()

    @computed_field
    @property
    def execution_duration_seconds(self) -> Optional[float]:
        """Calculate execution duration if started."""
        if not self.started_at:
            return None
        end_time = self.completed_at or datetime.utcnow()
        return (end_time - self.started_at).total_seconds()

    def can_transition_to(self, new_status: NodeStatus) -> bool:
        """
        Validate if a status transition is allowed.

        Valid transitions:
            BLOCKED -> READY, SKIPPED, CANCELLED
            READY -> RUNNING, CANCELLED, FAILURE (evaluation error)
            RUNNING -> SUCCESS, FAILURE, CANCELLED
            SUCCESS, FAILURE, SKIPPED, CANCELLED -> (none, terminal)
        """
        allowed = {
            NodeStatus.BLOCKED: {NodeStatus.READY, NodeStatus.SKIPPED,
                                 NodeStatus.CANCELLED, NodeStatus.FAILURE},
            NodeStatus.READY: {NodeStatus.RUNNING, NodeStatus.CANCELLED, NodeStatus.FAILURE},
            NodeStatus.RUNNING: {NodeStatus.SUCCESS, NodeStatus.FAILURE, NodeStatus.CANCELLED},
        }
        return new_status in allowed.get(self.status, set())

    def _transition(self, new_status: NodeStatus) -> None:
        if not self.can_transition_to(new_status):
            raise ValueError(
                f"Cannot transition node {self.node_id} from "
                f"{self.status.value} to {new_status.value}"
            )
        self.status = new_status
        self.updated_at = datetime.utcnow()

    def mark_ready(self) -> None:
        """Mark node as ready (needs satisfied, if truthy)."""
        self._transition(NodeStatus.READY)

    def mark_running(self, handle_id: str) -> None:
        """Mark node as running (dispatched to the backend)."""
        self._transition(NodeStatus.RUNNING)
        self.handle_id = handle_id
        self.started_at = datetime.utcnow()

    def mark_success(self, outputs: Optional[Dict[str, str]] = None) -> None:
        """Mark node as completed successfully, sealing its outputs."""
        self._transition(NodeStatus.SUCCESS)
        self.outputs = dict(outputs or {})
        self.completed_at = datetime.utcnow()

    def mark_failure(self, error_message: str, error_type: str = "ExecutionError") -> None:
        """Mark node as failed."""
        self._transition(NodeStatus.FAILURE)
        self.error_type = error_type
        self.error_message = error_message[:2000]
        self.completed_at = datetime.utcnow()

    def mark_skipped(self) -> None:
        """Mark node as skipped (if expression falsy)."""
        self._transition(NodeStatus.SKIPPED)
        self.completed_at = datetime.utcnow()

    def mark_cancelled(self, reason: Optional[str] = None) -> None:
        """Mark node as cancelled."""
        self._transition(NodeStatus.CANCELLED)
        if reason:
            self.error_message = reason[:2000]
        self.completed_at = datetime.utcnow()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["JobNode", "make_node_id", "make_display_name"]
