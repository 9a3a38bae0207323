# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Foundation - Core enums and base contracts
# PURPOSE: Define status enums shared by runs, nodes and backends
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: RunStatus, NodeStatus, JobResult, ExecutionStatus
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the workflow orchestration core.

These enums cross every boundary:
- Scheduler (node state machine)
- Execution backend (completion reports)
- Persistence (JSONB snapshots)
- HTTP API (responses)
"""

from enum import Enum


# ============================================================================
# STATUS ENUMS
# ============================================================================

class RunStatus(str, Enum):
    """
    Workflow run lifecycle states.

    State transitions:
        PENDING -> RUNNING -> SUCCESS
                           -> FAILURE
                           -> CANCELLED
        PENDING -> FAILURE (structural error, nothing dispatched)
    """
    PENDING = "pending"          # Run accepted, graph not yet driven
    RUNNING = "running"          # Scheduler loop active
    SUCCESS = "success"          # Every reachable node succeeded or was skipped
    FAILURE = "failure"          # Structural error or a non-skipped node failed
    CANCELLED = "cancelled"      # Externally cancelled

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no further transitions)."""
        return self in (RunStatus.SUCCESS, RunStatus.FAILURE, RunStatus.CANCELLED)


class NodeStatus(str, Enum):
    """
    Job node lifecycle states within a run.

    State transitions:
        BLOCKED -> READY -> RUNNING -> SUCCESS
                                    -> FAILURE
                                    -> CANCELLED
        BLOCKED -> SKIPPED (if expression falsy)
        BLOCKED/READY -> CANCELLED (run cancelled, fail-fast)
    """
    BLOCKED = "blocked"          # Waiting for needed jobs
    READY = "ready"              # Needs satisfied, awaiting dispatch / group slot
    RUNNING = "running"          # Dispatched to the execution backend
    SUCCESS = "success"          # Finished successfully
    FAILURE = "failure"          # Finished with error (incl. timeout)
    SKIPPED = "skipped"          # Never executed, if expression was falsy
    CANCELLED = "cancelled"      # Cancelled before or during execution

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in (
            NodeStatus.SUCCESS,
            NodeStatus.FAILURE,
            NodeStatus.SKIPPED,
            NodeStatus.CANCELLED,
        )

    def is_active(self) -> bool:
        """Check if the node still needs scheduler attention."""
        return self in (NodeStatus.BLOCKED, NodeStatus.READY, NodeStatus.RUNNING)


class JobResult(str, Enum):
    """
    Aggregated result of a job across all its matrix nodes.

    This is the value exposed to expressions as needs.<job>.result.
    """
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class ExecutionStatus(str, Enum):
    """
    Completion status reported by an execution backend.

    Simpler than NodeStatus - a backend just runs and reports.
    """
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["RunStatus", "NodeStatus", "JobResult", "ExecutionStatus"]
