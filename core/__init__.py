# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core module initialization
# PURPOSE: Export core contracts, errors and models
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================

from core.contracts import RunStatus, NodeStatus, JobResult, ExecutionStatus
from core.errors import (
    WorkflowError,
    GraphError,
    MatrixError,
    EvaluationError,
    JobTimeoutError,
)
from core.models import (
    WorkflowDefinition,
    JobSpec,
    JobNode,
    WorkflowRun,
    Artifact,
    EventType,
)

__all__ = [
    # Enums
    "RunStatus",
    "NodeStatus",
    "JobResult",
    "ExecutionStatus",
    "EventType",
    # Errors
    "WorkflowError",
    "GraphError",
    "MatrixError",
    "EvaluationError",
    "JobTimeoutError",
    # Models
    "WorkflowDefinition",
    "JobSpec",
    "JobNode",
    "WorkflowRun",
    "Artifact",
]
