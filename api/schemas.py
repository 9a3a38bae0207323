# ============================================================================
# API SCHEMAS
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Request/Response schemas
# PURPOSE: Pydantic models for API validation
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
API Schemas

Request and response models for the API.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, model_validator

from core.contracts import NodeStatus, RunStatus
from core.models import Artifact, JobNode, RunEvent, WorkflowRun


# ============================================================================
# REQUEST SCHEMAS
# ============================================================================

class RunCreate(BaseModel):
    """
    Request to start a run.

    Either `workflow_id` (a loaded workflow) or an inline `workflow`
    document (YAML-shaped mapping) must be given.
    """
    workflow_id: Optional[str] = Field(None, max_length=64, description="Loaded workflow to run")
    workflow: Optional[Dict[str, Any]] = Field(None, description="Inline workflow document")
    event: Dict[str, Any] = Field(
        default_factory=dict,
        description="Trigger context, exposed as `github` / `event`"
    )
    env: Dict[str, Any] = Field(default_factory=dict, description="Run-level environment")
    run_id: Optional[str] = Field(
        None,
        max_length=64,
        description="Optional id for idempotent submission"
    )

    @model_validator(mode="after")
    def require_workflow(self) -> "RunCreate":
        if not self.workflow_id and not self.workflow:
            raise ValueError("Either workflow_id or workflow is required")
        return self

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "workflow_id": "ci",
                    "event": {"event_name": "push", "ref": "refs/heads/main"},
                    "env": {"LOG_LEVEL": "debug"},
                }
            ]
        }
    }


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

class NodeResponse(BaseModel):
    """Node state response."""
    node_id: str
    job_name: str
    display_name: str
    status: NodeStatus
    matrix: Dict[str, Any] = {}
    concurrency_group: Optional[str] = None
    outputs: Dict[str, str] = {}
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    continue_on_error: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_node(cls, node: JobNode) -> "NodeResponse":
        return cls(**node.model_dump(include=set(cls.model_fields)))


class RunResponse(BaseModel):
    """Run summary response."""
    run_id: str
    workflow_id: str
    status: RunStatus
    error: Optional[str] = None
    cancel_requested: bool = False
    node_summary: Dict[str, int] = {}
    deferred_jobs: List[str] = []
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_run(cls, run: WorkflowRun) -> "RunResponse":
        return cls(
            run_id=run.run_id,
            workflow_id=run.workflow_id,
            status=run.status,
            error=run.error,
            cancel_requested=run.cancel_requested,
            node_summary=run.node_summary(),
            deferred_jobs=list(run.deferred_jobs),
            created_at=run.created_at,
            started_at=run.started_at,
            completed_at=run.completed_at,
        )


class RunDetailResponse(BaseModel):
    """Detailed run response with nodes and timeline."""
    run: RunResponse
    nodes: List[NodeResponse]
    events: List[RunEvent] = []


class RunListResponse(BaseModel):
    """List of runs response."""
    runs: List[RunResponse]
    total: int


class OutputsResponse(BaseModel):
    """Sealed outputs of one node."""
    run_id: str
    node_id: str
    status: NodeStatus
    outputs: Dict[str, str] = {}


class ArtifactListResponse(BaseModel):
    """Artifacts of one run."""
    run_id: str
    artifacts: List[Artifact]


class WorkflowResponse(BaseModel):
    """Workflow definition response."""
    workflow_id: str
    name: str
    description: Optional[str] = None
    jobs: List[str] = []


class WorkflowListResponse(BaseModel):
    """List of workflows response."""
    workflows: List[WorkflowResponse]
    errors: Dict[str, str] = {}


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: Optional[str] = None
    run_id: Optional[str] = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "RunCreate",
    "NodeResponse",
    "RunResponse",
    "RunDetailResponse",
    "RunListResponse",
    "OutputsResponse",
    "ArtifactListResponse",
    "WorkflowResponse",
    "WorkflowListResponse",
    "ErrorResponse",
]
