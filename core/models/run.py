# ============================================================================
# WORKFLOW RUN MODEL
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core model - Run instance (workflow execution)
# PURPOSE: Track one invocation of a workflow and all its job nodes
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: WorkflowRun
# DEPENDENCIES: pydantic
# ============================================================================
"""
Workflow Run Model

A WorkflowRun represents one invocation of a workflow definition.

The run owns its JobNodes exclusively. It pins a copy of the workflow
definition so that a reload after restart rebuilds the same graph.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, computed_field

from core.contracts import NodeStatus, RunStatus
from core.models.events import EventType, RunEvent
from core.models.node import JobNode
from core.models.workflow import WorkflowDefinition


def new_run_id() -> str:
    """Generate a run identifier."""
    return f"run-{uuid.uuid4().hex[:16]}"


class WorkflowRun(BaseModel):
    """
    One execution of a workflow.

    Lifecycle:
        1. Created PENDING when a trigger event is accepted
        2. RUNNING while the scheduler drives its nodes
        3. SUCCESS / FAILURE / CANCELLED when no node is active
    """

    run_id: str = Field(default_factory=new_run_id, max_length=64)
    workflow: WorkflowDefinition

    # Trigger context and global environment
    event: Dict[str, Any] = Field(default_factory=dict)
    env: Dict[str, Any] = Field(default_factory=dict)

    # Node instances (insertion order = graph build order)
    nodes: Dict[str, JobNode] = Field(default_factory=dict)

    # Jobs whose dynamic matrix has not been expanded yet
    deferred_jobs: List[str] = Field(default_factory=list)

    status: RunStatus = Field(default=RunStatus.PENDING)
    error: Optional[str] = Field(default=None, description="First structural error, verbatim")
    cancel_requested: bool = False

    events: List[RunEvent] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @computed_field
    @property
    def workflow_id(self) -> str:
        """Workflow identifier of the pinned definition."""
        return self.workflow.workflow_id

    @computed_field
    @property
    def is_terminal(self) -> bool:
        """Check if the run has finished."""
        return self.status.is_terminal()

    def nodes_for_job(self, job_name: str) -> List[JobNode]:
        """All nodes instantiated from one JobSpec, in build order."""
        return [n for n in self.nodes.values() if n.job_name == job_name]

    def nodes_with_status(self, *statuses: NodeStatus) -> List[JobNode]:
        """Nodes currently in any of the given states."""
        return [n for n in self.nodes.values() if n.status in statuses]

    def has_active_nodes(self) -> bool:
        """True while anything is blocked, ready, running or deferred."""
        return bool(self.deferred_jobs) or any(
            n.status.is_active() for n in self.nodes.values()
        )

    def record(
        self,
        event_type: EventType,
        node_id: Optional[str] = None,
        message: Optional[str] = None,
        **event_data: Any,
    ) -> RunEvent:
        """Append an event to the run timeline."""
        event = RunEvent(
            event_type=event_type,
            node_id=node_id,
            message=message,
            event_data=event_data,
        )
        self.events.append(event)
        return event

    def node_summary(self) -> Dict[str, int]:
        """Count nodes per status."""
        summary: Dict[str, int] = {}
        for node in self.nodes.values():
            summary[node.status.value] = summary.get(node.status.value, 0) + 1
        return summary


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["WorkflowRun", "new_run_id"]
