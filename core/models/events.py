# ============================================================================
# RUN EVENT MODEL
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core model - Execution timeline events
# PURPOSE: Track execution milestones for debugging/auditing
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: RunEvent, EventType
# DEPENDENCIES: pydantic, enum
# ============================================================================
"""
Run Event Model

RunEvent records execution milestones on the run timeline.
Enables "last thing that worked" debugging for failed or cancelled runs.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events that can occur during a run."""

    # Run lifecycle
    RUN_CREATED = "run_created"
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_FAILED = "run_failed"
    RUN_CANCELLED = "run_cancelled"
    RUN_RESUMED = "run_resumed"

    # Node lifecycle
    NODE_READY = "node_ready"
    NODE_QUEUED = "node_queued"          # Waiting on a concurrency group slot
    NODE_DISPATCHED = "node_dispatched"
    NODE_SUCCEEDED = "node_succeeded"
    NODE_FAILED = "node_failed"
    NODE_SKIPPED = "node_skipped"
    NODE_CANCELLED = "node_cancelled"
    NODE_TIMEOUT = "node_timeout"
    NODE_EVICTED = "node_evicted"        # Cancelled by cancel-in-progress

    # Matrix
    MATRIX_EXPANDED = "matrix_expanded"


class RunEvent(BaseModel):
    """A single event in the run execution timeline."""

    event_type: EventType
    node_id: Optional[str] = Field(default=None, max_length=128)
    message: Optional[str] = Field(default=None, max_length=2000)
    event_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["RunEvent", "EventType"]
