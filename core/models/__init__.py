# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

All Pydantic models for the workflow orchestration core.
"""

from core.models.workflow import (
    WorkflowDefinition,
    JobSpec,
    StepSpec,
    StrategySpec,
    MatrixSpec,
    ConcurrencySpec,
)
from core.models.node import JobNode, make_node_id, make_display_name
from core.models.run import WorkflowRun, new_run_id
from core.models.artifact import Artifact
from core.models.events import RunEvent, EventType

__all__ = [
    # Workflow
    "WorkflowDefinition",
    "JobSpec",
    "StepSpec",
    "StrategySpec",
    "MatrixSpec",
    "ConcurrencySpec",
    # Node
    "JobNode",
    "make_node_id",
    "make_display_name",
    # Run
    "WorkflowRun",
    "new_run_id",
    # Artifact
    "Artifact",
    # Events
    "RunEvent",
    "EventType",
]
