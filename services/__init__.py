# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Business logic layer
# PURPOSE: Workflow loading, run creation, run store, environment
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Services Module

Business logic around the orchestration engine.

Usage:
    from services import WorkflowService, RunService

    workflows = WorkflowService()
    run, graph = await RunService(repo).create_run(workflows.get_or_raise("ci"), event)
"""

from .run_store import RunStore
from .workflow_service import WorkflowService, parse_workflow, load_workflow_text
from .env_service import EnvironmentProvider
from .run_service import RunService

__all__ = [
    "RunStore",
    "WorkflowService",
    "parse_workflow",
    "load_workflow_text",
    "EnvironmentProvider",
    "RunService",
]
