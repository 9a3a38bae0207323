# ============================================================================
# API MODULE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - FastAPI routes
# PURPOSE: HTTP API for runs and workflows
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
API Module

FastAPI routes for the workflow orchestrator.
"""

from .routes import router, set_services
from .schemas import (
    RunCreate,
    RunResponse,
    NodeResponse,
)

__all__ = [
    "router",
    "set_services",
    "RunCreate",
    "RunResponse",
    "NodeResponse",
]
