# ============================================================================
# API ROUTES
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - FastAPI route definitions
# PURPOSE: HTTP endpoints for runs, workflows and orchestrator status
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
API Routes

FastAPI routes for the orchestrator, mounted under /api/v1.

Error mapping:
- Unknown run / node / workflow -> 404
- Invalid workflow document -> 422
- Other WorkflowError -> 400
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import ValidationError

from core.contracts import NodeStatus, RunStatus
from core.errors import WorkflowError
from services.workflow_service import parse_workflow
from .schemas import (
    RunCreate,
    RunResponse,
    RunDetailResponse,
    RunListResponse,
    NodeResponse,
    OutputsResponse,
    ArtifactListResponse,
    WorkflowResponse,
    WorkflowListResponse,
    ErrorResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================
# These will be set by the main app at startup

_orchestrator = None
_workflow_service = None


def set_services(orchestrator, workflow_service):
    """Set service instances for dependency injection."""
    global _orchestrator, _workflow_service
    _orchestrator = orchestrator
    _workflow_service = workflow_service


def get_orchestrator():
    if _orchestrator is None:
        raise HTTPException(500, "Orchestrator not initialized")
    return _orchestrator


def get_workflow_service():
    if _workflow_service is None:
        raise HTTPException(500, "Services not initialized")
    return _workflow_service


async def _load_run(run_id: str):
    try:
        return await get_orchestrator().get_run(run_id)
    except KeyError:
        raise HTTPException(404, f"Run not found: {run_id}")


# ============================================================================
# ORCHESTRATOR STATUS
# ============================================================================

@router.get("/orchestrator/status", tags=["Orchestrator"])
async def get_orchestrator_status():
    """
    Get orchestrator status and statistics.

    Returns metrics including:
    - Running state and uptime
    - Active runs and their schedulers
    - Runs submitted / resumed / finished by status
    - Concurrency group occupants and waiters
    """
    stats = get_orchestrator().stats

    return {
        "status": "running" if stats["running"] else "stopped",
        "backend": stats["backend"],
        "started_at": stats["started_at"],
        "uptime_seconds": stats["uptime_seconds"],
        "poll_interval_seconds": stats["poll_interval"],
        "metrics": {
            "active_runs": len(stats["active_runs"]),
            "runs_submitted": stats["runs_submitted"],
            "runs_resumed": stats["runs_resumed"],
            "runs_finished": stats["runs_finished"],
            "errors": stats["errors"],
        },
        "concurrency_groups": stats["concurrency_groups"],
        "runs": stats["schedulers"],
    }


# ============================================================================
# WORKFLOWS
# ============================================================================

def _workflow_response(workflow) -> WorkflowResponse:
    return WorkflowResponse(
        workflow_id=workflow.workflow_id,
        name=workflow.name,
        description=workflow.description,
        jobs=list(workflow.jobs),
    )


@router.get("/workflows", response_model=WorkflowListResponse, tags=["Workflows"])
async def list_workflows():
    """List available workflow definitions (and files that failed to load)."""
    service = get_workflow_service()
    return WorkflowListResponse(
        workflows=[_workflow_response(w) for w in service.list_all()],
        errors=service.load_errors,
    )


@router.get("/workflows/{workflow_id}", response_model=WorkflowResponse, tags=["Workflows"])
async def get_workflow(workflow_id: str):
    """Get a workflow definition."""
    workflow = get_workflow_service().get(workflow_id)
    if workflow is None:
        raise HTTPException(404, f"Workflow not found: {workflow_id}")
    return _workflow_response(workflow)


# ============================================================================
# RUNS
# ============================================================================

@router.post(
    "/runs",
    response_model=RunResponse,
    status_code=202,
    tags=["Runs"],
    responses={
        202: {"description": "Run accepted"},
        404: {"model": ErrorResponse, "description": "Workflow not found"},
        422: {"model": ErrorResponse, "description": "Invalid workflow document"},
    },
)
async def create_run(request: RunCreate):
    """
    Start a run.

    Returns immediately. A structurally invalid workflow (unknown needs,
    cycle, bad matrix) is accepted as a run that is already `failure`
    with the error in `error`. Poll GET /runs/{run_id} to monitor progress.
    """
    orchestrator = get_orchestrator()

    if request.workflow is not None:
        try:
            workflow = parse_workflow(request.workflow, default_id=request.workflow_id or "inline")
        except (ValueError, ValidationError) as e:
            raise HTTPException(422, f"Invalid workflow document: {e}")
    else:
        workflow = request.workflow_id

    try:
        run = await orchestrator.submit(
            workflow, event=request.event, env=request.env, run_id=request.run_id
        )
    except KeyError:
        raise HTTPException(404, f"Workflow not found: {request.workflow_id}")
    except WorkflowError as e:
        raise HTTPException(400, str(e))

    logger.info(f"Accepted run {run.run_id} ({run.status.value})")
    return RunResponse.from_run(run)


@router.get("/runs", response_model=RunListResponse, tags=["Runs"])
async def list_runs(
    status: Optional[RunStatus] = Query(None, description="Filter by status"),
    workflow_id: Optional[str] = Query(None, description="Filter by workflow"),
    limit: int = Query(100, ge=1, le=1000),
):
    """List runs, newest first."""
    runs = await get_orchestrator().list_runs(status=status, workflow_id=workflow_id, limit=limit)
    return RunListResponse(runs=[RunResponse.from_run(r) for r in runs], total=len(runs))


@router.get(
    "/runs/{run_id}",
    response_model=RunDetailResponse,
    tags=["Runs"],
    responses={404: {"model": ErrorResponse}},
)
async def get_run(run_id: str):
    """Get run details with node states and timeline."""
    run = await _load_run(run_id)
    return RunDetailResponse(
        run=RunResponse.from_run(run),
        nodes=[NodeResponse.from_node(n) for n in run.nodes.values()],
        events=list(run.events),
    )


@router.get("/runs/{run_id}/nodes", tags=["Runs"])
async def list_run_nodes(
    run_id: str,
    status: Optional[NodeStatus] = Query(None, description="Filter by status"),
):
    """Node states of a run, in build order."""
    run = await _load_run(run_id)
    nodes = [n for n in run.nodes.values() if status is None or n.status == status]
    return {
        "run_id": run_id,
        "nodes": [NodeResponse.from_node(n) for n in nodes],
        "total": len(nodes),
    }


@router.get(
    "/runs/{run_id}/nodes/{node_id}/outputs",
    response_model=OutputsResponse,
    tags=["Runs"],
    responses={404: {"model": ErrorResponse}},
)
async def get_node_outputs(run_id: str, node_id: str):
    """Sealed outputs of a node (empty unless it succeeded)."""
    run = await _load_run(run_id)
    node = run.nodes.get(node_id)
    if node is None:
        raise HTTPException(404, f"Node not found: {node_id}")
    outputs = dict(node.outputs) if node.status == NodeStatus.SUCCESS else {}
    return OutputsResponse(run_id=run_id, node_id=node_id, status=node.status, outputs=outputs)


@router.get("/runs/{run_id}/artifacts", response_model=ArtifactListResponse, tags=["Runs"])
async def list_run_artifacts(run_id: str):
    """Artifacts uploaded by a run."""
    await _load_run(run_id)
    store = get_orchestrator().store_for(run_id)
    return ArtifactListResponse(run_id=run_id, artifacts=store.list_artifacts())


@router.post(
    "/runs/{run_id}/cancel",
    response_model=RunResponse,
    status_code=202,
    tags=["Runs"],
    responses={404: {"model": ErrorResponse}},
)
async def cancel_run(run_id: str):
    """
    Cancel a run.

    Running nodes are cancelled through the backend; blocked and ready
    nodes become cancelled without evaluating their conditions.
    """
    try:
        run = await get_orchestrator().cancel(run_id)
    except KeyError:
        raise HTTPException(404, f"Run not found: {run_id}")
    return RunResponse.from_run(run)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["router", "set_services"]
