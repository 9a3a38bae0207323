# ============================================================================
# RUNFLOW - MAIN APPLICATION
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - FastAPI application entry point
# PURPOSE: Main application with the orchestrator running in the background
# CREATED: 14 OCT 2026
# ============================================================================
"""
Runflow Main Application

FastAPI application that:
1. Provides HTTP API for submitting and inspecting workflow runs
2. Runs the orchestrator (one scheduler per run) in the background
3. Persists run snapshots in PostgreSQL when configured, in memory otherwise

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from __version__ import __version__, BUILD_DATE, EPOCH
from repositories import (
    init_pool,
    close_pool,
    is_configured,
    MemoryRunRepository,
    PostgresRunRepository,
)
from services import WorkflowService
from orchestrator.loop import Orchestrator
from api.routes import router, set_services

# Configure logging using our structured logging system
from core.logging import configure_logging, get_logger

configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = get_logger(__name__)

# Global instances
_orchestrator: Orchestrator = None
_workflow_service: WorkflowService = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes services on startup, cleans up on shutdown.
    """
    global _orchestrator, _workflow_service

    logger.info(f"Starting Runflow v{__version__} (Epoch {EPOCH}, Build {BUILD_DATE})")

    # Run persistence
    use_database = is_configured()
    if use_database:
        pool = await init_pool()
        repository = PostgresRunRepository(pool)
        await repository.ensure_schema()
        logger.info("Database pool initialized")
    else:
        repository = MemoryRunRepository()
        logger.warning("No database configured, run state is kept in memory")

    # Workflow definitions
    _workflow_service = WorkflowService(os.environ.get("WORKFLOWS_DIR", "./workflows"))
    count = _workflow_service.load_all()
    logger.info(f"Loaded {count} workflows")

    poll_interval = float(os.environ.get("ORCHESTRATOR_POLL_INTERVAL", "1.0"))
    _orchestrator = Orchestrator(
        workflow_service=_workflow_service,
        repository=repository,
        poll_interval=poll_interval,
    )

    set_services(orchestrator=_orchestrator, workflow_service=_workflow_service)

    await _orchestrator.start()
    logger.info("Orchestrator started")

    yield

    # Shutdown
    logger.info("Shutting down Runflow...")

    await _orchestrator.stop()
    if use_database:
        await close_pool()

    logger.info("Runflow stopped")


# Create FastAPI app
app = FastAPI(
    title="Runflow",
    description=f"Epoch {EPOCH} workflow orchestration core",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(router, prefix="/api/v1")


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Runflow",
        "version": __version__,
        "epoch": EPOCH,
        "build_date": BUILD_DATE,
        "status": "running",
        "docs": "/docs",
    }


@app.get("/livez")
async def livez():
    """Liveness probe."""
    return {"status": "ok"}


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
