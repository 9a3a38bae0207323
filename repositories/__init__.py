# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Persistence layer
# PURPOSE: Durable run snapshots for restart and queries
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Repositories Module

Run persistence. PostgreSQL access uses psycopg3 async with connection
pooling; the in-memory repository needs no database.

Usage:
    from repositories import PostgresRunRepository, get_pool

    pool = await get_pool()
    repo = PostgresRunRepository(pool)
    run = await repo.get_run(run_id)
"""

from .database import get_pool, init_pool, close_pool, is_configured
from .run_repo import RunRepository, MemoryRunRepository, PostgresRunRepository

__all__ = [
    "get_pool",
    "init_pool",
    "close_pool",
    "is_configured",
    "RunRepository",
    "MemoryRunRepository",
    "PostgresRunRepository",
]
