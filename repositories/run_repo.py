# ============================================================================
# RUN REPOSITORY
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - WorkflowRun persistence
# PURPOSE: Point-in-time snapshots of runs for restart and queries
# CREATED: 14 OCT 2026
# ============================================================================
"""
Run Repository

The scheduler checkpoints the whole WorkflowRun (pinned workflow, nodes,
events) after every transition. A snapshot is enough to resume an
interrupted run: the graph is rebuilt from the pinned workflow and the
node statuses.

Implementations:
- MemoryRunRepository: process-local, used by tests and single-process use
- PostgresRunRepository: one JSONB row per run (psycopg3 async)
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Json
from psycopg_pool import AsyncConnectionPool

from core.contracts import RunStatus
from core.models import WorkflowRun
from .database import SCHEMA_IDENTIFIER, TABLE_RUNS

logger = logging.getLogger(__name__)


_ACTIVE_STATUSES = (RunStatus.PENDING.value, RunStatus.RUNNING.value)


class RunRepository(ABC):
    """Persistence contract for workflow runs."""

    @abstractmethod
    async def save_run(self, run: WorkflowRun) -> None:
        """Insert or replace the snapshot of a run."""

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        """Load a run snapshot, or None."""

    @abstractmethod
    async def list_runs(
        self,
        status: Optional[RunStatus] = None,
        workflow_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[WorkflowRun]:
        """List runs, newest first."""

    @abstractmethod
    async def delete_run(self, run_id: str) -> bool:
        """Delete a run snapshot. Returns True if it existed."""

    async def list_active(self) -> List[WorkflowRun]:
        """Runs that are pending or running (resume candidates)."""
        runs = await self.list_runs(limit=10_000)
        return [r for r in runs if not r.status.is_terminal()]


# ============================================================================
# IN-MEMORY
# ============================================================================

class MemoryRunRepository(RunRepository):
    """
    Process-local repository.

    Stores serialized snapshots so callers never share mutable state with
    the scheduler.
    """

    def __init__(self):
        self._runs: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def save_run(self, run: WorkflowRun) -> None:
        snapshot = run.model_dump_json(by_alias=True)
        async with self._lock:
            self._runs[run.run_id] = snapshot

    async def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        snapshot = self._runs.get(run_id)
        if snapshot is None:
            return None
        return WorkflowRun.model_validate_json(snapshot)

    async def list_runs(
        self,
        status: Optional[RunStatus] = None,
        workflow_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[WorkflowRun]:
        runs = [WorkflowRun.model_validate_json(s) for s in self._runs.values()]
        if status is not None:
            runs = [r for r in runs if r.status == status]
        if workflow_id is not None:
            runs = [r for r in runs if r.workflow_id == workflow_id]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return runs[:limit]

    async def delete_run(self, run_id: str) -> bool:
        async with self._lock:
            return self._runs.pop(run_id, None) is not None


# ============================================================================
# POSTGRESQL
# ============================================================================

class PostgresRunRepository(RunRepository):
    """Repository backed by a JSONB snapshot table."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def ensure_schema(self) -> None:
        """Create the schema and runs table if missing."""
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("CREATE SCHEMA IF NOT EXISTS {}").format(SCHEMA_IDENTIFIER)
            )
            await conn.execute(
                sql.SQL("""
                CREATE TABLE IF NOT EXISTS {} (
                    run_id VARCHAR(64) PRIMARY KEY,
                    workflow_id VARCHAR(128) NOT NULL,
                    status VARCHAR(20) NOT NULL,
                    snapshot JSONB NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
                """).format(TABLE_RUNS)
            )
            await conn.execute(
                sql.SQL("CREATE INDEX IF NOT EXISTS {} ON {} (status)").format(
                    sql.Identifier("idx_workflow_runs_status"), TABLE_RUNS
                )
            )
        logger.info("Run table ready")

    async def save_run(self, run: WorkflowRun) -> None:
        """
        Upsert the snapshot of a run.

        Args:
            run: Run to persist
        """
        async with self.pool.connection() as conn:
            await conn.execute(
                sql.SQL("""
                INSERT INTO {} (run_id, workflow_id, status, snapshot, created_at, updated_at)
                VALUES (%(run_id)s, %(workflow_id)s, %(status)s, %(snapshot)s, %(created_at)s, NOW())
                ON CONFLICT (run_id) DO UPDATE SET
                    status = EXCLUDED.status,
                    snapshot = EXCLUDED.snapshot,
                    updated_at = NOW()
                """).format(TABLE_RUNS),
                {
                    "run_id": run.run_id,
                    "workflow_id": run.workflow_id,
                    "status": run.status.value,
                    "snapshot": Json(run.model_dump(mode="json", by_alias=True)),
                    "created_at": run.created_at,
                },
            )
        logger.debug(f"Saved run {run.run_id} ({run.status.value})")

    async def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT snapshot FROM {} WHERE run_id = %s").format(TABLE_RUNS),
                (run_id,),
            )
            row = await result.fetchone()

        if row is None:
            return None
        return self._row_to_run(row)

    async def list_runs(
        self,
        status: Optional[RunStatus] = None,
        workflow_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[WorkflowRun]:
        conditions = []
        params: Dict[str, object] = {"limit": limit}
        if status is not None:
            conditions.append(sql.SQL("status = %(status)s"))
            params["status"] = status.value
        if workflow_id is not None:
            conditions.append(sql.SQL("workflow_id = %(workflow_id)s"))
            params["workflow_id"] = workflow_id

        where = sql.SQL("")
        if conditions:
            where = sql.SQL("WHERE ") + sql.SQL(" AND ").join(conditions)

        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT snapshot FROM {} {} ORDER BY created_at DESC LIMIT %(limit)s").format(
                    TABLE_RUNS, where
                ),
                params,
            )
            rows = await result.fetchall()

        return [self._row_to_run(row) for row in rows]

    async def list_active(self) -> List[WorkflowRun]:
        async with self.pool.connection() as conn:
            conn.row_factory = dict_row
            result = await conn.execute(
                sql.SQL("SELECT snapshot FROM {} WHERE status = ANY(%s) ORDER BY created_at").format(
                    TABLE_RUNS
                ),
                (list(_ACTIVE_STATUSES),),
            )
            rows = await result.fetchall()

        return [self._row_to_run(row) for row in rows]

    async def delete_run(self, run_id: str) -> bool:
        async with self.pool.connection() as conn:
            result = await conn.execute(
                sql.SQL("DELETE FROM {} WHERE run_id = %s").format(TABLE_RUNS),
                (run_id,),
            )
            return result.rowcount > 0

    @staticmethod
    def _row_to_run(row: Dict[str, object]) -> WorkflowRun:
        """Convert database row to WorkflowRun model."""
        return WorkflowRun.model_validate(row["snapshot"])


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["RunRepository", "MemoryRunRepository", "PostgresRunRepository"]
