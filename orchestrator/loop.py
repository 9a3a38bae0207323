# ============================================================================
# ORCHESTRATOR
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Multi-run orchestration
# PURPOSE: Submit, cancel, resume and observe workflow runs
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Orchestrator

Owns everything shared between runs:
- The execution backend
- The concurrency groups (one lane per key across all runs)
- The blob storage behind every run store
- The run repository

Each accepted run gets its own RunScheduler task. On start, runs left
pending or running by a previous process are resumed from their last
checkpoint. A housekeeping loop purges expired artifacts.

Runs as background tasks in the FastAPI application.
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from core.config import SchedulerDefaults, get_defaults
from core.contracts import RunStatus
from core.models import WorkflowDefinition, WorkflowRun
from infrastructure.storage import BlobStorage, create_blob_storage
from orchestrator.concurrency import ConcurrencyManager
from orchestrator.engine.evaluator import DAGEvaluator
from orchestrator.engine.graph import DependencyGraph, GraphBuilder
from orchestrator.scheduler import RunScheduler
from repositories.run_repo import MemoryRunRepository, RunRepository
from services.env_service import EnvironmentProvider
from services.run_service import RunService
from services.run_store import RunStore
from services.workflow_service import WorkflowService
from worker.contracts import ExecutionBackend
from worker.executor import LocalExecutionBackend

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Runs many workflow runs concurrently on one event loop.

    Usage:
        orchestrator = Orchestrator(WorkflowService())
        await orchestrator.start()
        run = await orchestrator.submit("ci", event={"ref": "refs/heads/main"})
        run = await orchestrator.wait(run.run_id)
        await orchestrator.stop()
    """

    # Configuration (can be overridden via environment)
    HOUSEKEEPING_INTERVAL_SEC = int(os.environ.get("RUNFLOW_HOUSEKEEPING_INTERVAL_SEC", "3600"))

    def __init__(
        self,
        workflow_service: Optional[WorkflowService] = None,
        repository: Optional[RunRepository] = None,
        backend: Optional[ExecutionBackend] = None,
        blob_storage: Optional[BlobStorage] = None,
        settings: Optional[SchedulerDefaults] = None,
        env_provider: Optional[EnvironmentProvider] = None,
        poll_interval: float = 1.0,
    ):
        """
        Initialize orchestrator.

        Args:
            workflow_service: Workflow definition lookup
            repository: Run persistence (in-memory if omitted)
            backend: Execution backend (in-process if omitted)
            blob_storage: Artifact bytes (see create_blob_storage)
            settings: Scheduler settings shared by all runs
            env_provider: Environment provider shared by all runs
            poll_interval: Max seconds between scheduler passes
        """
        self.workflow_service = workflow_service or WorkflowService()
        self.repository = repository or MemoryRunRepository()
        self.settings = settings or get_defaults().scheduler
        self.backend = backend or LocalExecutionBackend(
            cancel_grace_seconds=self.settings.cancel_grace_seconds
        )
        self.blobs = blob_storage or create_blob_storage()
        self.env_provider = env_provider
        self.poll_interval = poll_interval

        self.concurrency = ConcurrencyManager()
        self.evaluator = DAGEvaluator(
            graph_builder=GraphBuilder(),
            skipped_satisfies_needs=self.settings.skipped_satisfies_needs,
        )
        self.run_service = RunService(self.repository, self.evaluator.graph_builder)

        # Live runs
        self._schedulers: Dict[str, RunScheduler] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._stores: Dict[str, RunStore] = {}

        # State
        self._running = False
        self._stop_event = asyncio.Event()
        self._housekeeping_task: Optional[asyncio.Task] = None

        # Metrics
        self._started_at: Optional[datetime] = None
        self._runs_submitted = 0
        self._runs_resumed = 0
        self._runs_finished: Dict[str, int] = {s.value: 0 for s in RunStatus if s.is_terminal()}
        self._errors = 0

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self, resume: bool = True) -> None:
        """
        Start the orchestrator.

        Args:
            resume: Resume runs left pending/running in the repository
        """
        if self._running:
            logger.warning("Orchestrator already running")
            return

        self._running = True
        self._started_at = datetime.now(timezone.utc)
        self._stop_event.clear()

        if resume:
            await self.resume()

        self._housekeeping_task = asyncio.create_task(
            self._housekeeping_loop(), name="orchestrator-housekeeping"
        )
        logger.info(f"Orchestrator started (backend={self.backend.name})")

    async def stop(self) -> None:
        """
        Stop the orchestrator.

        Run tasks are cancelled without finalizing their runs; the persisted
        snapshots stay pending/running so the next start resumes them.
        """
        logger.info("Stopping orchestrator")
        self._running = False
        self._stop_event.set()

        tasks = list(self._tasks.values())
        if self._housekeeping_task:
            tasks.append(self._housekeeping_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self.backend.shutdown()
        self._housekeeping_task = None

        logger.info(
            f"Orchestrator stopped (submitted={self._runs_submitted}, "
            f"resumed={self._runs_resumed}, finished={self._runs_finished})"
        )

    # =========================================================================
    # RUNS
    # =========================================================================

    async def submit(
        self,
        workflow: Union[str, WorkflowDefinition],
        event: Optional[Dict[str, Any]] = None,
        env: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> WorkflowRun:
        """
        Accept a trigger and start a run.

        A structurally invalid workflow yields a run that is already
        `failure` with its error; nothing is dispatched.

        Args:
            workflow: Workflow id or definition
            event: Trigger context
            env: Run-level environment
            run_id: Optional idempotency key

        Raises:
            KeyError: Unknown workflow id
        """
        if isinstance(workflow, str):
            workflow = self.workflow_service.get_or_raise(workflow)

        if run_id and run_id in self._schedulers:
            return self._schedulers[run_id].run

        run, graph = await self.run_service.create_run(workflow, event, env, run_id)
        self._runs_submitted += 1

        if graph is not None and not run.is_terminal and run.run_id not in self._tasks:
            self._launch(run, graph)
        elif run.is_terminal and run.error:
            self._runs_finished[run.status.value] += 1
        return run

    async def cancel(self, run_id: str) -> WorkflowRun:
        """
        Cancel a run.

        Raises:
            KeyError: Unknown run
        """
        scheduler = self._schedulers.get(run_id)
        if scheduler is not None:
            await scheduler.cancel()
            return scheduler.run

        run, graph = await self.run_service.load_run(run_id)
        if run.is_terminal or graph is None:
            return run

        # Not driven by this process yet: resume it with the flag set
        run.cancel_requested = True
        await self.repository.save_run(run)
        self._launch(run, graph)
        return run

    async def wait(self, run_id: str, timeout: Optional[float] = None) -> WorkflowRun:
        """Wait for a run to finish and return it."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        return await self.get_run(run_id)

    async def get_run(self, run_id: str) -> WorkflowRun:
        """
        Current state of a run (live if running here, else last snapshot).

        Raises:
            KeyError: Unknown run
        """
        scheduler = self._schedulers.get(run_id)
        if scheduler is not None:
            return scheduler.run
        run = await self.repository.get_run(run_id)
        if run is None:
            raise KeyError(f"Run not found: {run_id}")
        return run

    async def list_runs(
        self,
        status: Optional[RunStatus] = None,
        workflow_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[WorkflowRun]:
        """List runs from the repository, replacing live ones with their live state."""
        runs = await self.repository.list_runs(status=status, workflow_id=workflow_id, limit=limit)
        return [
            self._schedulers[r.run_id].run if r.run_id in self._schedulers else r
            for r in runs
        ]

    def store_for(self, run_id: str) -> RunStore:
        """
        Run-scoped output/artifact store.

        Live runs share the store their scheduler writes to; any other run
        gets a store reloaded from the blob storage index.
        """
        store = self._stores.get(run_id)
        if store is None:
            store = RunStore(run_id, self.blobs)
        return store

    async def resume(self) -> int:
        """
        Resume runs that a previous process left unfinished.

        Returns:
            Number of runs resumed
        """
        resumed = 0
        for run in await self.repository.list_active():
            if run.run_id in self._tasks:
                continue
            try:
                graph = self.evaluator.graph_builder.rebuild(run)
            except Exception as e:
                self._errors += 1
                logger.exception(f"Cannot rebuild graph of run {run.run_id}: {e}")
                continue
            self._launch(run, graph)
            resumed += 1

        self._runs_resumed += resumed
        if resumed:
            logger.info(f"Resumed {resumed} run(s)")
        return resumed

    def _launch(self, run: WorkflowRun, graph: DependencyGraph) -> None:
        store = self.store_for(run.run_id)
        self._stores[run.run_id] = store
        scheduler = RunScheduler(
            run,
            graph,
            self.backend,
            store,
            repository=self.repository,
            evaluator=self.evaluator,
            env_provider=self.env_provider,
            concurrency=self.concurrency,
            settings=self.settings,
            poll_interval=self.poll_interval,
        )
        self._schedulers[run.run_id] = scheduler
        self._tasks[run.run_id] = asyncio.create_task(
            self._drive(scheduler), name=f"run-{run.run_id}"
        )

    async def _drive(self, scheduler: RunScheduler) -> None:
        run_id = scheduler.run_id
        try:
            run = await scheduler.run_until_complete()
            self._runs_finished[run.status.value] += 1
        except asyncio.CancelledError:
            logger.info(f"Run {run_id} detached (orchestrator stopping)")
            raise
        except Exception as e:
            self._errors += 1
            logger.exception(f"Scheduler of run {run_id} crashed: {e}")
        finally:
            self._schedulers.pop(run_id, None)
            self._tasks.pop(run_id, None)
            self._stores.pop(run_id, None)

    # =========================================================================
    # HOUSEKEEPING
    # =========================================================================

    async def _housekeeping_loop(self) -> None:
        """Purge expired artifacts periodically."""
        while self._running and not self._stop_event.is_set():
            try:
                self.purge_expired_artifacts()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._errors += 1
                logger.exception(f"Error in housekeeping: {e}")

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.HOUSEKEEPING_INTERVAL_SEC,
                )
                break
            except asyncio.TimeoutError:
                pass

    def purge_expired_artifacts(self, now: Optional[datetime] = None) -> Dict[str, List[str]]:
        """
        Purge expired artifacts of every run with stored artifacts.

        Runs finished by an earlier process are found through their artifact
        index in the blob storage.
        """
        run_ids = set(self._stores) | set(RunStore.stored_run_ids(self.blobs))
        purged = {}
        for run_id in sorted(run_ids):
            names = self.store_for(run_id).purge_expired(now)
            if names:
                purged[run_id] = names
        return purged

    # =========================================================================
    # STATS AND PROPERTIES
    # =========================================================================

    @property
    def is_running(self) -> bool:
        """Check if orchestrator is running."""
        return self._running

    @property
    def stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics."""
        uptime_seconds = None
        if self._started_at:
            uptime_seconds = (datetime.now(timezone.utc) - self._started_at).total_seconds()

        return {
            "running": self._running,
            "backend": self.backend.name,
            "started_at": self._started_at.isoformat() if self._started_at else None,
            "uptime_seconds": uptime_seconds,
            "poll_interval": self.poll_interval,
            "max_concurrent_nodes": self.settings.max_concurrent_nodes,
            "active_runs": sorted(self._schedulers),
            "runs_submitted": self._runs_submitted,
            "runs_resumed": self._runs_resumed,
            "runs_finished": dict(self._runs_finished),
            "errors": self._errors,
            "concurrency_groups": self.concurrency.status(),
            "schedulers": [s.stats for s in self._schedulers.values()],
        }


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["Orchestrator"]
