# ============================================================================
# RUN SCHEDULER
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Per-run control loop
# PURPOSE: Drive one WorkflowRun from pending to a terminal status
# CREATED: 14 OCT 2026
# ============================================================================
"""
Run Scheduler

One RunScheduler drives one WorkflowRun. Its control loop repeats:

1. Readiness: expand deferred matrices, then move BLOCKED nodes whose
   needs are terminal to READY or SKIPPED (by their `if` condition)
2. Concurrency: resolve each READY node's group key; queue it while the
   group is occupied, or evict the occupant with cancel-in-progress
3. Dispatch: hand READY nodes to the execution backend within the run
   limit and the job's max-parallel, then mark them RUNNING
4. Completion (backend callback): evaluate job outputs, seal the node in
   the run store, release its group, apply fail-fast, wake the loop

The loop suspends only while waiting for backend callbacks or a group
slot; expression evaluation and graph work are synchronous.

Every node transition is checkpointed through the run repository so an
interrupted run can be resumed (nodes found RUNNING are failed with
ExecutionLost; nothing is retried automatically).
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional, Set

from core.config import SchedulerDefaults, get_defaults
from core.contracts import ExecutionStatus, NodeStatus, RunStatus
from core.errors import EvaluationError, JobTimeoutError, WorkflowError
from core.logging import log_checkpoint, log_context
from core.models import EventType, JobNode, JobSpec, WorkflowRun
from orchestrator.concurrency import ConcurrencyManager
from orchestrator.engine.evaluator import DAGEvaluator, get_evaluator
from orchestrator.engine.expressions import EvaluationContext, to_string
from orchestrator.engine.graph import DependencyGraph
from services.env_service import EnvironmentProvider
from services.run_store import RunStore
from worker.contracts import (
    DispatchRequest,
    ExecutionBackend,
    ExecutionCallbacks,
    ExecutionHandle,
    ExecutionResult,
)

logger = logging.getLogger(__name__)


_NODE_EVENTS = {
    NodeStatus.SUCCESS: EventType.NODE_SUCCEEDED,
    NodeStatus.FAILURE: EventType.NODE_FAILED,
    NodeStatus.CANCELLED: EventType.NODE_CANCELLED,
    NodeStatus.SKIPPED: EventType.NODE_SKIPPED,
}

_RUN_EVENTS = {
    RunStatus.SUCCESS: EventType.RUN_COMPLETED,
    RunStatus.FAILURE: EventType.RUN_FAILED,
    RunStatus.CANCELLED: EventType.RUN_CANCELLED,
}


class RunScheduler(ExecutionCallbacks):
    """
    Control loop for a single workflow run.

    Usage:
        scheduler = RunScheduler(run, graph, backend, store, repository)
        run = await scheduler.run_until_complete()

    Cancellation:
        await scheduler.cancel()   # from any task on the same loop
    """

    def __init__(
        self,
        run: WorkflowRun,
        graph: DependencyGraph,
        backend: ExecutionBackend,
        store: RunStore,
        repository=None,
        evaluator: Optional[DAGEvaluator] = None,
        env_provider: Optional[EnvironmentProvider] = None,
        concurrency: Optional[ConcurrencyManager] = None,
        settings: Optional[SchedulerDefaults] = None,
        poll_interval: float = 1.0,
    ):
        """
        Initialize scheduler.

        Args:
            run: Run to drive (fresh or reloaded)
            graph: Dependency graph of the run
            backend: Execution backend nodes are dispatched to
            store: Run-scoped output/artifact store
            repository: Optional RunRepository for checkpoints
            evaluator: Readiness evaluator
            env_provider: Resolves the env of each node
            concurrency: Concurrency groups (shared across runs)
            settings: Scheduler settings (limits, timeout unit)
            poll_interval: Max seconds between loop passes without a wake-up
        """
        self.run = run
        self.graph = graph
        self.backend = backend
        self.store = store
        self.repository = repository
        self.settings = settings or get_defaults().scheduler
        self.evaluator = evaluator or (
            get_evaluator() if settings is None
            else DAGEvaluator(skipped_satisfies_needs=self.settings.skipped_satisfies_needs)
        )
        self.env_provider = env_provider or EnvironmentProvider(self.evaluator.expressions)
        self.concurrency = concurrency or ConcurrencyManager()
        self.poll_interval = poll_interval

        self._wake = asyncio.Event()
        self._handles: Dict[str, ExecutionHandle] = {}
        self._timeouts: Dict[str, asyncio.Task] = {}
        self._dispatching: Set[str] = set()
        self._early: Dict[str, ExecutionResult] = {}
        self._queued: Set[str] = set()
        self._cancel_applied = False

        # Metrics
        self._dispatched = 0
        self._errors = 0

    @property
    def run_id(self) -> str:
        return self.run.run_id

    # =========================================================================
    # CONTROL LOOP
    # =========================================================================

    async def run_until_complete(self) -> WorkflowRun:
        """
        Drive the run until no node is blocked, ready, running or deferred.

        Returns:
            The run, in a terminal status
        """
        if self.run.is_terminal:
            return self.run

        with log_context(run_id=self.run.run_id, workflow_id=self.run.workflow_id):
            await self._begin()
            try:
                while True:
                    self._wake.clear()
                    try:
                        await self._step()
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        self._errors += 1
                        logger.exception(f"Error in scheduling pass of {self.run_id}: {e}")

                    if not self.run.has_active_nodes():
                        break

                    try:
                        await asyncio.wait_for(self._wake.wait(), timeout=self.poll_interval)
                    except asyncio.TimeoutError:
                        pass
            finally:
                for task in self._timeouts.values():
                    task.cancel()
                self._timeouts.clear()

            await self._finalize()
        return self.run

    async def cancel(self) -> None:
        """Request cancellation of the whole run."""
        if self.run.is_terminal or self.run.cancel_requested:
            return
        logger.info(f"Cancellation requested for run {self.run_id}")
        self.run.cancel_requested = True
        await self._checkpoint()
        self._wake.set()

    async def _begin(self) -> None:
        resumed = self.run.status == RunStatus.RUNNING
        if resumed:
            self._recover_lost_nodes()
            self.run.record(EventType.RUN_RESUMED)
            logger.info(f"Resuming run {self.run_id}")
        else:
            self.run.status = RunStatus.RUNNING
            self.run.started_at = datetime.utcnow()
            self.run.record(EventType.RUN_STARTED)
            logger.info(
                f"Starting run {self.run_id} of '{self.run.workflow_id}' "
                f"({len(self.run.nodes)} nodes, {len(self.run.deferred_jobs)} deferred)"
            )
        self.store.restore(self.run)
        await self._checkpoint()
        log_checkpoint("run_resumed" if resumed else "run_started", {
            "nodes": len(self.run.nodes),
            "deferred": list(self.run.deferred_jobs),
        }, logger)

    def _recover_lost_nodes(self) -> None:
        for node in self.run.nodes_with_status(NodeStatus.RUNNING):
            node.mark_failure(
                "Execution lost: node was running when the run was interrupted",
                error_type="ExecutionLost",
            )
            self.run.record(EventType.NODE_FAILED, node.node_id, node.error_message,
                            error_type="ExecutionLost")
            logger.warning(f"Node {node.node_id} of run {self.run_id} lost on resume")

    async def _step(self) -> None:
        """One scheduling pass."""
        if self.run.cancel_requested:
            if not self._cancel_applied:
                await self._apply_cancel()
            return

        while await self._evaluate_readiness():
            pass
        await self._dispatch_ready()

    async def _finalize(self) -> None:
        status = self.evaluator.compute_run_status(self.run)
        self.run.status = status
        self.run.completed_at = datetime.utcnow()
        summary = self.run.node_summary()
        self.run.record(_RUN_EVENTS[status], message=self.run.error, nodes=summary)
        await self._checkpoint()

        logger.info(f"Run {self.run_id} finished: {status.value} {summary}")
        log_checkpoint("run_finished", {"status": status.value, "nodes": summary}, logger)

    # =========================================================================
    # READINESS
    # =========================================================================

    async def _evaluate_readiness(self) -> bool:
        """Apply one readiness pass. Returns True if anything changed."""
        result = self.evaluator.find_ready_nodes(self.run, self.graph, self.store.get_outputs)
        changed = False

        for job_name in result.expansions:
            await self._expand(job_name)
            changed = True

        for node_id in result.skip_nodes:
            await self._finish_node(self.run.nodes[node_id], NodeStatus.SKIPPED)
            changed = True

        for node_id, error in result.errors.items():
            await self._finish_node(
                self.run.nodes[node_id], NodeStatus.FAILURE, str(error), error.error_type
            )
            changed = True

        for node_id in result.ready_nodes:
            node = self.run.nodes[node_id]
            if node.status != NodeStatus.BLOCKED:
                continue
            node.mark_ready()
            self.run.record(EventType.NODE_READY, node_id)
            logger.debug(f"Node {node_id} ready")
            changed = True

        if changed:
            await self._checkpoint()
        return changed

    async def _expand(self, job_name: str) -> None:
        outcome = self.evaluator.expand_deferred(
            self.run, self.graph, job_name, self.store.get_outputs
        )
        for node in outcome.nodes:
            self.run.nodes[node.node_id] = node
        self.graph.add_nodes(job_name, [n.node_id for n in outcome.nodes])
        if job_name in self.run.deferred_jobs:
            self.run.deferred_jobs.remove(job_name)

        if outcome.placeholder_status == NodeStatus.SKIPPED:
            await self._finish_node(outcome.nodes[0], NodeStatus.SKIPPED)
        elif outcome.placeholder_status == NodeStatus.FAILURE:
            error = outcome.error
            await self._finish_node(
                outcome.nodes[0], NodeStatus.FAILURE,
                str(error), error.error_type if error else "MatrixError",
            )
        else:
            self.run.record(
                EventType.MATRIX_EXPANDED,
                message=f"Expanded '{job_name}' to {len(outcome.nodes)} node(s)",
                job=job_name,
                nodes=[n.node_id for n in outcome.nodes],
            )

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def _in_flight(self, job_name: Optional[str] = None) -> int:
        node_ids = set(self._handles) | self._dispatching
        if job_name is None:
            return len(node_ids)
        return sum(1 for n in node_ids if self.run.nodes[n].job_name == job_name)

    async def _dispatch_ready(self) -> None:
        ready = [
            self.run.nodes[n] for n in self.graph.node_order()
            if self.run.nodes[n].status == NodeStatus.READY and n not in self._dispatching
        ]
        for node in ready:
            if self.run.cancel_requested:
                return
            if node.status != NodeStatus.READY:
                continue
            if self._in_flight() >= self.settings.max_concurrent_nodes:
                logger.debug(f"Run {self.run_id} at node limit ({self.settings.max_concurrent_nodes})")
                return

            job = self.run.workflow.jobs[node.job_name]
            max_parallel = job.strategy.max_parallel if job.strategy else None
            if max_parallel and self._in_flight(job.name) >= max_parallel:
                continue

            if job.concurrency is not None:
                granted = await self._acquire_group(node, job)
                if not granted or node.status != NodeStatus.READY:
                    continue

            await self._dispatch(node, job)

    async def _acquire_group(self, node: JobNode, job: JobSpec) -> bool:
        if node.concurrency_group is None:
            try:
                key = self.evaluator.expressions.interpolate(
                    job.concurrency.group, self._context(job, node)
                )
            except EvaluationError as e:
                await self._finish_node(node, NodeStatus.FAILURE, str(e), e.error_type)
                return False
            node.concurrency_group = to_string(key)

        node_id = node.node_id

        async def evict() -> None:
            await self._evict(node_id)

        granted = await self.concurrency.acquire(
            node.concurrency_group,
            (self.run_id, node_id),
            cancel_in_progress=job.concurrency.cancel_in_progress,
            evict=evict,
            wake=self._wake.set,
        )
        if not granted and node_id not in self._queued:
            self._queued.add(node_id)
            self.run.record(
                EventType.NODE_QUEUED, node_id,
                f"Waiting for concurrency group '{node.concurrency_group}'",
                group=node.concurrency_group,
            )
            logger.info(f"Node {node_id} queued on concurrency group '{node.concurrency_group}'")
            await self._checkpoint()
        return granted

    async def _dispatch(self, node: JobNode, job: JobSpec) -> None:
        node_id = node.node_id
        early: Optional[ExecutionResult] = None
        handle: Optional[ExecutionHandle] = None
        self._dispatching.add(node_id)
        try:
            context = self._context(job, node)
            try:
                env = self.env_provider.resolve_env(job, node.matrix, context)
            except WorkflowError as e:
                await self._finish_node(node, NodeStatus.FAILURE, str(e), e.error_type)
                return

            request = DispatchRequest(
                run_id=self.run_id,
                node=node,
                job=job,
                env=env,
                context=context.with_contexts(env=env),
                store=self.store,
            )
            try:
                handle = await self.backend.dispatch(request, self)
            except Exception as e:
                logger.exception(f"Dispatch of node {node_id} failed")
                await self._finish_node(
                    node, NodeStatus.FAILURE, f"Dispatch failed: {e}", type(e).__name__
                )
                return

            if node.status != NodeStatus.READY:
                # Cancelled or evicted while the backend was accepting it
                self._early.pop(handle.handle_id, None)
                await self._cancel_handle(handle)
                return

            node.mark_running(handle.handle_id)
            self._handles[node_id] = handle
            self._queued.discard(node_id)
            self._dispatched += 1

            timeout_seconds = self._timeout_seconds(job)
            self._timeouts[node_id] = asyncio.create_task(
                self._watch_timeout(handle, timeout_seconds),
                name=f"timeout-{self.run_id}-{node_id}",
            )
            self.run.record(
                EventType.NODE_DISPATCHED, node_id,
                handle_id=handle.handle_id,
                backend=self.backend.name,
                timeout_seconds=timeout_seconds,
            )
            logger.info(f"Dispatched node {node_id} ({handle.handle_id}) to {self.backend.name}")
            await self._checkpoint()
            early = self._early.pop(handle.handle_id, None)
        finally:
            self._dispatching.discard(node_id)

        if early is not None and handle is not None:
            await self.on_complete(handle, early)

    def _timeout_seconds(self, job: JobSpec) -> float:
        units = job.timeout_minutes
        if units is None:
            units = self.settings.default_timeout_units
        return float(units) * self.settings.timeout_unit_seconds

    def _context(self, job: JobSpec, node: Optional[JobNode]) -> EvaluationContext:
        return self.evaluator.build_context(
            self.run, self.graph, job, node, self.store.get_outputs
        )

    # =========================================================================
    # BACKEND CALLBACKS
    # =========================================================================

    def _owns(self, handle: ExecutionHandle) -> bool:
        current = self._handles.get(handle.node_id)
        return current is not None and current.handle_id == handle.handle_id

    async def on_complete(self, handle: ExecutionHandle, result: ExecutionResult) -> None:
        """Backend completion callback."""
        node_id = handle.node_id
        if node_id in self._dispatching and node_id not in self._handles:
            self._early[handle.handle_id] = result
            return
        if not self._owns(handle):
            logger.debug(f"Ignoring report for {node_id} from stale handle {handle.handle_id}")
            return

        self._handles.pop(node_id, None)
        self._stop_timeout(node_id)
        node = self.run.nodes[node_id]

        try:
            with log_context(run_id=self.run_id, node_id=node_id, handle_id=handle.handle_id):
                await self._complete(node, result)
        except Exception as e:
            self._errors += 1
            logger.exception(f"Completion of node {node_id} in run {self.run_id} failed")
            if not node.status.is_terminal():
                await self._finish_node(
                    node, NodeStatus.FAILURE, f"{type(e).__name__}: {e}", type(e).__name__
                )
        finally:
            self._wake.set()

    async def on_timeout(self, handle: ExecutionHandle) -> None:
        """Backend-detected timeout."""
        if not self._owns(handle):
            return
        self._stop_timeout(handle.node_id)
        job = self.run.workflow.jobs[self.run.nodes[handle.node_id].job_name]
        await self._expire(handle, self._timeout_seconds(job))

    async def _complete(self, node: JobNode, result: ExecutionResult) -> None:
        job = self.run.workflow.jobs[node.job_name]

        if result.status == ExecutionStatus.SUCCESS:
            try:
                self._record_outputs(node, job, result)
            except WorkflowError as e:
                await self._finish_node(node, NodeStatus.FAILURE, str(e), e.error_type)
                return
            await self._finish_node(node, NodeStatus.SUCCESS)
        elif result.status == ExecutionStatus.CANCELLED:
            await self._finish_node(
                node, NodeStatus.CANCELLED, result.error_message or "Cancelled by backend"
            )
        else:
            await self._finish_node(
                node, NodeStatus.FAILURE,
                result.error_message or "Job failed",
                result.error_type or "ExecutionError",
            )

    def _record_outputs(self, node: JobNode, job: JobSpec, result: ExecutionResult) -> None:
        """Evaluate the job's declared outputs against the reported steps."""
        if not job.outputs:
            return
        context = self._context(job, node).with_contexts(steps=result.steps)
        for name, expression in job.outputs.items():
            value = self.evaluator.expressions.interpolate(expression, context)
            self.store.put_output(node.node_id, name, to_string(value))

    # =========================================================================
    # TIMEOUTS
    # =========================================================================

    async def _watch_timeout(self, handle: ExecutionHandle, seconds: float) -> None:
        await asyncio.sleep(seconds)
        if not self._owns(handle):
            return
        self._timeouts.pop(handle.node_id, None)
        await self._expire(handle, seconds)

    async def _expire(self, handle: ExecutionHandle, seconds: float) -> None:
        node_id = handle.node_id
        self._handles.pop(node_id, None)
        error = JobTimeoutError(node_id, seconds)
        logger.warning(f"Run {self.run_id}: {error}")

        await self._cancel_handle(handle)
        node = self.run.nodes[node_id]
        if node.status.is_terminal():
            return
        self.run.record(EventType.NODE_TIMEOUT, node_id, str(error), timeout_seconds=seconds)
        await self._finish_node(node, NodeStatus.FAILURE, str(error), error.error_type)

    def _stop_timeout(self, node_id: str) -> None:
        task = self._timeouts.pop(node_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    # =========================================================================
    # TERMINAL TRANSITIONS
    # =========================================================================

    async def _finish_node(
        self,
        node: JobNode,
        status: NodeStatus,
        message: Optional[str] = None,
        error_type: Optional[str] = None,
        event_type: Optional[EventType] = None,
    ) -> None:
        """
        Seal a node in its terminal state.

        Outputs become visible (success only) at the same moment the node
        turns terminal, then the group slot is released.
        """
        if node.status.is_terminal():
            return

        if status == NodeStatus.SUCCESS:
            node.mark_success(self.store.seal(node.node_id, status))
        elif status == NodeStatus.FAILURE:
            self.store.seal(node.node_id, status)
            node.mark_failure(message or "Job failed", error_type or "ExecutionError")
        elif status == NodeStatus.CANCELLED:
            self.store.seal(node.node_id, status)
            node.mark_cancelled(message)
        elif status == NodeStatus.SKIPPED:
            self.store.seal(node.node_id, status)
            node.mark_skipped()
        else:
            raise ValueError(f"Not a terminal node status: {status}")

        self._release(node)
        self._queued.discard(node.node_id)

        event_data = {"error_type": node.error_type} if node.error_type else {}
        self.run.record(event_type or _NODE_EVENTS[status], node.node_id, message, **event_data)
        if status == NodeStatus.FAILURE:
            logger.warning(f"Node {node.node_id} failed ({node.error_type}): {message}")
        else:
            logger.info(f"Node {node.node_id} {status.value}")

        if status == NodeStatus.FAILURE and not node.continue_on_error:
            await self._fail_fast(node)

        await self._checkpoint()
        self._wake.set()

    def _release(self, node: JobNode) -> None:
        if node.concurrency_group is None:
            return
        owner = (self.run_id, node.node_id)
        self.concurrency.release(node.concurrency_group, owner)
        self.concurrency.withdraw(node.concurrency_group, owner)

    async def _fail_fast(self, node: JobNode) -> None:
        """Cancel unfinished matrix siblings of a failed node."""
        job = self.run.workflow.jobs[node.job_name]
        if job.strategy is None or not job.strategy.fail_fast:
            return
        siblings = [
            self.run.nodes[n] for n in self.graph.nodes_of(node.job_name)
            if n != node.node_id and self.run.nodes[n].status.is_active()
        ]
        if not siblings:
            return
        logger.info(f"fail-fast: cancelling {len(siblings)} sibling(s) of {node.node_id}")
        for sibling in siblings:
            await self._cancel_node(
                sibling, f"Cancelled by fail-fast after '{node.display_name}' failed"
            )

    # =========================================================================
    # CANCELLATION
    # =========================================================================

    async def _cancel_handle(self, handle: ExecutionHandle) -> None:
        try:
            await self.backend.cancel(handle)
        except Exception:
            self._errors += 1
            logger.exception(f"Backend failed to cancel {handle.node_id} ({handle.handle_id})")

    async def _cancel_node(
        self,
        node: JobNode,
        reason: str,
        event_type: EventType = EventType.NODE_CANCELLED,
    ) -> None:
        if node.status.is_terminal():
            return
        handle = self._handles.pop(node.node_id, None)
        self._stop_timeout(node.node_id)
        if handle is not None:
            await self._cancel_handle(handle)
        await self._finish_node(node, NodeStatus.CANCELLED, reason, event_type=event_type)

    async def _evict(self, node_id: str) -> None:
        """Called by the concurrency manager when cancel-in-progress evicts this node."""
        node = self.run.nodes[node_id]
        logger.info(f"Node {node_id} of run {self.run_id} evicted from '{node.concurrency_group}'")
        await self._cancel_node(
            node,
            f"Evicted by cancel-in-progress in concurrency group '{node.concurrency_group}'",
            event_type=EventType.NODE_EVICTED,
        )

    async def _apply_cancel(self) -> None:
        """Cancel running handles and move every unfinished node to cancelled."""
        self._cancel_applied = True
        logger.info(f"Cancelling run {self.run_id}")

        for job_name in list(self.graph.deferred):
            job = self.run.workflow.jobs[job_name]
            placeholders = self.evaluator.graph_builder.create_nodes(job, [{}])
            for node in placeholders:
                self.run.nodes[node.node_id] = node
            self.graph.add_nodes(job_name, [n.node_id for n in placeholders])
            if job_name in self.run.deferred_jobs:
                self.run.deferred_jobs.remove(job_name)

        for node_id in self.graph.node_order():
            node = self.run.nodes[node_id]
            if node.status.is_active():
                await self._cancel_node(node, "Run cancelled")

    # =========================================================================
    # PERSISTENCE / STATS
    # =========================================================================

    async def _checkpoint(self) -> None:
        if self.repository is not None:
            await self.repository.save_run(self.run)

    @property
    def stats(self) -> Dict[str, object]:
        """Live counters for the status API."""
        return {
            "run_id": self.run_id,
            "status": self.run.status.value,
            "running": len(self._handles),
            "dispatching": len(self._dispatching),
            "queued": sorted(self._queued),
            "dispatched": self._dispatched,
            "errors": self._errors,
            "nodes": self.run.node_summary(),
        }


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["RunScheduler"]
