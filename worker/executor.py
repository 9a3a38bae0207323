# ============================================================================
# LOCAL EXECUTION BACKEND
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - In-process execution of job steps
# PURPOSE: Run a node's steps through the handler registry
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Local Execution Backend

Executes nodes inside the orchestrator process:
- Steps run sequentially through the handler registry (`uses:` name)
- Step `with:` values are interpolated against the node context plus the
  outputs of earlier steps
- The first failing step stops the node
- Cancellation cancels the asyncio task and signals sync handlers

One asyncio task per dispatched node. Completion is reported through the
scheduler's ExecutionCallbacks.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from core.config import get_defaults
from core.errors import WorkflowError
from handlers.registry import (
    HandlerContext,
    HandlerNotFoundError,
    HandlerResult,
    execute_handler,
)
from orchestrator.engine.expressions import (
    EvaluationContext,
    ExpressionEvaluator,
    get_expression_evaluator,
)
from worker.contracts import (
    DispatchRequest,
    ExecutionBackend,
    ExecutionCallbacks,
    ExecutionHandle,
    ExecutionResult,
)

logger = logging.getLogger(__name__)


# ============================================================================
# STEP EXECUTOR
# ============================================================================

class StepExecutor:
    """
    Runs the steps of one node.

    Takes a DispatchRequest, runs each step's handler, returns ExecutionResult.
    """

    def __init__(self, evaluator: Optional[ExpressionEvaluator] = None):
        self.evaluator = evaluator or get_expression_evaluator()

    async def execute(self, request: DispatchRequest, handler_ctx_hook=None) -> ExecutionResult:
        """
        Execute every step of a node.

        Args:
            request: Dispatch request
            handler_ctx_hook: Called with each HandlerContext before it runs

        Returns:
            ExecutionResult with per-step outputs
        """
        start_time = time.time()
        node = request.node
        steps: Dict[str, Dict[str, Any]] = {}
        base_context = request.context or EvaluationContext()

        for index, step in enumerate(request.job.steps):
            step_id = step.id or f"__step_{index}"
            if not step.uses:
                return ExecutionResult.failure(
                    f"Step '{step_id}' of job '{node.job_name}' has no 'uses'",
                    error_type="StepError",
                    steps=steps,
                    duration_ms=self._elapsed(start_time),
                )

            context = base_context.with_contexts(
                steps=steps,
                env={**request.env, **step.env},
            )
            try:
                params = self.evaluator.render(step.with_, context)
            except WorkflowError as e:
                return ExecutionResult.failure(
                    str(e), error_type=e.error_type, steps=steps,
                    duration_ms=self._elapsed(start_time),
                )

            handler_ctx = HandlerContext(
                run_id=request.run_id,
                node_id=node.node_id,
                job_name=node.job_name,
                step_id=step_id,
                handler=step.uses,
                params=params,
                env={**request.env, **{k: str(v) for k, v in step.env.items()}},
                matrix=dict(node.matrix),
                store=request.store,
            )
            if handler_ctx_hook is not None:
                handler_ctx_hook(handler_ctx)

            logger.debug(f"Node {node.node_id}: running step {step_id} ({step.uses})")
            try:
                result = await execute_handler(step.uses, handler_ctx)
            except HandlerNotFoundError as e:
                result = HandlerResult.failure_result(str(e), error_type="HandlerNotFoundError")

            steps[step_id] = {
                "outputs": {k: v if isinstance(v, str) else str(v) for k, v in result.output.items()},
                "outcome": "success" if result.success else "failure",
            }

            if not result.success:
                logger.info(f"Node {node.node_id}: step {step_id} failed: {result.error_message}")
                return ExecutionResult.failure(
                    result.error_message or f"Step '{step_id}' failed",
                    error_type=result.error_type or "StepError",
                    steps=steps,
                    duration_ms=self._elapsed(start_time),
                )

        return ExecutionResult.success(steps, duration_ms=self._elapsed(start_time))

    @staticmethod
    def _elapsed(start_time: float) -> int:
        return int((time.time() - start_time) * 1000)


# ============================================================================
# BACKEND
# ============================================================================

class LocalExecutionBackend(ExecutionBackend):
    """
    In-process backend: one asyncio task per dispatched node.

    Usage:
        backend = LocalExecutionBackend()
        handle = await backend.dispatch(request, callbacks)
        await backend.cancel(handle)
    """

    name = "local"

    def __init__(
        self,
        executor: Optional[StepExecutor] = None,
        cancel_grace_seconds: Optional[float] = None,
    ):
        self.executor = executor or StepExecutor()
        self.cancel_grace_seconds = (
            cancel_grace_seconds
            if cancel_grace_seconds is not None
            else get_defaults().scheduler.cancel_grace_seconds
        )
        self._tasks: Dict[str, asyncio.Task] = {}
        self._contexts: Dict[str, list] = {}

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    async def dispatch(
        self,
        request: DispatchRequest,
        callbacks: ExecutionCallbacks,
    ) -> ExecutionHandle:
        handle = ExecutionHandle.new(request.run_id, request.node.node_id)
        self._contexts[handle.handle_id] = []
        task = asyncio.create_task(
            self._run(handle, request, callbacks),
            name=f"node-{request.node.node_id}",
        )
        self._tasks[handle.handle_id] = task
        logger.debug(f"Dispatched node {request.node.node_id} as {handle.handle_id}")
        return handle

    async def cancel(self, handle: ExecutionHandle) -> None:
        task = self._tasks.pop(handle.handle_id, None)
        for handler_ctx in self._contexts.pop(handle.handle_id, []):
            handler_ctx.cancel_event.set()
        if task is None or task.done():
            return

        task.cancel()
        done, _ = await asyncio.wait({task}, timeout=self.cancel_grace_seconds)
        if not done:
            logger.warning(
                f"Node {handle.node_id} ({handle.handle_id}) did not stop within "
                f"{self.cancel_grace_seconds}s of cancellation"
            )
        logger.info(f"Cancelled node {handle.node_id} ({handle.handle_id})")

    async def shutdown(self) -> None:
        handles = list(self._tasks.keys())
        for task in self._tasks.values():
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()
        self._contexts.clear()
        if handles:
            logger.info(f"Local backend shut down, cancelled {len(handles)} node(s)")

    async def _run(
        self,
        handle: ExecutionHandle,
        request: DispatchRequest,
        callbacks: ExecutionCallbacks,
    ) -> None:
        try:
            result = await self.executor.execute(
                request, handler_ctx_hook=self._contexts[handle.handle_id].append
            )
        except asyncio.CancelledError:
            logger.debug(f"Execution of {handle.node_id} cancelled")
            raise
        except Exception as e:
            logger.exception(f"Execution of {handle.node_id} crashed")
            result = ExecutionResult.failure(f"{type(e).__name__}: {e}", error_type=type(e).__name__)

        if self._tasks.pop(handle.handle_id, None) is None:
            # Cancelled between finishing and reporting
            return
        self._contexts.pop(handle.handle_id, None)
        await callbacks.on_complete(handle, result)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["StepExecutor", "LocalExecutionBackend"]
