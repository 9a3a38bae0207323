# ============================================================================
# RUN SERVICE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Run lifecycle management
# PURPOSE: Create runs from trigger events, reload runs for resume
# CREATED: 14 OCT 2026
# ============================================================================
"""
Run Service

Manages run creation:
- Pin a copy of the workflow definition onto the run
- Build the dependency graph and instantiate static matrix nodes
- Structural errors (GraphError, MatrixError) fail the run immediately,
  before any dispatch, with the error text stored verbatim
- Reload persisted runs and rebuild their graphs
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from core.contracts import RunStatus
from core.errors import GraphError, MatrixError
from core.models import EventType, WorkflowDefinition, WorkflowRun
from orchestrator.engine.graph import DependencyGraph, GraphBuilder

logger = logging.getLogger(__name__)


class RunService:
    """Service for run lifecycle management."""

    def __init__(self, repository=None, graph_builder: Optional[GraphBuilder] = None):
        """
        Initialize run service.

        Args:
            repository: Optional RunRepository to persist created runs
            graph_builder: Graph builder (matrix limits come from its expander)
        """
        self.repository = repository
        self.graph_builder = graph_builder or GraphBuilder()

    async def create_run(
        self,
        workflow: WorkflowDefinition,
        event: Optional[Dict[str, Any]] = None,
        env: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> Tuple[WorkflowRun, Optional[DependencyGraph]]:
        """
        Create a run from a workflow and trigger context.

        Args:
            workflow: Workflow definition (pinned as a copy)
            event: Trigger context exposed as `github` / `event`
            env: Run-level environment
            run_id: Optional caller-chosen id; an existing run is returned as-is

        Returns:
            (run, graph). graph is None when the run failed structurally.
        """
        if run_id and self.repository is not None:
            existing = await self.repository.get_run(run_id)
            if existing is not None:
                logger.info(f"Returning existing run {run_id}")
                return existing, self._graph_or_none(existing)

        fields: Dict[str, Any] = {
            "workflow": workflow.model_copy(deep=True),
            "event": dict(event or {}),
            "env": dict(env or {}),
        }
        if run_id:
            fields["run_id"] = run_id
        run = WorkflowRun(**fields)

        graph: Optional[DependencyGraph] = None
        try:
            graph, nodes = self.graph_builder.build(run.workflow)
        except (GraphError, MatrixError) as e:
            run.status = RunStatus.FAILURE
            run.error = str(e)
            run.completed_at = datetime.utcnow()
            run.record(EventType.RUN_FAILED, message=run.error, error_type=e.error_type)
            logger.warning(f"Run {run.run_id} of '{workflow.workflow_id}' rejected: {e}")
        else:
            for node in nodes:
                run.nodes[node.node_id] = node
            run.deferred_jobs = list(graph.deferred)
            run.record(
                EventType.RUN_CREATED,
                nodes=len(nodes),
                deferred=list(graph.deferred),
            )
            logger.info(
                f"Created run {run.run_id} with {len(nodes)} nodes "
                f"for workflow {workflow.workflow_id}"
            )

        if self.repository is not None:
            await self.repository.save_run(run)
        return run, graph

    async def load_run(self, run_id: str) -> Tuple[WorkflowRun, Optional[DependencyGraph]]:
        """
        Load a persisted run and rebuild its graph.

        Raises:
            KeyError: Unknown run, or no repository configured
        """
        if self.repository is None:
            raise KeyError(f"Run not found: {run_id}")
        run = await self.repository.get_run(run_id)
        if run is None:
            raise KeyError(f"Run not found: {run_id}")
        return run, self._graph_or_none(run)

    def _graph_or_none(self, run: WorkflowRun) -> Optional[DependencyGraph]:
        if run.error:
            return None
        return self.graph_builder.rebuild(run)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["RunService"]
