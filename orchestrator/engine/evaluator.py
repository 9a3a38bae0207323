# ============================================================================
# DAG EVALUATOR
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Readiness evaluation and job result aggregation
# PURPOSE: Determine ready/skipped nodes, build needs contexts, expand matrices
# CREATED: 14 OCT 2026
# ============================================================================
"""
DAG Evaluator

Core logic for deciding what happens next in a run.

Features:
- Job result aggregation across matrix nodes
- needs context (result + merged outputs) for direct dependencies only
- Readiness: every needed node terminal, then `if` decides ready/skipped
- Skipped-upstream policy point (skipped_satisfies_needs)
- Deferred (dynamic) matrix expansion once needs are terminal
- Run status aggregation

The evaluator is stateless - it takes the run, its graph and an outputs
reader as input and returns decisions. The scheduler applies them.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.config import get_defaults
from core.contracts import JobResult, NodeStatus, RunStatus
from core.errors import EvaluationError, WorkflowError
from core.models import JobNode, JobSpec, WorkflowRun
from orchestrator.engine.expressions import (
    EvaluationContext,
    ExpressionEvaluator,
    get_expression_evaluator,
)
from orchestrator.engine.graph import DependencyGraph, GraphBuilder
from orchestrator.engine.matrix import MatrixExpander

logger = logging.getLogger(__name__)

# node_id -> sealed outputs (empty unless the node succeeded)
OutputsReader = Callable[[str], Dict[str, str]]


def _node_outputs(run: WorkflowRun) -> OutputsReader:
    def read(node_id: str) -> Dict[str, str]:
        node = run.nodes[node_id]
        return dict(node.outputs) if node.status == NodeStatus.SUCCESS else {}
    return read


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class EvaluationResult:
    """Result of one readiness pass."""
    # Nodes whose needs are terminal and whose `if` is truthy
    ready_nodes: List[str] = field(default_factory=list)

    # Nodes whose `if` is falsy (or whose upstream was skipped, by policy)
    skip_nodes: List[str] = field(default_factory=list)

    # Nodes whose `if` could not be evaluated: node_id -> error
    errors: Dict[str, EvaluationError] = field(default_factory=dict)

    # Deferred jobs whose needs are terminal and can be expanded
    expansions: List[str] = field(default_factory=list)


@dataclass
class ExpansionResult:
    """Outcome of expanding a deferred (dynamic matrix) job."""
    job_name: str
    nodes: List[JobNode] = field(default_factory=list)
    # Placeholder status when expansion did not produce real nodes
    placeholder_status: Optional[NodeStatus] = None
    error: Optional[WorkflowError] = None


# ============================================================================
# MAIN EVALUATOR
# ============================================================================

class DAGEvaluator:
    """
    Main DAG evaluator.

    Combines graph, matrix and expression logic to determine:
    - Which nodes are ready to execute
    - Which nodes should be skipped
    - Which deferred jobs can be expanded
    """

    def __init__(
        self,
        expression_evaluator: Optional[ExpressionEvaluator] = None,
        graph_builder: Optional[GraphBuilder] = None,
        skipped_satisfies_needs: Optional[bool] = None,
    ):
        self.expressions = expression_evaluator or get_expression_evaluator()
        self.graph_builder = graph_builder or GraphBuilder()
        self.skipped_satisfies_needs = (
            skipped_satisfies_needs
            if skipped_satisfies_needs is not None
            else get_defaults().scheduler.skipped_satisfies_needs
        )

    @property
    def expander(self) -> MatrixExpander:
        return self.graph_builder.expander

    # ------------------------------------------------------------------
    # Job results
    # ------------------------------------------------------------------

    @staticmethod
    def job_result(nodes: List[JobNode]) -> Optional[JobResult]:
        """
        Aggregate the result of a job across its nodes.

        Returns:
            None while any node is non-terminal, else:
            failure if any node failed (without continue-on-error),
            cancelled if any node was cancelled,
            skipped if every node was skipped,
            success otherwise
        """
        if not nodes or any(not n.status.is_terminal() for n in nodes):
            return None
        if any(n.status == NodeStatus.FAILURE and not n.continue_on_error for n in nodes):
            return JobResult.FAILURE
        if any(n.status == NodeStatus.CANCELLED for n in nodes):
            return JobResult.CANCELLED
        if all(n.status == NodeStatus.SKIPPED for n in nodes):
            return JobResult.SKIPPED
        return JobResult.SUCCESS

    def needs_terminal(self, run: WorkflowRun, graph: DependencyGraph, job_name: str) -> bool:
        """True when every node of every directly needed job is terminal."""
        for dep in graph.dependencies(job_name):
            if dep in graph.deferred:
                return False
            if self.job_result(self._nodes(run, graph, dep)) is None:
                return False
        return True

    def needs_context(
        self,
        run: WorkflowRun,
        graph: DependencyGraph,
        job_name: str,
        outputs_reader: Optional[OutputsReader] = None,
    ) -> Tuple[Dict[str, Any], Dict[str, str]]:
        """
        Build the needs context for a job's direct dependencies.

        Outputs of matrix jobs are merged in node order (later nodes win).

        Returns:
            (needs context mapping, job -> result table)
        """
        read = outputs_reader or _node_outputs(run)
        needs: Dict[str, Any] = {}
        results: Dict[str, str] = {}

        for dep in graph.dependencies(job_name):
            nodes = self._nodes(run, graph, dep)
            result = self.job_result(nodes)
            outputs: Dict[str, str] = {}
            for node in nodes:
                outputs.update(read(node.node_id))
            result_value = result.value if result else None
            needs[dep] = {"result": result_value, "outputs": outputs}
            if result_value is not None:
                results[dep] = result_value

        return needs, results

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def build_context(
        self,
        run: WorkflowRun,
        graph: DependencyGraph,
        job: JobSpec,
        node: Optional[JobNode] = None,
        outputs_reader: Optional[OutputsReader] = None,
    ) -> EvaluationContext:
        """
        Build the evaluation context for a job (and optionally one of its nodes).

        Contexts: github, event, env, inputs, matrix, strategy, needs.
        """
        needs, results = self.needs_context(run, graph, job.name, outputs_reader)

        github = dict(run.event)
        github.setdefault("run_id", run.run_id)
        github.setdefault("workflow", run.workflow.name or run.workflow.workflow_id)

        env: Dict[str, Any] = {}
        env.update(run.workflow.env)
        env.update(run.env)

        matrix = dict(node.matrix) if node is not None else {}
        siblings = graph.nodes_of(job.name)
        strategy = job.strategy
        strategy_context = {
            "fail-fast": strategy.fail_fast if strategy else True,
            "max-parallel": (strategy.max_parallel if strategy else None) or len(siblings),
            "job-total": len(siblings),
            "job-index": siblings.index(node.node_id) if node and node.node_id in siblings else 0,
        }

        return EvaluationContext(
            contexts={
                "github": github,
                "event": run.event.get("event", run.event),
                "inputs": run.event.get("inputs", {}),
                "env": env,
                "matrix": matrix,
                "strategy": strategy_context,
                "needs": needs,
            },
            needs_results=results,
            run_cancelled=run.cancel_requested,
        )

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def find_ready_nodes(
        self,
        run: WorkflowRun,
        graph: DependencyGraph,
        outputs_reader: Optional[OutputsReader] = None,
    ) -> EvaluationResult:
        """
        Evaluate every BLOCKED node and every deferred job.

        A node becomes ready when every node it needs is terminal and its
        `if` evaluates truthy; skipped when the `if` is falsy.

        Args:
            run: Workflow run
            graph: Run dependency graph
            outputs_reader: Reads sealed outputs by node id

        Returns:
            EvaluationResult with ready/skip/error decisions
        """
        result = EvaluationResult()

        for job_name in graph.deferred:
            if self.needs_terminal(run, graph, job_name):
                result.expansions.append(job_name)

        for node_id in graph.node_order():
            node = run.nodes[node_id]
            if node.status != NodeStatus.BLOCKED:
                continue
            if not self.needs_terminal(run, graph, node.job_name):
                continue

            job = run.workflow.jobs[node.job_name]
            context = self.build_context(run, graph, job, node, outputs_reader)

            if not self.skipped_satisfies_needs and not node.run_if_always:
                if JobResult.SKIPPED.value in context.needs_results.values():
                    result.skip_nodes.append(node_id)
                    continue

            try:
                if self.expressions.evaluate_condition(job.if_, context):
                    result.ready_nodes.append(node_id)
                else:
                    result.skip_nodes.append(node_id)
            except EvaluationError as e:
                logger.warning(f"Condition of node '{node_id}' failed to evaluate: {e}")
                result.errors[node_id] = e

        return result

    def expand_deferred(
        self,
        run: WorkflowRun,
        graph: DependencyGraph,
        job_name: str,
        outputs_reader: Optional[OutputsReader] = None,
    ) -> ExpansionResult:
        """
        Expand a deferred job's dynamic matrix.

        The job-level `if` is evaluated first; a falsy condition or an
        expansion error yields a single placeholder node instead.
        """
        job = run.workflow.jobs[job_name]
        context = self.build_context(run, graph, job, None, outputs_reader)
        outcome = ExpansionResult(job_name=job_name)

        try:
            skip_by_policy = (
                not self.skipped_satisfies_needs
                and JobResult.SKIPPED.value in context.needs_results.values()
                and not self.graph_builder.calls_always(job)
            )
            if skip_by_policy or not self.expressions.evaluate_condition(job.if_, context):
                outcome.nodes = self.graph_builder.create_nodes(job, [{}])
                outcome.placeholder_status = NodeStatus.SKIPPED
                return outcome

            combinations = self.expander.expand_dynamic(job.matrix, context, self.expressions)
            outcome.nodes = self.graph_builder.create_nodes(job, combinations)
            logger.info(f"Expanded dynamic matrix of '{job_name}' to {len(outcome.nodes)} node(s)")
        except WorkflowError as e:
            logger.warning(f"Dynamic matrix expansion of '{job_name}' failed: {e}")
            outcome.nodes = self.graph_builder.create_nodes(job, [{}])
            outcome.placeholder_status = NodeStatus.FAILURE
            outcome.error = e

        return outcome

    # ------------------------------------------------------------------
    # Run status
    # ------------------------------------------------------------------

    @staticmethod
    def compute_run_status(run: WorkflowRun) -> RunStatus:
        """
        Aggregate the terminal status of a run.

        Structural error -> failure; external cancel -> cancelled;
        any failed node without continue-on-error -> failure; else success.
        """
        if run.error:
            return RunStatus.FAILURE
        if run.cancel_requested:
            return RunStatus.CANCELLED
        if any(
            n.status == NodeStatus.FAILURE and not n.continue_on_error
            for n in run.nodes.values()
        ):
            return RunStatus.FAILURE
        return RunStatus.SUCCESS

    @staticmethod
    def _nodes(run: WorkflowRun, graph: DependencyGraph, job_name: str) -> List[JobNode]:
        return [run.nodes[n] for n in graph.nodes_of(job_name)]


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

_evaluator: Optional[DAGEvaluator] = None


def get_evaluator() -> DAGEvaluator:
    """Get shared evaluator instance."""
    global _evaluator
    if _evaluator is None:
        _evaluator = DAGEvaluator()
    return _evaluator


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "EvaluationResult",
    "ExpansionResult",
    "DAGEvaluator",
    "OutputsReader",
    "get_evaluator",
]
