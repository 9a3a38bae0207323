# ============================================================================
# DEPENDENCY GRAPH BUILDER
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - needs graph construction and validation
# PURPOSE: Validate the job DAG and instantiate JobNodes for a run
# CREATED: 14 OCT 2026
# ============================================================================
"""
Dependency Graph Builder

Builds the job-level DAG from `needs` declarations and instantiates the
JobNodes of a run.

Features:
- Unknown, duplicate and self `needs` rejected with GraphError
- Topological sort (Kahn's algorithm, declaration-order tie-break)
- Cycle detection naming the jobs on the cycle
- Static matrices expanded at build time, dynamic ones deferred

Every matrix node of a job shares the job's edges: a dependent is ready
only once all nodes of every needed job are terminal.
"""

import heapq
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from core.errors import EvaluationError, GraphError, MatrixError
from core.models import JobNode, JobSpec, WorkflowDefinition, WorkflowRun
from core.models.node import make_display_name, make_node_id
from orchestrator.engine.expressions import uses_function
from orchestrator.engine.matrix import MatrixExpander

logger = logging.getLogger(__name__)


# ============================================================================
# DATA STRUCTURES
# ============================================================================

@dataclass
class DependencyGraph:
    """
    Dependency graph for one run.

    Edges are between jobs. A -> B means "B needs A".
    Each job maps to one or more node ids (matrix variants).
    """
    # Job -> jobs that need it (declaration order)
    forward_edges: Dict[str, List[str]] = field(default_factory=dict)

    # Job -> jobs it needs (declaration order)
    backward_edges: Dict[str, List[str]] = field(default_factory=dict)

    # Topological order of job names
    order: List[str] = field(default_factory=list)

    # Job -> node ids, node id -> job
    job_nodes: Dict[str, List[str]] = field(default_factory=dict)
    node_jobs: Dict[str, str] = field(default_factory=dict)

    # Jobs whose nodes are not created yet (dynamic matrix)
    deferred: List[str] = field(default_factory=list)

    def topological_order(self) -> List[str]:
        """Job names, every job after all the jobs it needs."""
        return list(self.order)

    def dependencies(self, job_name: str) -> List[str]:
        """Jobs this job directly needs."""
        return list(self.backward_edges.get(job_name, []))

    def dependents(self, job_name: str) -> List[str]:
        """Jobs that directly need this job."""
        return list(self.forward_edges.get(job_name, []))

    def nodes_of(self, job_name: str) -> List[str]:
        """Node ids instantiated from a job (empty while deferred)."""
        return list(self.job_nodes.get(job_name, []))

    def job_of(self, node_id: str) -> str:
        """Job name a node was instantiated from."""
        return self.node_jobs[node_id]

    def upstream_nodes(self, node_id: str) -> List[str]:
        """Every node of every job the node's job directly needs."""
        upstream: List[str] = []
        for dep in self.dependencies(self.job_of(node_id)):
            upstream.extend(self.job_nodes.get(dep, []))
        return upstream

    def node_order(self) -> List[str]:
        """All node ids in job topological order."""
        return [n for job in self.order for n in self.job_nodes.get(job, [])]

    def add_nodes(self, job_name: str, node_ids: List[str]) -> None:
        """Register nodes for a job (build time or dynamic expansion)."""
        self.job_nodes.setdefault(job_name, [])
        for node_id in node_ids:
            self.job_nodes[job_name].append(node_id)
            self.node_jobs[node_id] = job_name
        if job_name in self.deferred:
            self.deferred.remove(job_name)


# ============================================================================
# GRAPH BUILDER
# ============================================================================

class GraphBuilder:
    """Builds and validates dependency graphs from workflow definitions."""

    def __init__(self, expander: Optional[MatrixExpander] = None):
        self.expander = expander or MatrixExpander()

    def build_job_graph(self, workflow: WorkflowDefinition) -> DependencyGraph:
        """
        Build and validate the job-level DAG.

        Args:
            workflow: Workflow definition

        Returns:
            DependencyGraph with edges and topological order (no nodes)

        Raises:
            GraphError: Invalid structure, unknown/duplicate/self needs, cycle
        """
        errors = workflow.validate_structure()
        if errors:
            raise GraphError("; ".join(errors))

        graph = DependencyGraph()
        for job_name in workflow.jobs:
            graph.forward_edges[job_name] = []
            graph.backward_edges[job_name] = []

        for job_name, job in workflow.jobs.items():
            seen = set()
            for dep in job.needs:
                if dep == job_name:
                    raise GraphError(f"Job '{job_name}' cannot need itself", [job_name])
                if dep not in workflow.jobs:
                    raise GraphError(
                        f"Job '{job_name}' needs unknown job '{dep}'", [job_name, dep]
                    )
                if dep in seen:
                    raise GraphError(
                        f"Job '{job_name}' lists '{dep}' in needs more than once", [job_name]
                    )
                seen.add(dep)
                graph.forward_edges[dep].append(job_name)
                graph.backward_edges[job_name].append(dep)

        graph.order = self._topological_sort(list(workflow.jobs), graph)
        return graph

    def build(self, workflow: WorkflowDefinition) -> Tuple[DependencyGraph, List[JobNode]]:
        """
        Build the run graph and instantiate all statically known nodes.

        Returns:
            (graph, nodes in topological order)

        Raises:
            GraphError: Invalid needs graph
            MatrixError: Invalid or oversized static matrix
        """
        graph = self.build_job_graph(workflow)
        nodes: List[JobNode] = []

        for job_name in graph.order:
            job = workflow.jobs[job_name]
            matrix = job.matrix
            if matrix is not None and matrix.is_dynamic:
                graph.deferred.append(job_name)
                logger.debug(f"Job '{job_name}' has a dynamic matrix, deferring expansion")
                continue

            combinations = self.expander.expand(matrix) if matrix is not None else [{}]
            job_nodes = self.create_nodes(job, combinations)
            graph.add_nodes(job_name, [n.node_id for n in job_nodes])
            nodes.extend(job_nodes)

        logger.info(
            f"Built graph for '{workflow.workflow_id}': {len(graph.order)} jobs, "
            f"{len(nodes)} nodes, {len(graph.deferred)} deferred"
        )
        return graph, nodes

    def rebuild(self, run: WorkflowRun) -> DependencyGraph:
        """Rebuild the graph of a persisted run from its pinned workflow and nodes."""
        graph = self.build_job_graph(run.workflow)
        for node in run.nodes.values():
            graph.add_nodes(node.job_name, [node.node_id])
        graph.deferred = [j for j in graph.order if j in run.deferred_jobs]
        return graph

    def create_nodes(self, job: JobSpec, combinations: List[dict]) -> List[JobNode]:
        """
        Instantiate one JobNode per matrix combination.

        Raises:
            MatrixError: If two combinations collide on the same node id
        """
        run_if_always = self.calls_always(job)
        nodes: List[JobNode] = []
        seen = set()
        for combination in combinations:
            node_id = make_node_id(job.name, combination)
            if node_id in seen:
                raise MatrixError(
                    f"Job '{job.name}' matrix contains a duplicate combination: {combination}"
                )
            seen.add(node_id)
            nodes.append(JobNode(
                node_id=node_id,
                job_name=job.name,
                display_name=make_display_name(job.display_name or job.name, combination),
                matrix=dict(combination),
                run_if_always=run_if_always,
                continue_on_error=job.continue_on_error,
            ))
        return nodes

    @staticmethod
    def calls_always(job: JobSpec) -> bool:
        """True if the job condition calls always()."""
        if not job.if_:
            return False
        try:
            return uses_function(job.if_, "always")
        except EvaluationError as e:
            # Surfaced again, as a node failure, when the condition is evaluated
            logger.debug(f"Job '{job.name}' has an unparsable condition: {e}")
            return False

    @staticmethod
    def _topological_sort(declared: List[str], graph: DependencyGraph) -> List[str]:
        """Kahn's algorithm; among ready jobs the earliest declared goes first."""
        position = {name: i for i, name in enumerate(declared)}
        in_degree = {name: len(graph.backward_edges[name]) for name in declared}

        heap = [(position[n], n) for n in declared if in_degree[n] == 0]
        heapq.heapify(heap)
        order: List[str] = []

        while heap:
            _, job_name = heapq.heappop(heap)
            order.append(job_name)
            for dependent in graph.forward_edges[job_name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(heap, (position[dependent], dependent))

        if len(order) != len(declared):
            remaining = {n for n in declared if in_degree[n] > 0}
            # Peel off jobs that merely sit downstream of a cycle
            changed = True
            while changed:
                changed = False
                for name in list(remaining):
                    if not any(d in remaining for d in graph.forward_edges[name]):
                        remaining.discard(name)
                        changed = True
            members = [n for n in declared if n in remaining]
            raise GraphError(
                f"Cycle detected in job needs involving: {', '.join(members)}", members
            )

        return order


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["DependencyGraph", "GraphBuilder"]
