# ============================================================================
# DAG EVALUATOR TESTS
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Tests - Readiness and result aggregation
# PURPOSE: Verify job results, needs contexts, readiness, deferred expansion
# CREATED: 14 OCT 2026
# ============================================================================
"""
DAG Evaluator Tests

Nodes are moved into terminal states by hand; the evaluator only reads
the run and returns decisions.

Run with:
    pytest tests/test_evaluator.py -v
"""

import pytest

from core.contracts import JobResult, NodeStatus, RunStatus
from core.models import JobNode, WorkflowRun
from orchestrator.engine.evaluator import DAGEvaluator
from orchestrator.engine.graph import GraphBuilder


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def evaluator():
    return DAGEvaluator(graph_builder=GraphBuilder(), skipped_satisfies_needs=True)


@pytest.fixture
def build_run():
    """Factory: workflow -> (run, graph)."""
    def _build(workflow, event=None):
        graph, nodes = GraphBuilder().build(workflow)
        run = WorkflowRun(
            workflow=workflow,
            event=event or {},
            nodes={n.node_id: n for n in nodes},
            deferred_jobs=list(graph.deferred),
        )
        return run, graph
    return _build


def _succeed(node: JobNode, outputs=None):
    node.mark_ready()
    node.mark_running("h-" + node.node_id)
    node.mark_success(outputs or {})


def _fail(node: JobNode):
    node.mark_ready()
    node.mark_running("h-" + node.node_id)
    node.mark_failure("boom", "StepFailed")


def _succeed_running(node: JobNode):
    node.mark_success({})


# ============================================================================
# JOB RESULT
# ============================================================================

class TestJobResult:

    def _nodes(self, *statuses, continue_on_error=False):
        nodes = []
        for i, status in enumerate(statuses):
            node = JobNode(node_id=f"n{i}", job_name="j", continue_on_error=continue_on_error)
            node.status = status
            nodes.append(node)
        return nodes

    def test_pending_while_any_node_active(self):
        nodes = self._nodes(NodeStatus.SUCCESS, NodeStatus.RUNNING)
        assert DAGEvaluator.job_result(nodes) is None

    def test_failure_wins(self):
        nodes = self._nodes(NodeStatus.SUCCESS, NodeStatus.CANCELLED, NodeStatus.FAILURE)
        assert DAGEvaluator.job_result(nodes) == JobResult.FAILURE

    def test_cancelled(self):
        nodes = self._nodes(NodeStatus.SUCCESS, NodeStatus.CANCELLED)
        assert DAGEvaluator.job_result(nodes) == JobResult.CANCELLED

    def test_all_skipped(self):
        nodes = self._nodes(NodeStatus.SKIPPED, NodeStatus.SKIPPED)
        assert DAGEvaluator.job_result(nodes) == JobResult.SKIPPED

    def test_success_with_some_skipped(self):
        nodes = self._nodes(NodeStatus.SUCCESS, NodeStatus.SKIPPED)
        assert DAGEvaluator.job_result(nodes) == JobResult.SUCCESS

    def test_continue_on_error_counts_as_success(self):
        nodes = self._nodes(NodeStatus.FAILURE, continue_on_error=True)
        assert DAGEvaluator.job_result(nodes) == JobResult.SUCCESS


# ============================================================================
# NEEDS CONTEXT
# ============================================================================

class TestNeedsContext:

    def test_only_direct_needs_are_visible(self, evaluator, build_run, make_workflow):
        wf = make_workflow({"a": {}, "b": {"needs": "a"}, "c": {"needs": "b"}})
        run, graph = build_run(wf)
        _succeed(run.nodes["a"], {"x": "1"})
        _succeed(run.nodes["b"], {"y": "2"})

        needs, results = evaluator.needs_context(run, graph, "c")
        assert needs == {"b": {"result": "success", "outputs": {"y": "2"}}}
        assert results == {"b": "success"}

    def test_failed_node_outputs_are_hidden(self, evaluator, build_run, make_workflow):
        wf = make_workflow({"a": {}, "b": {"needs": "a", "if": "always()"}})
        run, graph = build_run(wf)
        node = run.nodes["a"]
        node.mark_ready()
        node.mark_running("h")
        node.outputs = {"x": "leaked"}
        node.mark_failure("boom")

        needs, _ = evaluator.needs_context(run, graph, "b")
        assert needs["a"] == {"result": "failure", "outputs": {}}

    def test_matrix_outputs_merge_in_node_order(self, evaluator, build_run, make_workflow):
        wf = make_workflow({
            "t": {"strategy": {"matrix": {"os": ["a", "b"]}}},
            "r": {"needs": "t"},
        })
        run, graph = build_run(wf)
        first, second = [run.nodes[n] for n in graph.nodes_of("t")]
        _succeed(first, {"shared": "first", "only_first": "1"})
        _succeed(second, {"shared": "second"})

        needs, _ = evaluator.needs_context(run, graph, "r")
        assert needs["t"]["outputs"] == {"shared": "second", "only_first": "1"}

    def test_context_contents(self, evaluator, build_run, make_workflow):
        wf = make_workflow(
            {"t": {"strategy": {"matrix": {"os": ["a", "b"]}}}},
            env={"GLOBAL": "1"},
        )
        run, graph = build_run(wf, event={"ref": "refs/heads/main"})
        run.env = {"RUN": "2"}
        node = run.nodes[graph.nodes_of("t")[1]]

        ctx = evaluator.build_context(run, graph, wf.jobs["t"], node)
        assert ctx.contexts["github"]["ref"] == "refs/heads/main"
        assert ctx.contexts["github"]["run_id"] == run.run_id
        assert ctx.contexts["env"] == {"GLOBAL": "1", "RUN": "2"}
        assert ctx.contexts["matrix"] == {"os": "b"}
        assert ctx.contexts["strategy"]["job-index"] == 1
        assert ctx.contexts["strategy"]["job-total"] == 2


# ============================================================================
# READINESS
# ============================================================================

class TestReadiness:

    def test_roots_are_ready(self, evaluator, build_run, make_workflow):
        run, graph = build_run(make_workflow({"a": {}, "b": {}, "c": {"needs": ["a", "b"]}}))
        result = evaluator.find_ready_nodes(run, graph)
        assert result.ready_nodes == ["a", "b"]
        assert result.skip_nodes == []

    def test_waits_for_every_needed_node(self, evaluator, build_run, make_workflow):
        wf = make_workflow({
            "t": {"strategy": {"matrix": {"os": ["a", "b"]}}},
            "r": {"needs": "t"},
        })
        run, graph = build_run(wf)
        first, second = [run.nodes[n] for n in graph.nodes_of("t")]
        first.status = NodeStatus.RUNNING
        second.status = NodeStatus.RUNNING
        _succeed_running(first)

        assert "r" not in evaluator.find_ready_nodes(run, graph).ready_nodes
        _succeed_running(second)
        assert "r" in evaluator.find_ready_nodes(run, graph).ready_nodes

    def test_failed_need_without_condition_skips(self, evaluator, build_run, make_workflow):
        run, graph = build_run(make_workflow({"a": {}, "b": {"needs": "a"}}))
        _fail(run.nodes["a"])
        result = evaluator.find_ready_nodes(run, graph)
        assert result.skip_nodes == ["b"]

    def test_always_runs_after_failure(self, evaluator, build_run, make_workflow):
        run, graph = build_run(make_workflow({"a": {}, "b": {"needs": "a", "if": "always()"}}))
        _fail(run.nodes["a"])
        assert evaluator.find_ready_nodes(run, graph).ready_nodes == ["b"]

    def test_failure_condition(self, evaluator, build_run, make_workflow):
        wf = make_workflow({
            "a": {},
            "on-fail": {"needs": "a", "if": "failure()"},
        })
        run, graph = build_run(wf)
        _succeed(run.nodes["a"])
        assert evaluator.find_ready_nodes(run, graph).skip_nodes == ["on-fail"]

    def test_condition_reads_event(self, evaluator, build_run, make_workflow):
        wf = make_workflow({"deploy": {"if": "github.ref == 'refs/heads/main'"}})
        run, graph = build_run(wf, event={"ref": "refs/heads/feature"})
        assert evaluator.find_ready_nodes(run, graph).skip_nodes == ["deploy"]

    def test_condition_error_is_reported(self, evaluator, build_run, make_workflow):
        run, graph = build_run(make_workflow({"a": {"if": "nope.value == 1"}}))
        result = evaluator.find_ready_nodes(run, graph)
        assert "a" in result.errors
        assert result.ready_nodes == []

    def test_skipped_upstream_satisfies_needs_by_default(self, evaluator, build_run, make_workflow):
        run, graph = build_run(make_workflow({"a": {"if": "false"}, "b": {"needs": "a"}}))
        run.nodes["a"].mark_skipped()
        assert evaluator.find_ready_nodes(run, graph).ready_nodes == ["b"]

    def test_skipped_upstream_policy_off(self, build_run, make_workflow):
        strict = DAGEvaluator(skipped_satisfies_needs=False)
        wf = make_workflow({
            "a": {"if": "false"},
            "b": {"needs": "a"},
            "c": {"needs": "a", "if": "always()"},
        })
        run, graph = build_run(wf)
        run.nodes["a"].mark_skipped()
        result = strict.find_ready_nodes(run, graph)
        assert result.skip_nodes == ["b"]
        assert result.ready_nodes == ["c"]

    def test_cancelled_run_skips_plain_nodes(self, evaluator, build_run, make_workflow):
        run, graph = build_run(make_workflow({"a": {}, "b": {"if": "always()"}}))
        run.cancel_requested = True
        result = evaluator.find_ready_nodes(run, graph)
        assert result.skip_nodes == ["a"]
        assert result.ready_nodes == ["b"]


# ============================================================================
# DEFERRED EXPANSION
# ============================================================================

class TestDeferredExpansion:

    @pytest.fixture
    def workflow(self, make_workflow):
        return make_workflow({
            "plan": {},
            "work": {
                "needs": "plan",
                "strategy": {"matrix": {"shard": "${{ fromJSON(needs.plan.outputs.list) }}"}},
            },
        })

    def test_not_expanded_before_needs_terminal(self, evaluator, build_run, workflow):
        run, graph = build_run(workflow)
        assert evaluator.find_ready_nodes(run, graph).expansions == []

    def test_expands_from_upstream_outputs(self, evaluator, build_run, workflow):
        run, graph = build_run(workflow)
        _succeed(run.nodes["plan"], {"list": '["x", "y", "z"]'})
        assert evaluator.find_ready_nodes(run, graph).expansions == ["work"]

        outcome = evaluator.expand_deferred(run, graph, "work")
        assert outcome.placeholder_status is None
        assert [n.matrix for n in outcome.nodes] == [{"shard": "x"}, {"shard": "y"}, {"shard": "z"}]

    def test_bad_output_gives_failed_placeholder(self, evaluator, build_run, workflow):
        run, graph = build_run(workflow)
        _succeed(run.nodes["plan"], {"list": "not json"})
        outcome = evaluator.expand_deferred(run, graph, "work")
        assert outcome.placeholder_status == NodeStatus.FAILURE
        assert len(outcome.nodes) == 1
        assert outcome.nodes[0].node_id == "work"
        assert outcome.error is not None

    def test_failed_upstream_gives_skipped_placeholder(self, evaluator, build_run, workflow):
        run, graph = build_run(workflow)
        _fail(run.nodes["plan"])
        outcome = evaluator.expand_deferred(run, graph, "work")
        assert outcome.placeholder_status == NodeStatus.SKIPPED
        assert len(outcome.nodes) == 1


# ============================================================================
# RUN STATUS
# ============================================================================

class TestRunStatus:

    def test_structural_error(self, build_run, make_workflow):
        run, _ = build_run(make_workflow({"a": {}}))
        run.error = "cycle"
        assert DAGEvaluator.compute_run_status(run) == RunStatus.FAILURE

    def test_cancelled(self, build_run, make_workflow):
        run, _ = build_run(make_workflow({"a": {}}))
        run.cancel_requested = True
        assert DAGEvaluator.compute_run_status(run) == RunStatus.CANCELLED

    def test_failure_unless_continue_on_error(self, build_run, make_workflow):
        run, _ = build_run(make_workflow({"a": {}, "b": {"continue-on-error": True}}))
        _fail(run.nodes["b"])
        _succeed(run.nodes["a"])
        assert DAGEvaluator.compute_run_status(run) == RunStatus.SUCCESS
        run.nodes["a"].status = NodeStatus.FAILURE
        assert DAGEvaluator.compute_run_status(run) == RunStatus.FAILURE

    def test_skipped_nodes_do_not_fail_the_run(self, build_run, make_workflow):
        run, _ = build_run(make_workflow({"a": {"if": "false"}}))
        run.nodes["a"].mark_skipped()
        assert DAGEvaluator.compute_run_status(run) == RunStatus.SUCCESS
