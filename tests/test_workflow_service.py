# ============================================================================
# WORKFLOW SERVICE TESTS
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Tests - Workflow loading
# PURPOSE: Verify YAML parsing, directory loading and registration
# CREATED: 14 OCT 2026
# ============================================================================
"""
Workflow Service Tests

Run with:
    pytest tests/test_workflow_service.py -v
"""

from pathlib import Path

import pytest

from core.errors import GraphError
from core.models import WorkflowDefinition
from orchestrator.engine.graph import GraphBuilder
from services.workflow_service import WorkflowService, load_workflow_text, parse_workflow


BUNDLED_DIR = Path(__file__).parent.parent / "workflows"


VALID_YAML = """
name: Example
on:
  push:
    branches: [main]
jobs:
  build:
    runs-on: ignored
    steps:
      - id: hello
        uses: echo
        with:
          message: hi
    outputs:
      greeting: ${{ steps.hello.outputs.message }}
  test:
    needs: build
    if: false
    timeout-minutes: 5
    continue-on-error: true
"""


# ============================================================================
# PARSING
# ============================================================================

class TestParsing:

    def test_yaml_shape(self):
        wf = load_workflow_text(VALID_YAML, default_id="example")

        assert wf.workflow_id == "example"
        assert wf.name == "Example"
        assert list(wf.jobs) == ["build", "test"]

        build = wf.jobs["build"]
        assert build.steps[0].uses == "echo"
        assert build.steps[0].with_ == {"message": "hi"}
        assert build.outputs == {"greeting": "${{ steps.hello.outputs.message }}"}

        test = wf.jobs["test"]
        assert test.needs == ["build"]
        assert test.if_ == "false"
        assert test.timeout_minutes == 5
        assert test.continue_on_error is True

    def test_on_key_is_dropped(self):
        # YAML 1.1 turns a bare `on` into the boolean True
        wf = parse_workflow({True: "push", "workflow_id": "x", "jobs": {"a": {}}})
        assert wf.workflow_id == "x"

    def test_name_defaults_to_id(self):
        wf = parse_workflow({"jobs": {"a": {}}}, default_id="x")
        assert wf.name == "x"

    def test_job_display_name(self):
        wf = parse_workflow({"workflow_id": "x", "jobs": {"a": {"name": "Build it"}}})
        assert wf.jobs["a"].name == "a"
        assert wf.jobs["a"].display_name == "Build it"

    def test_missing_id(self):
        with pytest.raises(ValueError):
            parse_workflow({"jobs": {"a": {}}})

    def test_not_a_mapping(self):
        with pytest.raises(ValueError):
            parse_workflow(["a", "b"], default_id="x")

    def test_concurrency_shorthand(self):
        wf = parse_workflow({"workflow_id": "x", "jobs": {"a": {"concurrency": "prod"}}})
        assert wf.jobs["a"].concurrency.group == "prod"
        assert wf.jobs["a"].concurrency.cancel_in_progress is False


# ============================================================================
# DIRECTORY LOADING
# ============================================================================

class TestWorkflowService:

    def test_load_directory(self, tmp_path):
        (tmp_path / "example.yaml").write_text(VALID_YAML)
        (tmp_path / "broken.yml").write_text("jobs: [not, a, mapping]")
        (tmp_path / "bad-name.yaml").write_text("jobs:\n  1job: {}\n")
        (tmp_path / "notes.txt").write_text("ignored")

        service = WorkflowService(str(tmp_path))
        assert service.load_all() == 1
        assert [w.workflow_id for w in service.list_all()] == ["example"]
        assert set(service.load_errors) == {"broken.yml", "bad-name.yaml"}

    def test_get_or_raise(self, tmp_path):
        service = WorkflowService(str(tmp_path))
        assert service.get("missing") is None
        with pytest.raises(KeyError):
            service.get_or_raise("missing")

    def test_missing_directory(self, tmp_path):
        service = WorkflowService(str(tmp_path / "nope"))
        assert service.load_all() == 0
        assert service.list_all() == []

    def test_env_var_directory(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WORKFLOWS_DIR", str(tmp_path))
        assert WorkflowService().workflows_dir == tmp_path

    def test_reload_picks_up_changes(self, tmp_path):
        service = WorkflowService(str(tmp_path))
        assert service.load_all() == 0
        (tmp_path / "example.yaml").write_text(VALID_YAML)
        assert service.reload() == 1
        assert service.get("example") is not None

    def test_register(self, tmp_path):
        service = WorkflowService(str(tmp_path))
        wf = WorkflowDefinition(workflow_id="prog", jobs={"a": {}})
        service.register(wf)
        assert service.get("prog") is wf

        with pytest.raises(GraphError):
            service.register(WorkflowDefinition(workflow_id="empty", jobs={}))


class TestBundledWorkflows:

    @pytest.fixture
    def service(self):
        service = WorkflowService(str(BUNDLED_DIR))
        service.load_all()
        return service

    def test_all_load(self, service):
        assert service.load_errors == {}
        assert {w.workflow_id for w in service.list_all()} == {"ci", "fan-out"}

    def test_ci_graph(self, service):
        graph, nodes = GraphBuilder().build(service.get("ci"))
        assert graph.topological_order() == ["build", "test", "deploy", "report"]
        assert len(graph.nodes_of("test")) == 3

    def test_fan_out_is_dynamic(self, service):
        graph, _ = GraphBuilder().build(service.get("fan-out"))
        assert graph.deferred == ["process"]
