# ============================================================================
# WORKFLOW SERVICE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Workflow definition management
# PURPOSE: Load and cache workflow definitions
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Workflow Service

Loads workflow definitions from YAML files and provides
lookup capabilities. Caches loaded workflows.

Workflow files are stored in the workflows/ directory (or WORKFLOWS_DIR).
The workflow id is the `workflow_id` key if present, else the file stem.
A top-level `on:` trigger block is accepted and ignored; trigger
ingestion happens outside the core.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, List

import yaml
from pydantic import ValidationError

from core.errors import GraphError
from core.models import WorkflowDefinition

logger = logging.getLogger(__name__)


def parse_workflow(data: Dict[str, Any], default_id: Optional[str] = None) -> WorkflowDefinition:
    """
    Build a WorkflowDefinition from a YAML-shaped mapping.

    Args:
        data: Parsed YAML document
        default_id: Workflow id used when the document has none

    Returns:
        WorkflowDefinition

    Raises:
        ValueError: Not a mapping, or schema validation failed
    """
    if not isinstance(data, dict):
        raise ValueError("Workflow document must be a mapping")

    data = dict(data)
    # YAML 1.1 reads a bare `on` key as boolean True
    if True in data:
        data["on"] = data.pop(True)
    data.pop("on", None)

    if "workflow_id" not in data:
        if default_id is None:
            raise ValueError("Workflow document has no workflow_id")
        data["workflow_id"] = default_id
    data.setdefault("name", data["workflow_id"])

    return WorkflowDefinition.model_validate(data)


def load_workflow_text(text: str, default_id: Optional[str] = None) -> WorkflowDefinition:
    """Parse a workflow from YAML text."""
    return parse_workflow(yaml.safe_load(text), default_id)


class WorkflowService:
    """Service for loading and managing workflow definitions."""

    def __init__(self, workflows_dir: Optional[str] = None):
        """
        Initialize workflow service.

        Args:
            workflows_dir: Directory containing workflow YAML files.
                          Defaults to WORKFLOWS_DIR, then ./workflows/
        """
        workflows_dir = workflows_dir or os.environ.get("WORKFLOWS_DIR")
        if workflows_dir:
            self.workflows_dir = Path(workflows_dir)
        else:
            self.workflows_dir = Path(__file__).parent.parent / "workflows"

        self._cache: Dict[str, WorkflowDefinition] = {}
        self._errors: Dict[str, str] = {}
        self._loaded = False

    def load_all(self) -> int:
        """
        Load all workflow definitions from the workflows directory.

        Invalid files are logged and skipped.

        Returns:
            Number of workflows loaded
        """
        self._loaded = True
        if not self.workflows_dir.exists():
            logger.warning(f"Workflows directory not found: {self.workflows_dir}")
            return 0

        count = 0
        files = sorted(self.workflows_dir.glob("*.yaml")) + sorted(self.workflows_dir.glob("*.yml"))
        for yaml_file in files:
            try:
                workflow = self._load_yaml(yaml_file)
            except (OSError, yaml.YAMLError, ValueError, ValidationError) as e:
                self._errors[yaml_file.name] = str(e)
                logger.error(f"Failed to load {yaml_file}: {e}")
                continue
            self._cache[workflow.workflow_id] = workflow
            count += 1
            logger.info(f"Loaded workflow: {workflow.workflow_id} ({len(workflow.jobs)} jobs)")

        logger.info(f"Loaded {count} workflows from {self.workflows_dir}")
        return count

    def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        """
        Get a workflow definition by ID.

        Returns:
            WorkflowDefinition or None if not found
        """
        if not self._loaded:
            self.load_all()

        return self._cache.get(workflow_id)

    def get_or_raise(self, workflow_id: str) -> WorkflowDefinition:
        """
        Get a workflow definition, raising if not found.

        Raises:
            KeyError if workflow not found
        """
        workflow = self.get(workflow_id)
        if workflow is None:
            raise KeyError(f"Workflow not found: {workflow_id}")
        return workflow

    def list_all(self) -> List[WorkflowDefinition]:
        """List all loaded workflows."""
        if not self._loaded:
            self.load_all()

        return list(self._cache.values())

    @property
    def load_errors(self) -> Dict[str, str]:
        """File name -> error for files that failed to load."""
        return dict(self._errors)

    def register(self, workflow: WorkflowDefinition) -> None:
        """
        Register a workflow definition (for testing or programmatic use).

        Raises:
            GraphError: Structural validation failed
        """
        errors = workflow.validate_structure()
        if errors:
            raise GraphError("; ".join(errors))

        self._cache[workflow.workflow_id] = workflow
        logger.info(f"Registered workflow: {workflow.workflow_id}")

    def _load_yaml(self, path: Path) -> WorkflowDefinition:
        """
        Load a workflow from YAML file.

        Raises:
            ValueError: Invalid document or structure
        """
        with open(path) as f:
            data = yaml.safe_load(f)

        workflow = parse_workflow(data, default_id=path.stem)

        errors = workflow.validate_structure()
        if errors:
            raise ValueError(f"Invalid workflow in {path}: {errors}")

        return workflow

    def reload(self) -> int:
        """Reload all workflows from disk."""
        self._cache.clear()
        self._errors.clear()
        self._loaded = False
        return self.load_all()


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["WorkflowService", "parse_workflow", "load_workflow_text"]
