# ============================================================================
# WORKFLOW DEFINITION MODEL
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core model - Workflow template/blueprint
# PURPOSE: Define workflow structure loaded from YAML
# LAST_REVIEWED: 14 OCT 2026
# EXPORTS: WorkflowDefinition, JobSpec, StepSpec, StrategySpec, MatrixSpec,
#          ConcurrencySpec
# DEPENDENCIES: pydantic
# ============================================================================
"""
Workflow Definition Models

A WorkflowDefinition is the template/blueprint for a run.
It defines:
- What jobs exist (JobSpec)
- Dependencies between jobs (needs)
- Conditional gating (if)
- Matrix strategies, concurrency groups, declared outputs, timeouts

Workflows are loaded from YAML files and pinned onto each run.
Keys use the hyphenated YAML spelling as aliases (timeout-minutes,
continue-on-error, cancel-in-progress, fail-fast, max-parallel).
"""

import re
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, Field, field_validator, model_validator


JOB_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")

# Keys of a raw matrix mapping that are not dimensions
MATRIX_RESERVED_KEYS = ("include", "exclude")


class StepSpec(BaseModel):
    """
    A single step inside a job.

    Steps are opaque to the orchestration core - they are forwarded to the
    execution backend. The in-process backend resolves `uses` against the
    handler registry.
    """
    model_config = {"populate_by_name": True}

    id: Optional[str] = None
    name: Optional[str] = None
    uses: Optional[str] = Field(default=None, description="Handler name")
    with_: Dict[str, Any] = Field(default_factory=dict, alias="with")
    env: Dict[str, str] = Field(default_factory=dict)


class MatrixSpec(BaseModel):
    """
    Matrix specification for a job.

    Dimension values are either literal lists or an expression string that
    produces a list at runtime (dynamic matrix). The whole matrix may also
    be a single expression producing the raw mapping.
    """
    dimensions: Dict[str, Union[List[Any], str]] = Field(default_factory=dict)
    include: Union[List[Dict[str, Any]], str] = Field(default_factory=list)
    exclude: Union[List[Dict[str, Any]], str] = Field(default_factory=list)
    expression: Optional[str] = Field(
        default=None,
        description="Expression producing the whole matrix mapping"
    )

    @model_validator(mode="before")
    @classmethod
    def split_raw_matrix(cls, data: Any) -> Any:
        """Accept the YAML shape: {os: [...], include: [...], exclude: [...]}."""
        if isinstance(data, str):
            return {"expression": data}
        if isinstance(data, dict) and "dimensions" not in data and "expression" not in data:
            dimensions = {k: v for k, v in data.items() if k not in MATRIX_RESERVED_KEYS}
            result: Dict[str, Any] = {"dimensions": dimensions}
            for key in MATRIX_RESERVED_KEYS:
                if key in data:
                    result[key] = data[key]
            return result
        return data

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "MatrixSpec":
        """Build from a raw YAML-shaped mapping (used after dynamic evaluation)."""
        return cls.model_validate(raw)

    @property
    def is_dynamic(self) -> bool:
        """True if any part of the matrix must be evaluated at runtime."""
        if self.expression is not None:
            return True
        if isinstance(self.include, str) or isinstance(self.exclude, str):
            return True
        return any(isinstance(v, str) for v in self.dimensions.values())


class StrategySpec(BaseModel):
    """Job strategy: matrix plus fail-fast / max-parallel policy."""
    model_config = {"populate_by_name": True}

    matrix: Optional[MatrixSpec] = None
    fail_fast: bool = Field(default=True, alias="fail-fast")
    max_parallel: Optional[int] = Field(default=None, ge=1, alias="max-parallel")


class ConcurrencySpec(BaseModel):
    """
    Concurrency group for a job.

    The group key may contain ${{ }} expressions, resolved per node.
    """
    model_config = {"populate_by_name": True}

    group: str = Field(..., min_length=1)
    cancel_in_progress: bool = Field(default=False, alias="cancel-in-progress")

    @model_validator(mode="before")
    @classmethod
    def handle_string_input(cls, data: Any) -> Any:
        """Allow a bare string as shorthand for {group: <string>}."""
        if isinstance(data, str):
            return {"group": data}
        return data


class JobSpec(BaseModel):
    """
    Static declaration of one job.

    This is the TEMPLATE - what the job does.
    JobNode (in node.py) is the INSTANCE - runtime state for one run.
    """
    model_config = {"populate_by_name": True}

    name: str = Field(..., max_length=100, description="Job key within the workflow")
    display_name: Optional[str] = None

    needs: List[str] = Field(default_factory=list)
    if_: Optional[str] = Field(default=None, alias="if")
    strategy: Optional[StrategySpec] = None
    concurrency: Optional[ConcurrencySpec] = None
    outputs: Dict[str, str] = Field(
        default_factory=dict,
        description="Output name -> expression over steps.<id>.outputs"
    )
    timeout_minutes: Optional[float] = Field(default=None, gt=0, alias="timeout-minutes")
    continue_on_error: bool = Field(default=False, alias="continue-on-error")
    env: Dict[str, Any] = Field(default_factory=dict)
    steps: List[StepSpec] = Field(default_factory=list)

    @field_validator("if_", mode="before")
    @classmethod
    def handle_literal_condition(cls, v):
        """YAML loads `if: false` as a bool."""
        if isinstance(v, bool):
            return "true" if v else "false"
        return v

    @field_validator("needs", mode="before")
    @classmethod
    def handle_string_needs(cls, v):
        """Allow single string as shorthand for single-item list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @property
    def matrix(self) -> Optional[MatrixSpec]:
        """The job's matrix, if any."""
        return self.strategy.matrix if self.strategy else None


class WorkflowDefinition(BaseModel):
    """
    Complete workflow definition loaded from YAML.

    This is the TEMPLATE that runs are created from.
    Immutable once pinned onto a run.
    """
    workflow_id: str = Field(..., max_length=64)
    name: str = Field(default="", max_length=128)
    description: Optional[str] = None
    env: Dict[str, Any] = Field(default_factory=dict)

    # Job definitions, declaration order preserved
    jobs: Dict[str, JobSpec] = Field(..., description="Map of job name -> JobSpec")

    @model_validator(mode="before")
    @classmethod
    def name_jobs_from_keys(cls, data: Any) -> Any:
        """Populate JobSpec.name from the mapping key."""
        if not isinstance(data, dict) or not isinstance(data.get("jobs"), dict):
            return data
        jobs = {}
        for key, job in data["jobs"].items():
            if isinstance(job, dict):
                job = dict(job)
                display = job.get("name")
                if display is not None and display != key:
                    job.setdefault("display_name", display)
                job["name"] = key
            elif isinstance(job, JobSpec) and job.name != key:
                job = job.model_copy(update={"name": key})
            jobs[key] = job
        return {**data, "jobs": jobs}

    def get_job(self, name: str) -> JobSpec:
        """Get a job spec by name."""
        if name not in self.jobs:
            raise KeyError(f"Job '{name}' not found in workflow '{self.workflow_id}'")
        return self.jobs[name]

    def validate_structure(self) -> List[str]:
        """
        Validate workflow structure.

        Graph-level problems (unknown needs, cycles) are left to the graph
        builder, which raises GraphError.

        Returns list of validation errors (empty if valid).
        """
        errors = []

        if not self.jobs:
            errors.append("Workflow must declare at least one job")

        for name, job in self.jobs.items():
            if not JOB_NAME_PATTERN.match(name):
                errors.append(
                    f"Job name '{name}' must start with a letter or '_' and "
                    f"contain only alphanumerics, '-' or '_'"
                )
            step_ids = [s.id for s in job.steps if s.id]
            if len(step_ids) != len(set(step_ids)):
                errors.append(f"Job '{name}' has duplicate step ids")

        return errors


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "WorkflowDefinition",
    "JobSpec",
    "StepSpec",
    "StrategySpec",
    "MatrixSpec",
    "ConcurrencySpec",
]
