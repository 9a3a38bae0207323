# ============================================================================
# ERROR TAXONOMY
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Foundation - Exception hierarchy
# PURPOSE: Typed errors for structural, evaluation, timeout and store failures
# CREATED: 14 OCT 2026
# ============================================================================
"""
Error Taxonomy

Structural errors (fatal to the whole run, raised before any dispatch):
- GraphError: unknown needs, cycles, duplicate job names
- MatrixError: invalid or oversized matrix strategy

Per-node errors (contained to the issuing node):
- EvaluationError: malformed expression, type mismatch, unknown function
- JobTimeoutError: node exceeded its declared timeout
- StoreError family: DuplicateOutputError, ArtifactExistsError,
  ArtifactNotFoundError, QuotaExceededError
"""

from typing import List, Optional


class WorkflowError(Exception):
    """Base exception for all orchestration errors."""

    #: Short name surfaced as JobNode.error_type
    error_type: str = "WorkflowError"


# ============================================================================
# STRUCTURAL ERRORS
# ============================================================================

class GraphError(WorkflowError):
    """Raised when the needs graph is invalid (unknown job, cycle)."""
    error_type = "GraphError"

    def __init__(self, message: str, members: Optional[List[str]] = None):
        self.members = members or []
        super().__init__(message)


class MatrixError(WorkflowError):
    """Raised when a matrix strategy is invalid or too large."""
    error_type = "MatrixError"


# ============================================================================
# PER-NODE ERRORS
# ============================================================================

class EvaluationError(WorkflowError):
    """Raised when an expression cannot be parsed or evaluated."""
    error_type = "EvaluationError"

    def __init__(self, message: str, expression: Optional[str] = None):
        self.expression = expression
        if expression is not None:
            message = f"{message} (in expression '{expression}')"
        super().__init__(message)


class JobTimeoutError(WorkflowError):
    """Raised when a node exceeds its declared timeout."""
    error_type = "TimeoutError"

    def __init__(self, node_id: str, timeout_seconds: float):
        self.node_id = node_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Node '{node_id}' exceeded its timeout of {timeout_seconds:g}s"
        )


# ============================================================================
# STORE ERRORS
# ============================================================================

class StoreError(WorkflowError):
    """Base exception for output/artifact store failures."""
    error_type = "StoreError"


class DuplicateOutputError(StoreError):
    """Raised when a sealed output is written again with a different value."""
    error_type = "DuplicateOutputError"


class ArtifactExistsError(StoreError):
    """Raised when uploading an existing artifact name without overwrite."""
    error_type = "ArtifactExistsError"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Artifact already exists: {name}")


class ArtifactNotFoundError(StoreError):
    """Raised when an exact artifact name matches nothing."""
    error_type = "ArtifactNotFoundError"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Artifact not found: {name}")


class QuotaExceededError(StoreError):
    """Raised when an upload breaks a size, count or retention ceiling."""
    error_type = "QuotaExceededError"


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "WorkflowError",
    "GraphError",
    "MatrixError",
    "EvaluationError",
    "JobTimeoutError",
    "StoreError",
    "DuplicateOutputError",
    "ArtifactExistsError",
    "ArtifactNotFoundError",
    "QuotaExceededError",
]
