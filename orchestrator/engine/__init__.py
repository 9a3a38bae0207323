# ============================================================================
# ORCHESTRATOR ENGINE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Engine components
# PURPOSE: Expressions, matrix expansion, graph building, readiness evaluation
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Orchestrator Engine Components

- expressions: ${{ }} expression parsing and evaluation
- matrix: matrix strategy expansion
- graph: needs graph validation and node instantiation
- evaluator: readiness, job results, deferred expansion
"""

from orchestrator.engine.expressions import (
    EvaluationContext,
    ExpressionEvaluator,
    get_expression_evaluator,
    is_truthy,
    to_string,
)
from orchestrator.engine.matrix import MatrixExpander
from orchestrator.engine.graph import DependencyGraph, GraphBuilder
from orchestrator.engine.evaluator import (
    DAGEvaluator,
    EvaluationResult,
    ExpansionResult,
    get_evaluator,
)

__all__ = [
    # Expressions
    "EvaluationContext",
    "ExpressionEvaluator",
    "get_expression_evaluator",
    "is_truthy",
    "to_string",
    # Matrix
    "MatrixExpander",
    # Graph
    "DependencyGraph",
    "GraphBuilder",
    # Evaluator
    "DAGEvaluator",
    "EvaluationResult",
    "ExpansionResult",
    "get_evaluator",
]
