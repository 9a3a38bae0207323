# ============================================================================
# MATRIX EXPANDER
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Matrix strategy expansion
# PURPOSE: Turn a matrix spec into an ordered list of job variants
# CREATED: 14 OCT 2026
# ============================================================================
"""
Matrix Expander

Expands a MatrixSpec into concrete combinations, one per JobNode.

Algorithm:
1. Cartesian product of the declared dimensions, in declaration order,
   last dimension varying fastest
2. Drop combinations matching any `exclude` entry (partial match)
3. For each `include` entry: merge its extra keys onto every product
   combination whose dimension values match; if none match, append it

The resulting order is deterministic and stable across calls, which keeps
node ids and test fixtures reproducible.

Dynamic matrices (dimension values, include or exclude given as
expressions) are resolved first with the expression evaluator, once the
needs context is available.
"""

import itertools
import logging
from typing import Any, Dict, List, Optional

from core.config import get_defaults
from core.errors import MatrixError
from core.models import MatrixSpec
from orchestrator.engine.expressions import (
    EvaluationContext,
    ExpressionEvaluator,
    get_expression_evaluator,
)

logger = logging.getLogger(__name__)


def _matches(combination: Dict[str, Any], entry: Dict[str, Any]) -> bool:
    """Partial match: every key in the entry equals the combination's value."""
    return all(k in combination and combination[k] == v for k, v in entry.items())


class MatrixExpander:
    """Expands matrix strategies into job variants."""

    def __init__(self, max_combinations: Optional[int] = None):
        self.max_combinations = (
            max_combinations
            if max_combinations is not None
            else get_defaults().matrix.max_combinations
        )

    def expand(self, matrix: MatrixSpec) -> List[Dict[str, Any]]:
        """
        Expand a fully static matrix.

        Args:
            matrix: Matrix spec with literal dimensions/include/exclude

        Returns:
            Ordered list of combination mappings

        Raises:
            MatrixError: Unresolved expressions, excludes naming undeclared
                dimensions, empty result, or too many combinations
        """
        if matrix.is_dynamic:
            raise MatrixError("Matrix contains unresolved expressions; resolve it first")

        dimensions = matrix.dimensions
        for name, values in dimensions.items():
            if not isinstance(values, list):
                raise MatrixError(f"Matrix dimension '{name}' must be a list")

        excludes = self._entries(matrix.exclude, "exclude")
        includes = self._entries(matrix.include, "include")

        for entry in excludes:
            unknown = [k for k in entry if k not in dimensions]
            if unknown:
                raise MatrixError(
                    f"Matrix exclude references undeclared dimension(s): {', '.join(unknown)}"
                )

        combinations: List[Dict[str, Any]] = []
        if dimensions:
            names = list(dimensions.keys())
            for values in itertools.product(*(dimensions[n] for n in names)):
                combination = dict(zip(names, values))
                if any(_matches(combination, entry) for entry in excludes):
                    continue
                combinations.append(combination)
                self._check_cap(len(combinations))

        # Includes match against the product only, not earlier additions
        originals = [dict(c) for c in combinations]
        additions: List[Dict[str, Any]] = []
        for entry in includes:
            dimension_keys = {k: v for k, v in entry.items() if k in dimensions}
            extra_keys = {k: v for k, v in entry.items() if k not in dimensions}
            matched = False
            for original, combination in zip(originals, combinations):
                if _matches(original, dimension_keys):
                    matched = True
                    combination.update(extra_keys)
            if not matched:
                additions.append(dict(entry))
                self._check_cap(len(combinations) + len(additions))

        result = combinations + additions
        if not result:
            raise MatrixError("Matrix produced no combinations")

        logger.debug(
            f"Matrix expanded to {len(result)} combination(s) "
            f"({len(excludes)} exclude, {len(includes)} include)"
        )
        return result

    def resolve(
        self,
        matrix: MatrixSpec,
        context: EvaluationContext,
        evaluator: Optional[ExpressionEvaluator] = None,
    ) -> MatrixSpec:
        """
        Evaluate every expression inside a dynamic matrix.

        Raises:
            EvaluationError: If an expression cannot be evaluated
            MatrixError: If an expression yields the wrong shape
        """
        if not matrix.is_dynamic:
            return matrix

        evaluator = evaluator or get_expression_evaluator()

        if matrix.expression is not None:
            raw = evaluator.interpolate(matrix.expression, context)
            if not isinstance(raw, dict):
                raise MatrixError(
                    f"Matrix expression must produce an object, got {type(raw).__name__}"
                )
            resolved = MatrixSpec.from_raw(raw)
            if resolved.is_dynamic:
                raise MatrixError("Matrix expression produced a non-list dimension")
            return resolved

        dimensions: Dict[str, List[Any]] = {}
        for name, values in matrix.dimensions.items():
            if isinstance(values, str):
                values = evaluator.interpolate(values, context)
                if not isinstance(values, list):
                    raise MatrixError(
                        f"Matrix dimension '{name}' must evaluate to a list, "
                        f"got {type(values).__name__}"
                    )
            dimensions[name] = values

        return MatrixSpec(
            dimensions=dimensions,
            include=self._resolve_entries(matrix.include, "include", context, evaluator),
            exclude=self._resolve_entries(matrix.exclude, "exclude", context, evaluator),
        )

    def expand_dynamic(
        self,
        matrix: MatrixSpec,
        context: EvaluationContext,
        evaluator: Optional[ExpressionEvaluator] = None,
    ) -> List[Dict[str, Any]]:
        """Resolve expressions, then expand."""
        return self.expand(self.resolve(matrix, context, evaluator))

    # ------------------------------------------------------------------

    def _check_cap(self, count: int) -> None:
        if count > self.max_combinations:
            raise MatrixError(
                f"Matrix exceeds the maximum of {self.max_combinations} combinations"
            )

    @staticmethod
    def _entries(entries: Any, label: str) -> List[Dict[str, Any]]:
        if not isinstance(entries, list):
            raise MatrixError(f"Matrix {label} must be a list of objects")
        for entry in entries:
            if not isinstance(entry, dict) or not entry:
                raise MatrixError(f"Matrix {label} entries must be non-empty objects")
        return entries

    @staticmethod
    def _resolve_entries(
        entries: Any,
        label: str,
        context: EvaluationContext,
        evaluator: ExpressionEvaluator,
    ) -> List[Dict[str, Any]]:
        if isinstance(entries, str):
            entries = evaluator.interpolate(entries, context)
            if not isinstance(entries, list):
                raise MatrixError(f"Matrix {label} must evaluate to a list")
        return entries


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["MatrixExpander"]
