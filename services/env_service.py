# ============================================================================
# ENVIRONMENT PROVIDER
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Service - Per-node environment resolution
# PURPOSE: Resolve the env mapping handed to the execution backend
# CREATED: 14 OCT 2026
# ============================================================================
"""
Environment Provider

The scheduler asks for a resolved environment per JobNode before dispatch.
The default provider layers, lowest precedence first:

    workflow env  ->  run env  ->  job env

Job-level values may contain `${{ }}` expressions (matrix, needs, env ...).
Every value is returned as a string. Secret storage and log masking belong
to the execution backend, not here.
"""

import logging
from typing import Any, Dict, Optional

from core.models import JobSpec
from orchestrator.engine.expressions import (
    EvaluationContext,
    ExpressionEvaluator,
    get_expression_evaluator,
    to_string,
)

logger = logging.getLogger(__name__)


class EnvironmentProvider:
    """Default environment resolution (no secrets)."""

    def __init__(self, evaluator: Optional[ExpressionEvaluator] = None):
        self.evaluator = evaluator or get_expression_evaluator()

    def resolve_env(
        self,
        job: JobSpec,
        matrix: Dict[str, Any],
        context: EvaluationContext,
    ) -> Dict[str, str]:
        """
        Resolve the environment for one node.

        Args:
            job: Job specification
            matrix: Matrix bindings of the node
            context: Node evaluation context (its `env` holds workflow + run env)

        Returns:
            Mapping of variable name -> string value

        Raises:
            EvaluationError: A job env expression is malformed
        """
        env: Dict[str, str] = {
            name: to_string(value)
            for name, value in (context.contexts.get("env") or {}).items()
        }

        node_context = context.with_contexts(matrix=dict(matrix), env=dict(env))
        for name, value in job.env.items():
            resolved = self.evaluator.interpolate(value, node_context) if isinstance(value, str) else value
            env[name] = to_string(resolved)

        logger.debug(f"Resolved {len(env)} env var(s) for job '{job.name}'")
        return env


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["EnvironmentProvider"]
