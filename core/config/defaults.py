# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for scheduling, matrices and artifacts
# CREATED: 14 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides sensible defaults for the orchestration core.
These can be overridden via environment variables or passed explicitly.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class SchedulerDefaults:
    """
    Defaults for the per-run scheduler.

    Controls parallelism, timeout units and the skipped-upstream policy.
    """
    # Overall cap on concurrently running nodes in one run
    max_concurrent_nodes: int = 16

    # Seconds per declared timeout unit (timeout-minutes -> 60)
    timeout_unit_seconds: float = 60.0

    # Default job timeout in units (matches the hosted platform: 6 hours)
    default_timeout_units: int = 360

    # Whether a skipped upstream counts as "needs satisfied"
    skipped_satisfies_needs: bool = True

    # How long a cancelled backend handle gets to report before being forced
    cancel_grace_seconds: float = 5.0

    @classmethod
    def from_env(cls) -> "SchedulerDefaults":
        """Create from environment variables."""
        return cls(
            max_concurrent_nodes=int(os.getenv("RUNFLOW_MAX_CONCURRENT_NODES", 16)),
            timeout_unit_seconds=float(os.getenv("RUNFLOW_TIMEOUT_UNIT_SECONDS", 60)),
            default_timeout_units=int(os.getenv("RUNFLOW_DEFAULT_TIMEOUT_UNITS", 360)),
            skipped_satisfies_needs=_env_bool("RUNFLOW_SKIPPED_SATISFIES_NEEDS", True),
            cancel_grace_seconds=float(os.getenv("RUNFLOW_CANCEL_GRACE_SECONDS", 5)),
        )


@dataclass(frozen=True)
class MatrixDefaults:
    """
    Defaults for matrix expansion.

    The combination cap prevents accidental cross-product explosion.
    """
    max_combinations: int = 256

    @classmethod
    def from_env(cls) -> "MatrixDefaults":
        """Create from environment variables."""
        return cls(
            max_combinations=int(os.getenv("RUNFLOW_MATRIX_MAX", 256)),
        )


@dataclass(frozen=True)
class ArtifactDefaults:
    """
    Defaults for the run-scoped artifact store.

    Ceilings are enforced synchronously at upload time.
    """
    max_artifact_bytes: int = 512 * 1024 * 1024  # 512 MB per artifact
    max_artifacts_per_run: int = 500
    default_retention_days: int = 90
    max_retention_days: int = 90

    @classmethod
    def from_env(cls) -> "ArtifactDefaults":
        """Create from environment variables."""
        return cls(
            max_artifact_bytes=int(os.getenv("RUNFLOW_ARTIFACT_MAX_BYTES", 512 * 1024 * 1024)),
            max_artifacts_per_run=int(os.getenv("RUNFLOW_ARTIFACT_MAX_COUNT", 500)),
            default_retention_days=int(os.getenv("RUNFLOW_ARTIFACT_RETENTION_DAYS", 90)),
            max_retention_days=int(os.getenv("RUNFLOW_ARTIFACT_MAX_RETENTION_DAYS", 90)),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    scheduler: SchedulerDefaults = field(default_factory=SchedulerDefaults)
    matrix: MatrixDefaults = field(default_factory=MatrixDefaults)
    artifacts: ArtifactDefaults = field(default_factory=ArtifactDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            scheduler=SchedulerDefaults.from_env(),
            matrix=MatrixDefaults.from_env(),
            artifacts=ArtifactDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "SchedulerDefaults",
    "MatrixDefaults",
    "ArtifactDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
