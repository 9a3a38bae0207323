# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 14 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the orchestration core.
"""

from core.config.defaults import (
    SchedulerDefaults,
    MatrixDefaults,
    ArtifactDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "SchedulerDefaults",
    "MatrixDefaults",
    "ArtifactDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
