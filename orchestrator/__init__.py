# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Run scheduling and orchestration
# PURPOSE: Drive workflow runs: per-run schedulers, shared concurrency groups
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Orchestrator Module

- engine/: expressions, matrix expansion, graph building, readiness
- concurrency: concurrency groups shared by all runs
- scheduler: RunScheduler, the control loop of one run
- loop: Orchestrator, submits/cancels/resumes many runs

Usage:
    from orchestrator.loop import Orchestrator

    orchestrator = Orchestrator(workflow_service, repository)
    await orchestrator.start()
    run = await orchestrator.submit("ci", event={"ref": "refs/heads/main"})

The scheduler and loop are imported from their modules; services depend on
orchestrator.engine, so the package itself stays import-light.
"""

from .concurrency import ConcurrencyManager

__all__ = ["ConcurrencyManager"]
