# ============================================================================
# HANDLER REGISTRY
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Handler registration and lookup
# PURPOSE: Register and discover step handlers
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Handler Registry

Provides a decorator-based registration system for step handlers.

Usage:
    from handlers import register_handler, HandlerContext, HandlerResult

    @register_handler("my-step")
    async def my_step(ctx: HandlerContext) -> HandlerResult:
        return HandlerResult.success_result({"key": "value"})

A workflow step then refers to it with `uses: my-step`.
"""

from handlers.registry import (
    register_handler,
    get_handler,
    get_handler_or_raise,
    list_handlers,
    clear_handlers,
    validate_handlers,
    execute_handler,
    HandlerFunc,
    HandlerContext,
    HandlerResult,
    HandlerError,
    HandlerNotFoundError,
    DuplicateHandlerError,
)

# Import handler modules to trigger registration
import handlers.builtin  # noqa: F401 - import for side effects (echo, fail, sleep, ...)

__all__ = [
    "register_handler",
    "get_handler",
    "get_handler_or_raise",
    "list_handlers",
    "clear_handlers",
    "validate_handlers",
    "execute_handler",
    "HandlerFunc",
    "HandlerContext",
    "HandlerResult",
    "HandlerError",
    "HandlerNotFoundError",
    "DuplicateHandlerError",
]
