# ============================================================================
# HANDLER REGISTRY
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Step handler registration and lookup
# PURPOSE: Register and discover step handlers by `uses` name
# LAST_REVIEWED: 14 OCT 2026
# ============================================================================
"""
Handler Registry

Central registry for step handlers. The in-process execution backend uses
this to look up the function behind a step's `uses` name.

Design:
- Handlers are registered at import time via decorator
- Registry is a simple dict (handler_name -> handler_func)
- Fail-fast on duplicate registration
- Supports both sync and async handlers
- Handler exceptions become failure results, never scheduler crashes
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from services.run_store import RunStore

logger = logging.getLogger(__name__)


# ============================================================================
# HANDLER TYPES
# ============================================================================

@dataclass
class HandlerContext:
    """
    Context passed to handler functions.

    Contains everything needed to execute one step of one node.
    """
    run_id: str
    node_id: str
    job_name: str
    step_id: str
    handler: str
    params: Dict[str, Any]
    env: Dict[str, str] = field(default_factory=dict)
    matrix: Dict[str, Any] = field(default_factory=dict)

    # Run-scoped store (artifacts); None when running outside a run
    store: Optional[RunStore] = None

    # Set when the node is cancelled or times out; long sync handlers poll it
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def _require_store(self) -> RunStore:
        if self.store is None:
            raise RuntimeError(f"Step '{self.step_id}' has no run store attached")
        return self.store

    def upload_artifact(self, name: str, files: Any, retention_days: Optional[int] = None,
                        overwrite: bool = False):
        """Upload an artifact on behalf of this node."""
        return self._require_store().put_artifact(
            name, files, retention_days=retention_days, overwrite=overwrite, node_id=self.node_id
        )

    def download_artifact(self, pattern: str, merge_multiple: bool = False) -> Dict[str, Any]:
        """Download artifacts of this run by name or glob pattern."""
        return self._require_store().get_artifact(pattern, merge_multiple=merge_multiple)


@dataclass
class HandlerResult:
    """
    Result returned by handler functions.

    `output` becomes steps.<id>.outputs for the job's output expressions.
    """
    success: bool = True
    output: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def success_result(
        cls,
        output: Optional[Dict[str, Any]] = None,
    ) -> "HandlerResult":
        """Create a success result."""
        return cls(success=True, output=output or {})

    @classmethod
    def failure_result(
        cls,
        error_message: str,
        output: Optional[Dict[str, Any]] = None,
        error_type: str = "StepError",
    ) -> "HandlerResult":
        """Create a failure result."""
        return cls(
            success=False,
            error_message=error_message,
            output=output or {},
            error_type=error_type,
        )


# Handler function type
HandlerFunc = Callable[[HandlerContext], Union[HandlerResult, Awaitable[HandlerResult]]]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class HandlerError(Exception):
    """Base exception for handler errors."""
    pass


class HandlerNotFoundError(HandlerError):
    """Raised when a handler is not found in the registry."""
    def __init__(self, handler_name: str):
        self.handler_name = handler_name
        super().__init__(f"Handler not found: {handler_name}")


class DuplicateHandlerError(HandlerError):
    """Raised when a handler name is already registered."""
    def __init__(self, handler_name: str):
        self.handler_name = handler_name
        super().__init__(f"Handler already registered: {handler_name}")


# ============================================================================
# REGISTRY
# ============================================================================

# Global registry
_handlers: Dict[str, HandlerFunc] = {}
_handler_metadata: Dict[str, Dict[str, Any]] = {}


def register_handler(
    name: str,
    *,
    description: str = "",
    tags: Optional[List[str]] = None,
) -> Callable[[HandlerFunc], HandlerFunc]:
    """
    Decorator to register a handler function.

    Args:
        name: Handler name, referenced by a step's `uses`
        description: Human-readable description
        tags: Optional tags for categorization

    Returns:
        Decorator function

    Example:
        @register_handler("lint")
        async def lint(ctx: HandlerContext) -> HandlerResult:
            return HandlerResult.success_result({"warnings": "0"})
    """
    def decorator(func: HandlerFunc) -> HandlerFunc:
        if name in _handlers:
            raise DuplicateHandlerError(name)

        _handlers[name] = func
        _handler_metadata[name] = {
            "name": name,
            "description": description,
            "tags": tags or [],
            "function": func.__name__,
            "module": func.__module__,
            "is_async": asyncio.iscoroutinefunction(func),
            "registered_at": datetime.utcnow().isoformat(),
        }

        logger.debug(f"Registered handler: {name} ({func.__module__}.{func.__name__})")
        return func

    return decorator


def get_handler(name: str) -> Optional[HandlerFunc]:
    """
    Get a handler by name.

    Returns:
        Handler function or None if not found
    """
    return _handlers.get(name)


def get_handler_or_raise(name: str) -> HandlerFunc:
    """
    Get a handler by name, raising if not found.

    Raises:
        HandlerNotFoundError if handler not found
    """
    handler = _handlers.get(name)
    if handler is None:
        raise HandlerNotFoundError(name)
    return handler


def list_handlers() -> List[Dict[str, Any]]:
    """List all registered handlers with metadata."""
    return list(_handler_metadata.values())


def clear_handlers() -> None:
    """
    Clear all registered handlers.

    Primarily for testing.
    """
    _handlers.clear()
    _handler_metadata.clear()
    logger.debug("Cleared all handlers")


def validate_handlers(handler_names: List[str]) -> List[str]:
    """
    Validate that all handlers referenced by a workflow are registered.

    Returns:
        List of missing handler names (empty if all valid)
    """
    return [name for name in handler_names if name not in _handlers]


# ============================================================================
# ASYNC HANDLER EXECUTION
# ============================================================================

async def execute_handler(
    name: str,
    context: HandlerContext,
) -> HandlerResult:
    """
    Execute a handler by name.

    Handles both sync and async handlers. Sync handlers run in the
    default thread pool.

    Raises:
        HandlerNotFoundError if handler not found
    """
    handler = get_handler_or_raise(name)

    try:
        if asyncio.iscoroutinefunction(handler):
            result = await handler(context)
        else:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(None, handler, context)

        if not isinstance(result, HandlerResult):
            raise HandlerError(
                f"Handler {name} returned {type(result).__name__}, expected HandlerResult"
            )
        return result

    except Exception as e:
        logger.exception(f"Handler {name} failed: {e}")
        return HandlerResult.failure_result(str(e), error_type=type(e).__name__)


# ============================================================================
# EXPORTS
# ============================================================================

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
