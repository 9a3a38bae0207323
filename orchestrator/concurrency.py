# ============================================================================
# CONCURRENCY GROUPS
# ============================================================================
# EPOCH: 1 - WORKFLOW ORCHESTRATION
# STATUS: Core - Mutual-exclusion lanes shared by all runs
# PURPOSE: At most one running node per concurrency group key
# CREATED: 14 OCT 2026
# ============================================================================
"""
Concurrency Groups

One ConcurrencyManager is shared by every run scheduler of an orchestrator,
so a group key serialises nodes across runs.

Semantics:
- A free group is granted immediately
- Without cancel-in-progress a contender queues FIFO and is woken when
  the slot is released (or the waiter ahead of it withdraws)
- With cancel-in-progress the contender evicts the occupant: the occupant's
  evict callback runs (cancelling it) before the contender is granted

All methods run on the event loop thread; the only suspension point is
the evict callback.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# (run_id, node_id)
Owner = Tuple[str, str]
EvictCallback = Callable[[], Awaitable[None]]
WakeCallback = Callable[[], None]


@dataclass
class ConcurrencyGroup:
    """State of one group key."""
    key: str
    occupant: Optional[Owner] = None
    evict: Optional[EvictCallback] = None
    waiters: Deque[Owner] = field(default_factory=deque)
    wake: Dict[Owner, WakeCallback] = field(default_factory=dict)

    @property
    def is_idle(self) -> bool:
        return self.occupant is None and not self.waiters


class ConcurrencyManager:
    """
    Tracks occupants and waiters of every concurrency group.

    Usage:
        granted = await manager.acquire("deploy-prod", ("run-1", "deploy"),
                                        cancel_in_progress=False,
                                        evict=cancel_node, wake=event.set)
        ...
        manager.release("deploy-prod", ("run-1", "deploy"))
    """

    def __init__(self):
        self._groups: Dict[str, ConcurrencyGroup] = {}

    def _group(self, key: str) -> ConcurrencyGroup:
        if key not in self._groups:
            self._groups[key] = ConcurrencyGroup(key=key)
        return self._groups[key]

    async def acquire(
        self,
        key: str,
        owner: Owner,
        cancel_in_progress: bool,
        evict: EvictCallback,
        wake: WakeCallback,
    ) -> bool:
        """
        Try to take the group slot.

        Args:
            key: Resolved group key
            owner: (run_id, node_id) of the contender
            cancel_in_progress: Evict the occupant instead of queueing
            evict: Coroutine that cancels this owner if it is later evicted
            wake: Called when a queued owner should retry

        Returns:
            True if the owner now holds the slot, False if queued
        """
        group = self._group(key)

        if group.occupant == owner:
            return True

        if group.occupant is None and (not group.waiters or group.waiters[0] == owner):
            if group.waiters and group.waiters[0] == owner:
                group.waiters.popleft()
                group.wake.pop(owner, None)
            group.occupant = owner
            group.evict = evict
            logger.debug(f"Concurrency group '{key}' granted to {owner}")
            return True

        if cancel_in_progress and group.occupant is not None:
            previous, previous_evict = group.occupant, group.evict
            if owner in group.waiters:
                group.waiters.remove(owner)
                group.wake.pop(owner, None)
            group.occupant = owner
            group.evict = evict
            logger.info(f"Concurrency group '{key}': {owner} evicts {previous}")
            if previous_evict is not None:
                await previous_evict()
            return group.occupant == owner

        if owner not in group.waiters:
            group.waiters.append(owner)
            logger.debug(f"Concurrency group '{key}' busy, {owner} queued")
        group.wake[owner] = wake
        return False

    def release(self, key: str, owner: Owner) -> None:
        """Give up the slot (no-op if the owner no longer holds it)."""
        group = self._groups.get(key)
        if group is None or group.occupant != owner:
            return
        group.occupant = None
        group.evict = None
        logger.debug(f"Concurrency group '{key}' released by {owner}")
        self._wake_head(group)

    def withdraw(self, key: str, owner: Owner) -> None:
        """Remove a queued owner (its node was cancelled or failed)."""
        group = self._groups.get(key)
        if group is None:
            return
        was_head = bool(group.waiters) and group.waiters[0] == owner
        if owner in group.waiters:
            group.waiters.remove(owner)
        group.wake.pop(owner, None)
        if was_head and group.occupant is None:
            self._wake_head(group)
        self._discard_if_idle(group)

    def occupant(self, key: str) -> Optional[Owner]:
        group = self._groups.get(key)
        return group.occupant if group else None

    def waiters(self, key: str) -> List[Owner]:
        group = self._groups.get(key)
        return list(group.waiters) if group else []

    def status(self) -> Dict[str, Dict[str, object]]:
        """Snapshot for the status API."""
        return {
            key: {
                "occupant": list(group.occupant) if group.occupant else None,
                "waiting": [list(w) for w in group.waiters],
            }
            for key, group in self._groups.items()
        }

    def _wake_head(self, group: ConcurrencyGroup) -> None:
        if group.waiters:
            head = group.waiters[0]
            wake = group.wake.get(head)
            if wake is not None:
                wake()
        self._discard_if_idle(group)

    def _discard_if_idle(self, group: ConcurrencyGroup) -> None:
        if group.is_idle:
            self._groups.pop(group.key, None)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ["ConcurrencyManager", "ConcurrencyGroup", "Owner"]
