"""
Change status and notification primitives.

ChangeStatus is the per-object state. The event records are immutable
(frozen dataclasses) and carry the sender wrapper so subscribers shared by
several wrappers can tell them apart.

EventHook is a plain observer list. Delivery is synchronous and best-effort:
a failing subscriber is logged and the remaining subscribers still run.
Delivery is guarded against re-entrancy per (sender, key) on the current
thread, so bidirectionally subscribed parent/child wrappers cannot bounce the
same notification back and forth forever.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Hashable, List, Optional

logger = logging.getLogger(__name__)


class ChangeStatus(Enum):
    UNCHANGED = "unchanged"
    ADDED = "added"
    CHANGED = "changed"
    DELETED = "deleted"


@dataclass(frozen=True)
class StatusChangedEvent:
    """A wrapper moved from old_status to new_status."""
    sender: Any
    old_status: ChangeStatus
    new_status: ChangeStatus


@dataclass(frozen=True)
class PropertyChangedEvent:
    """A property value (or a derived property such as status) changed."""
    sender: Any
    property_name: Any


@dataclass(frozen=True)
class CollectionChangedEvent:
    """Structural or item-level change of a tracked collection.

    action is one of: inserted, removed, replaced, reordered, item_changed, reset.
    index is None for actions that do not target a single position.
    """
    sender: Any
    action: str
    index: Optional[int] = None
    item: Any = None


# Pairs currently being delivered on this thread: (id(sender), hook name, key)
_delivery_guard = threading.local()


def _active_deliveries() -> set:
    active = getattr(_delivery_guard, 'active', None)
    if active is None:
        active = set()
        _delivery_guard.active = active
    return active


class EventHook:
    """Observer list for one kind of notification on one sender."""

    def __init__(self, name: str):
        self.name = name
        self._callbacks: List[Callable[[Any], None]] = []

    def subscribe(self, callback: Callable[[Any], None]) -> None:
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unsubscribe(self, callback: Callable[[Any], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def __len__(self) -> int:
        return len(self._callbacks)

    def fire(self, sender: Any, event: Any, key: Hashable = None) -> bool:
        """Deliver event to every subscriber.

        Args:
            sender: Object raising the notification
            event: Event record passed to each callback
            key: Optional discriminator (e.g. property name) for the re-entrancy guard

        Returns:
            False if delivery was suppressed because the same (sender, key)
            pair is already being delivered further up the call stack
        """
        if not self._callbacks:
            return True
        guard_key = (id(sender), self.name, key)
        active = _active_deliveries()
        if guard_key in active:
            logger.debug(f"Suppressed re-entrant {self.name} notification for key={key!r}")
            return False
        active.add(guard_key)
        try:
            for callback in list(self._callbacks):
                try:
                    callback(event)
                except Exception as e:
                    logger.warning(f"Error in {self.name} callback: {e}")
        finally:
            active.discard(guard_key)
        return True
