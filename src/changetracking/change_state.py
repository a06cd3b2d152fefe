"""
ChangeState: the per-object ledger and status machine.

The ledger maps a changed property to the value it held before the first
mutation since the last accept/reject. ChangeState knows nothing about the
object it belongs to or its children: the owner supplies a probe telling it
whether any child is changed, and a writer used to restore values on reject.

Transitions:
    Unchanged --first ledger entry--> Changed
    Changed --ledger emptied, no changed child--> Unchanged
    Added stays Added on writes; Deleted rejects writes
    accept/reject --> Unchanged (Deleted cannot be accepted)
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional

from changetracking.errors import InvalidStateError
from changetracking.events import ChangeStatus, EventHook, StatusChangedEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexedProperty:
    """Ledger key for a keyed item (obj[key]) rather than a named attribute."""
    key: Hashable

    def __str__(self) -> str:
        return f"[{self.key!r}]"


class _Missing:
    """Original value of a keyed item that did not exist before the change."""

    def __repr__(self) -> str:
        return '<missing>'


MISSING = _Missing()


def values_equal(a: Any, b: Any) -> bool:
    return a is b or a == b


class ChangeState:
    """Status plus original-value ledger of one tracked object."""

    def __init__(
        self,
        status: ChangeStatus = ChangeStatus.UNCHANGED,
        sender: Any = None,
        has_changed_children: Optional[Callable[[], bool]] = None,
    ):
        self._status = status
        self._original_values: Dict[Hashable, Any] = {}
        # Set when a collection re-inserts the object at a different position
        self._moved = False
        self._sender = sender
        self._has_changed_children = has_changed_children or (lambda: False)
        self.status_changed = EventHook('status_changed')

    @property
    def status(self) -> ChangeStatus:
        return self._status

    @property
    def original_values(self) -> Mapping[Hashable, Any]:
        """Read-only view of the ledger."""
        return MappingProxyType(self._original_values)

    @property
    def ledger_keys(self) -> List[Hashable]:
        return list(self._original_values)

    def __contains__(self, property_name: Hashable) -> bool:
        return property_name in self._original_values

    @property
    def has_pending_changes(self) -> bool:
        """Ledger entries or a position change, ignoring children."""
        return bool(self._original_values) or self._moved

    # ==================== WRITES ====================

    def ensure_writable(self) -> None:
        if self._status is ChangeStatus.DELETED:
            raise InvalidStateError("Can not modify deleted object")

    def record_write(self, property_name: Hashable, old_value: Any, new_value: Any) -> bool:
        """Update the ledger for one intercepted write.

        Returns:
            True if the ledger gained or lost an entry
        """
        self.ensure_writable()
        if property_name not in self._original_values:
            if values_equal(old_value, new_value):
                return False
            self._original_values[property_name] = old_value
            logger.debug(f"Ledger: recorded original of {property_name}")
            self.refresh()
            return True
        if values_equal(self._original_values[property_name], new_value):
            del self._original_values[property_name]
            logger.debug(f"Ledger: {property_name} reverted to original")
            self.refresh()
            return True
        return False

    def get_original_value(self, property_name: Hashable, current: Callable[[], Any]) -> Any:
        """Ledger entry if present, else current()."""
        if property_name in self._original_values:
            return self._original_values[property_name]
        return current()

    # ==================== STATUS ====================

    def refresh(self) -> None:
        """Recompute Unchanged/Changed from the ledger and the children probe.

        Added and Deleted are left alone.
        """
        if self._status in (ChangeStatus.UNCHANGED, ChangeStatus.CHANGED):
            self._set_status(self._computed_status())

    def _computed_status(self) -> ChangeStatus:
        if self.has_pending_changes or self._has_changed_children():
            return ChangeStatus.CHANGED
        return ChangeStatus.UNCHANGED

    def _set_status(self, new_status: ChangeStatus) -> None:
        old_status = self._status
        if old_status is new_status:
            return
        self._status = new_status
        logger.debug(f"Status {old_status.name} -> {new_status.name}")
        self.status_changed.fire(self._sender, StatusChangedEvent(self._sender, old_status, new_status))

    def force_status(self, new_status: ChangeStatus) -> None:
        """Set status unconditionally (collection bookkeeping)."""
        self._set_status(new_status)

    def mark_deleted(self) -> bool:
        if self._status is ChangeStatus.DELETED:
            return False
        self._set_status(ChangeStatus.DELETED)
        return True

    def mark_moved(self) -> None:
        self._moved = True
        self.refresh()

    def mark_undeleted(self) -> bool:
        if self._status is not ChangeStatus.DELETED:
            return False
        self._set_status(self._computed_status())
        return True

    # ==================== ACCEPT / REJECT ====================

    def accept(self) -> None:
        if self._status is ChangeStatus.DELETED:
            raise InvalidStateError("Can not call accept_changes on deleted object")
        self._original_values.clear()
        self._moved = False
        self._set_status(self._computed_status())

    def reject(self, restore: Callable[[Hashable, Any], None]) -> None:
        """Write every ledger entry back through restore(), then reset status."""
        if self._original_values:
            entries = list(self._original_values.items())
            self._original_values.clear()
            for property_name, original in entries:
                restore(property_name, original)
        self._moved = False
        self._set_status(self._computed_status())
