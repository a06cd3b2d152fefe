"""
ChildResolver: lazily created, cached wrappers for nested properties.

A complex- or collection-typed property is wrapped the first time it is read
(or assigned). The wrapper is cached by property name for the lifetime of the
parent, so later reads return the same wrapper without touching the
underlying getter. Creation goes through the parent's IdentityGraph, so a
child reachable through two paths gets one wrapper.

The parent subscribes to every cached child: status or content changes of the
child make the parent recompute its own status and bubble a property-changed
notification under the child's property name.
"""

import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from changetracking.events import ChangeStatus
from changetracking.type_inspection import COLLECTION, COMPLEX, PropertyInfo, untrackable_reason

if TYPE_CHECKING:
    from changetracking.tracked_object import TrackedObject

logger = logging.getLogger(__name__)


class ChildResolver:
    """Child wrapper cache of one TrackedObject."""

    def __init__(self, owner: 'TrackedObject'):
        self._owner = owner
        self._children: Dict[str, Any] = {}
        self._subscriptions: Dict[str, Tuple[Any, Callable[[Any], None]]] = {}
        self._lock = threading.RLock()
        self._all_resolved = False

    def is_eligible(self, info: PropertyInfo) -> bool:
        settings = self._owner.settings
        if info.kind == COMPLEX:
            return settings.make_complex_properties_trackable
        if info.kind == COLLECTION:
            return settings.make_collection_properties_trackable
        return False

    def cached(self, name: str) -> Optional[Any]:
        return self._children.get(name)

    def items(self) -> List[Tuple[str, Any]]:
        return list(self._children.items())

    def resolve(self, name: str, info: PropertyInfo) -> Any:
        """Wrapper for the property's current value (the raw value when it cannot be wrapped)."""
        child = self._children.get(name)
        if child is not None:
            return child
        raw = getattr(self._owner.target, name)
        if raw is None:
            return None
        with self._lock:
            # Another thread may have installed it while we waited
            child = self._children.get(name)
            if child is not None:
                return child
            child = self._wrap(info, raw)
            if child is None:
                return raw
            self._install(name, child)
            logger.debug(f"Resolved child {type(self._owner.target).__name__}.{name}")
            return child

    def replace(self, name: str, info: PropertyInfo, value: Any) -> Any:
        """Swap the cached wrapper after the property was assigned.

        Returns:
            The value a read of the property now yields
        """
        with self._lock:
            self._uninstall(name)
            if value is None:
                return None
            child = self._wrap(info, value)
            if child is None:
                return value
            self._install(name, child)
            return child

    def resolve_all(self) -> List[Any]:
        """Every child wrapper, resolving eligible properties never read so far."""
        if not self._all_resolved:
            for name, info in self._owner.properties.items():
                if name not in self._children and self.is_eligible(info):
                    self.resolve(name, info)
            self._all_resolved = True
        return list(self._children.values())

    # ==================== WRAPPING ====================

    def _wrap(self, info: PropertyInfo, value: Any) -> Optional[Any]:
        from changetracking.factory import wrap_collection, wrap_object
        from changetracking.proxy import node_of
        from changetracking.collection import TrackedCollection

        node = node_of(value)
        if node is not None:
            # Already a wrapper: adopt as-is when its shape matches the property
            if info.kind == COLLECTION:
                return value if isinstance(node, TrackedCollection) else None
            return value if not isinstance(node, TrackedCollection) else None

        owner = self._owner
        if info.kind == COLLECTION:
            if not isinstance(value, list):
                return None
            return wrap_collection(value, info.element_type, owner.settings, owner.graph)
        if untrackable_reason(value) is not None:
            return None
        return wrap_object(value, ChangeStatus.UNCHANGED, owner.settings, owner.graph)

    def _install(self, name: str, child: Any) -> None:
        from changetracking.proxy import node_of

        self._children[name] = child
        node = node_of(child)
        handler = self._owner._child_handler(name)
        node.subscribe_changes(handler)
        self._subscriptions[name] = (node, handler)

    def _uninstall(self, name: str) -> None:
        self._children.pop(name, None)
        subscription = self._subscriptions.pop(name, None)
        if subscription is not None:
            node, handler = subscription
            node.unsubscribe_changes(handler)
