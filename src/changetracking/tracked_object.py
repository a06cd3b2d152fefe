"""
TrackedObject: engine-side shadow of one tracked instance.

The proxy handed to callers forwards reads and writes of tracked properties
here; everything else about the instance stays on the underlying object.
A TrackedObject composes:
- ChangeState for status and the original-value ledger
- ChildResolver for nested complex and collection properties
- EditSession for begin/cancel/end editing

Obtain it from a proxy with tracker_of(proxy).
"""

import copy
import logging
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional

from changetracking import edit_session, propagation
from changetracking.change_state import MISSING, ChangeState, IndexedProperty, values_equal
from changetracking.child_resolver import ChildResolver
from changetracking.config import ChangeTrackingSettings
from changetracking.edit_session import EditSession
from changetracking.errors import InvalidStateError, UnknownPropertyError
from changetracking.events import ChangeStatus, EventHook, PropertyChangedEvent, StatusChangedEvent
from changetracking.identity_graph import IdentityGraph
from changetracking.type_inspection import TypeCatalog, get_catalog, instance_properties

logger = logging.getLogger(__name__)

STATUS_PROPERTY = 'status'
CHANGED_PROPERTY_NAMES_PROPERTY = 'changed_property_names'


class TrackedObject:
    """Status, ledger, children and edit session of one tracked instance."""

    def __init__(
        self,
        proxy: Any,
        target: Any,
        status: ChangeStatus,
        settings: ChangeTrackingSettings,
        graph: IdentityGraph,
    ):
        self._proxy = proxy
        self._target = target
        self._settings = settings
        self._graph = graph
        self._catalog: TypeCatalog = get_catalog(type(target))
        self._properties = instance_properties(target, self._catalog)
        self._state = ChangeState(status, sender=proxy, has_changed_children=self._has_changed_children)
        self._resolver = ChildResolver(self)
        self._edit_session = EditSession()
        self.property_changed = EventHook('property_changed')
        self._state.status_changed.subscribe(self._on_own_status_changed)

    def __repr__(self) -> str:
        return f"<TrackedObject {type(self._target).__name__} status={self.status.name}>"

    # ==================== IDENTITY ====================

    @property
    def proxy(self) -> Any:
        return self._proxy

    @property
    def target(self) -> Any:
        return self._target

    @property
    def settings(self) -> ChangeTrackingSettings:
        return self._settings

    @property
    def graph(self) -> IdentityGraph:
        return self._graph

    @property
    def properties(self) -> Mapping[str, Any]:
        return self._properties

    @property
    def property_names(self) -> List[str]:
        return list(self._properties)

    @property
    def passthrough_names(self):
        return self._catalog.excluded

    @property
    def has_keyed_items(self) -> bool:
        return self._catalog.has_keyed_items

    # ==================== STATUS / LEDGER ====================

    @property
    def status(self) -> ChangeStatus:
        return self._state.status

    @property
    def is_changed(self) -> bool:
        return propagation.is_changed(self)

    @property
    def original_values(self) -> Mapping[Hashable, Any]:
        return self._state.original_values

    @property
    def changed_property_names(self) -> List[Hashable]:
        """Names of properties that differ from their committed values.

        Unchanged: none. Added/Deleted: all. Changed: ledger entries plus
        complex/collection properties whose child is changed.
        """
        status = self._state.status
        if status is ChangeStatus.UNCHANGED:
            return []
        if status in (ChangeStatus.ADDED, ChangeStatus.DELETED):
            return list(self._properties)
        names = self._state.ledger_keys
        for name, child in self._resolver.items():
            if name in names:
                continue
            visited = propagation.new_visited(self)
            if propagation.is_changed(self._node(child), visited):
                names.append(name)
        return names

    def get_original_value(self, property_name: Hashable) -> Any:
        """Value the property had at the last accept/reject (current value if unchanged)."""
        if isinstance(property_name, IndexedProperty):
            return self._state.get_original_value(property_name, lambda: self._current_item(property_name.key))
        if property_name in self._properties:
            return self._state.get_original_value(property_name, lambda: self.read(property_name))
        if property_name in self._catalog.excluded:
            return getattr(self._target, property_name)
        raise UnknownPropertyError(type(self._target).__name__, property_name)

    def get_original(self) -> Any:
        """Plain, untracked copy of the instance as of the last accept/reject."""
        from changetracking.unroll import materialize
        return materialize(self._proxy, original=True)

    def get_current(self) -> Any:
        """Plain, untracked copy of the instance with its current values."""
        from changetracking.unroll import materialize
        return materialize(self._proxy, original=False)

    def accept_changes(self) -> None:
        propagation.accept_changes(self)

    def reject_changes(self) -> None:
        propagation.reject_changes(self)

    # ==================== EDIT SESSION ====================

    @property
    def is_editing(self) -> bool:
        return self._edit_session.is_editing

    def begin_edit(self) -> None:
        edit_session.begin_edit(self)

    def cancel_edit(self) -> None:
        edit_session.cancel_edit(self)

    def end_edit(self) -> None:
        edit_session.end_edit(self)

    # ==================== SUBSCRIPTIONS ====================

    def on_status_changed(self, callback: Callable[[StatusChangedEvent], None]) -> None:
        """Subscribe to status transitions of this object."""
        self._state.status_changed.subscribe(callback)

    def off_status_changed(self, callback: Callable[[StatusChangedEvent], None]) -> None:
        self._state.status_changed.unsubscribe(callback)

    def on_property_changed(self, callback: Callable[[PropertyChangedEvent], None]) -> None:
        """Subscribe to property change notifications (including bubbled child changes)."""
        self.property_changed.subscribe(callback)

    def off_property_changed(self, callback: Callable[[PropertyChangedEvent], None]) -> None:
        self.property_changed.unsubscribe(callback)

    # Parents subscribe to children through these
    subscribe_changes = on_property_changed
    unsubscribe_changes = off_property_changed

    # ==================== INTERCEPTED ACCESS ====================

    def read(self, name: str) -> Any:
        info = self._properties[name]
        if self._resolver.is_eligible(info):
            return self._resolver.resolve(name, info)
        return getattr(self._target, name)

    def write(self, name: str, value: Any) -> None:
        from changetracking.proxy import unwrap

        info = self._properties.get(name)
        if info is None:
            raise UnknownPropertyError(type(self._target).__name__, name)
        self._state.ensure_writable()
        old_value = self.read(name)
        if self._resolver.is_eligible(info):
            setattr(self._target, name, unwrap(value))
            new_value = self._resolver.replace(name, info, value)
        else:
            setattr(self._target, name, value)
            new_value = getattr(self._target, name)
        self._after_write(name, old_value, new_value)
        if old_value is not new_value and self._resolver.is_eligible(info):
            # A swapped child may itself be changed even when values compare equal
            self._state.refresh()

    def write_item(self, key: Hashable, value: Any) -> None:
        self._state.ensure_writable()
        try:
            old_value = self._current_item(key)
        except LookupError:
            old_value = MISSING
        self._target[key] = value
        self._after_write(IndexedProperty(key), old_value, value)

    def delete_item(self, key: Hashable) -> None:
        self._state.ensure_writable()
        old_value = self._current_item(key)
        del self._target[key]
        self._after_write(IndexedProperty(key), old_value, MISSING)

    def _current_item(self, key: Hashable) -> Any:
        return self._target[key]

    def _after_write(self, name: Hashable, old_value: Any, new_value: Any) -> None:
        ledger_changed = self._state.record_write(name, old_value, new_value)
        self._edit_session.record_write(name, old_value, new_value)
        if not values_equal(old_value, new_value):
            self._fire_property_changed(name)
        if ledger_changed:
            self._fire_property_changed(CHANGED_PROPERTY_NAMES_PROPERTY)

    def _restore(self, name: Hashable, value: Any) -> None:
        """Write a value back without recording it in the ledger."""
        from changetracking.proxy import unwrap

        if isinstance(name, IndexedProperty):
            if value is MISSING:
                if name.key in self._target:
                    del self._target[name.key]
            else:
                self._target[name.key] = value
        else:
            info = self._properties[name]
            if self._resolver.is_eligible(info):
                setattr(self._target, name, unwrap(value))
                self._resolver.replace(name, info, value)
            else:
                setattr(self._target, name, value)
        self._fire_property_changed(name)

    # ==================== NOTIFICATIONS ====================

    def _fire_property_changed(self, name: Hashable) -> None:
        self.property_changed.fire(self._proxy, PropertyChangedEvent(self._proxy, name), key=name)

    def _on_own_status_changed(self, event: StatusChangedEvent) -> None:
        self._fire_property_changed(STATUS_PROPERTY)

    def _child_handler(self, name: str) -> Callable[[Any], None]:
        def handler(event: Any) -> None:
            self._state.refresh()
            self._fire_property_changed(name)
        return handler

    def _has_changed_children(self) -> bool:
        return propagation.any_child_changed(self)

    # ==================== COLLECTION BOOKKEEPING ====================

    def mark_deleted(self) -> bool:
        return self._state.mark_deleted()

    def mark_undeleted(self) -> bool:
        return self._state.mark_undeleted()

    def mark_moved(self) -> None:
        self._state.mark_moved()

    def force_status(self, status: ChangeStatus) -> None:
        self._state.force_status(status)

    # ==================== PROPAGATION HOOKS ====================

    @staticmethod
    def _node(wrapper: Any) -> Any:
        from changetracking.proxy import node_of
        return node_of(wrapper)

    def _propagation_children(self) -> List[Any]:
        return [self._node(child) for child in self._resolver.resolve_all()]

    def _own_changed(self) -> bool:
        return self._state.status in (ChangeStatus.ADDED, ChangeStatus.DELETED) or self._state.has_pending_changes

    def _validate_accept(self) -> None:
        if self._state.status is ChangeStatus.DELETED:
            raise InvalidStateError("Can not call accept_changes on deleted object")

    def _commit(self) -> None:
        had_entries = bool(self._state.ledger_keys)
        self._state.accept()
        if had_entries:
            self._fire_property_changed(CHANGED_PROPERTY_NAMES_PROPERTY)

    def _prepare_reject(self) -> None:
        pass

    def _rollback(self, visited: Dict[int, Any]) -> None:
        had_entries = bool(self._state.ledger_keys)
        self._state.reject(self._restore)
        # Children put back by the ledger were not reached by the walk
        restored = [child for child in self._propagation_children() if id(child) not in visited]
        for child in restored:
            visited[id(child)] = child
            propagation.reject_changes(child, visited)
        if restored:
            self._state.refresh()
        if had_entries:
            self._fire_property_changed(CHANGED_PROPERTY_NAMES_PROPERTY)

    def _cancel_own_edit(self) -> None:
        entries, cancel_new = self._edit_session.cancel()
        for name, value in entries:
            if isinstance(name, IndexedProperty):
                if value is MISSING:
                    self.delete_item(name.key)
                else:
                    self.write_item(name.key, value)
            else:
                self.write(name, value)
        if cancel_new is not None:
            cancel_new()

    def _end_own_edit(self) -> None:
        self._edit_session.end()

    # ==================== MATERIALIZATION ====================

    def _unroll(self, unroller: Any) -> Any:
        clone = copy.copy(self._target)
        unroller.remember(self, clone)
        if self._catalog.has_keyed_items:
            self._detach_containers(clone, unroller)
        original = unroller.original
        for name in self._properties:
            if original and name in self._state:
                value = self._state.original_values[name]
            else:
                value = self._resolver.cached(name)
                if value is None:
                    value = getattr(self._target, name)
                    # Unresolved child that is already wrapped elsewhere in the graph
                    wrapper = self._graph.resolve(value) if value is not None else None
                    if wrapper is not None:
                        value = wrapper
            setattr(clone, name, unroller.plain(value))
        if original:
            for key, value in self._state.original_values.items():
                if not isinstance(key, IndexedProperty):
                    continue
                if value is MISSING:
                    if key.key in clone:
                        del clone[key.key]
                else:
                    clone[key.key] = unroller.plain(value)
        return clone

    @staticmethod
    def _detach_containers(clone: Any, unroller: Any) -> None:
        # A shallow copy shares item storage with the live instance
        attributes = getattr(clone, '__dict__', None)
        if attributes is None:
            return
        for name, value in list(attributes.items()):
            if type(value) is dict:
                attributes[name] = {k: unroller.plain(v) for k, v in value.items()}
            elif type(value) is list:
                attributes[name] = [unroller.plain(v) for v in value]
            elif type(value) is set:
                attributes[name] = set(value)
