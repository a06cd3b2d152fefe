"""
TrackedCollection: a tracked list of tracked objects.

The collection keeps the live sequence of item wrappers in step with the
underlying source list, and a side bucket of deleted items together with the
index each one was removed from. Per-item status lives on each item's own
TrackedObject; the collection only buckets and does delete bookkeeping:

- insert wraps plain items as Added (wrappers are adopted as-is)
- removing an Added item discards it; any other item moves to deleted_items
- re-inserting a deleted item at its old index restores it, elsewhere marks it Changed
- accept clears deleted_items; reject drops added items and puts deleted
  items back at their original index
"""

import logging
from collections import abc
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from changetracking import edit_session, propagation
from changetracking.config import ChangeTrackingSettings
from changetracking.errors import NotSupportedError
from changetracking.events import ChangeStatus, CollectionChangedEvent, EventHook
from changetracking.identity_graph import IdentityGraph
from changetracking.type_inspection import untrackable_reason

logger = logging.getLogger(__name__)


class TrackedCollection(abc.MutableSequence):
    """Change-tracking list of tracked objects."""

    _changetracking_collection = True

    def __init__(
        self,
        source: list,
        element_type: Optional[type],
        settings: ChangeTrackingSettings,
        graph: IdentityGraph,
    ):
        self._source = source
        self._element_type = element_type
        self._settings = settings
        self._graph = graph
        self._items: List[Any] = []
        self._deleted: List[Tuple[Any, int]] = []
        self._item_handlers: Dict[int, Tuple[Any, Callable[[Any], None]]] = {}
        self._pending_new: Optional[Any] = None
        # Collections have no edit state of their own; edit calls fan out to items
        self._edit_session = None
        self.collection_changed = EventHook('collection_changed')

        for index, item in enumerate(source):
            wrapper = self._wrap(item, ChangeStatus.UNCHANGED)
            self._items.append(wrapper)
            self._source[index] = self._source_value(wrapper)
            self._watch(wrapper)
        logger.debug(f"Tracking collection of {len(self._items)} items")

    def __repr__(self) -> str:
        return f"TrackedCollection({self._items!r})"

    @property
    def target(self) -> list:
        """The underlying source list."""
        return self._source

    @property
    def element_type(self) -> Optional[type]:
        return self._element_type

    @property
    def settings(self) -> ChangeTrackingSettings:
        return self._settings

    # ==================== SEQUENCE PROTOCOL ====================

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._items))

    def __getitem__(self, index):
        # Slices return a plain list of wrappers
        return self._items[index]

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, (list, TrackedCollection)):
            return list(self._items) == list(other)
        return NotImplemented

    __hash__ = None

    def __setitem__(self, index, value) -> None:
        if isinstance(index, slice):
            self._set_slice(index, value)
            return
        index = self._normalize_index(index)
        if value is self._items[index]:
            return
        wrapper = self._adopt_or_wrap(value)
        self._remove_at(index, notify=False)
        self._insert_wrapper(index, wrapper, notify=False)
        self._fire('replaced', index, wrapper)

    def __delitem__(self, index) -> None:
        if isinstance(index, slice):
            for position in sorted(range(*index.indices(len(self._items))), reverse=True):
                self._remove_at(position)
            return
        self._remove_at(self._normalize_index(index))

    def insert(self, index: int, value: Any) -> None:
        """Insert value before index (list.insert semantics for out-of-range indexes)."""
        size = len(self._items)
        if index < 0:
            index = max(0, index + size)
        index = min(index, size)
        wrapper = self._adopt_or_wrap(value)
        self._insert_wrapper(index, wrapper)

    def reverse(self) -> None:
        """Reverse in place; a reorder, not a delete/insert."""
        self._reorder(list(reversed(self._items)))

    def sort(self, *, key: Optional[Callable[[Any], Any]] = None, reverse: bool = False) -> None:
        """Sort in place; a reorder, not a delete/insert."""
        self._reorder(sorted(self._items, key=key, reverse=reverse))

    # ==================== PARTITIONS ====================

    def _with_status(self, status: ChangeStatus) -> List[Any]:
        return [item for item in self._items if self._node(item).status is status]

    @property
    def unchanged_items(self) -> List[Any]:
        return self._with_status(ChangeStatus.UNCHANGED)

    @property
    def added_items(self) -> List[Any]:
        return self._with_status(ChangeStatus.ADDED)

    @property
    def changed_items(self) -> List[Any]:
        return self._with_status(ChangeStatus.CHANGED)

    @property
    def deleted_items(self) -> List[Any]:
        return [item for item, _ in self._deleted]

    def un_delete(self, item: Any) -> bool:
        """Move a deleted item back to the end of the live sequence.

        Returns:
            False if item is not currently in deleted_items
        """
        position = self._deleted_position(item)
        if position is None:
            return False
        wrapper, _ = self._deleted.pop(position)
        self._node(wrapper).mark_undeleted()
        index = len(self._items)
        self._items.append(wrapper)
        self._source.append(self._source_value(wrapper))
        self._fire('inserted', index, wrapper)
        return True

    # ==================== TRACKING INTERFACE ====================

    @property
    def is_changed(self) -> bool:
        return propagation.is_changed(self)

    def accept_changes(self) -> None:
        propagation.accept_changes(self)

    def reject_changes(self) -> None:
        propagation.reject_changes(self)

    def get_original(self) -> list:
        """Plain list as of the last accept/reject: added items dropped, deleted items restored."""
        from changetracking.unroll import materialize
        return materialize(self, original=True)

    def get_current(self) -> list:
        from changetracking.unroll import materialize
        return materialize(self, original=False)

    def begin_edit(self) -> None:
        edit_session.begin_edit(self)

    def cancel_edit(self) -> None:
        edit_session.cancel_edit(self)

    def end_edit(self) -> None:
        edit_session.end_edit(self)

    def add_new(self, factory: Optional[Callable[[], Any]] = None) -> Any:
        """Append a new Added element in edit mode.

        Cancelling the element's edit before ending it removes it again.
        """
        if factory is None:
            if self._element_type is None:
                raise NotSupportedError("add_new() needs a factory when the element type is unknown")
            factory = self._element_type
        if self._pending_new is not None:
            self._node(self._pending_new).end_edit()
        wrapper = self._wrap(factory(), ChangeStatus.ADDED)
        node = self._node(wrapper)
        node.begin_edit()
        node._edit_session.on_cancel_new = lambda: self._cancel_new(wrapper)
        self._pending_new = wrapper
        self._insert_wrapper(len(self._items), wrapper)
        return wrapper

    def on_collection_changed(self, callback: Callable[[CollectionChangedEvent], None]) -> None:
        self.collection_changed.subscribe(callback)

    def off_collection_changed(self, callback: Callable[[CollectionChangedEvent], None]) -> None:
        self.collection_changed.unsubscribe(callback)

    subscribe_changes = on_collection_changed
    unsubscribe_changes = off_collection_changed

    # ==================== STRUCTURAL EDITS ====================

    def _insert_wrapper(self, index: int, wrapper: Any, notify: bool = True) -> None:
        self._items.insert(index, wrapper)
        self._source.insert(index, self._source_value(wrapper))
        self._reconcile_reinserted(wrapper, index)
        self._watch(wrapper)
        logger.debug(f"Inserted item at {index}")
        if notify:
            self._fire('inserted', index, wrapper)

    def _remove_at(self, index: int, notify: bool = True) -> None:
        wrapper = self._items[index]
        node = self._node(wrapper)
        status_before = node.status
        del self._items[index]
        del self._source[index]
        if self._pending_new is wrapper:
            self._pending_new = None
        node.mark_deleted()
        if status_before is ChangeStatus.ADDED:
            self._unwatch(wrapper)
            logger.debug(f"Discarded added item at {index}")
        else:
            self._deleted.append((wrapper, index))
            logger.debug(f"Deleted item at {index}")
        if notify:
            self._fire('removed', index, wrapper)

    def _reconcile_reinserted(self, wrapper: Any, index: int) -> None:
        position = self._deleted_position(wrapper)
        if position is None:
            return
        _, original_index = self._deleted.pop(position)
        node = self._node(wrapper)
        node.mark_undeleted()
        if index != original_index:
            node.mark_moved()

    def _set_slice(self, index: slice, values: Any) -> None:
        start, stop, step = index.indices(len(self._items))
        if step != 1:
            raise NotSupportedError("Extended slice assignment is not supported on tracked collections")
        wrappers = [self._adopt_or_wrap(value) for value in values]
        for position in range(max(start, stop) - 1, start - 1, -1):
            self._remove_at(position)
        for offset, wrapper in enumerate(wrappers):
            self._insert_wrapper(start + offset, wrapper)

    def _reorder(self, ordered: List[Any]) -> None:
        self._items[:] = ordered
        self._source[:] = [self._source_value(wrapper) for wrapper in ordered]
        self._fire('reordered')

    def _cancel_new(self, wrapper: Any) -> None:
        if self._pending_new is not wrapper:
            return
        self._pending_new = None
        for index, item in enumerate(self._items):
            if item is wrapper:
                self._remove_at(index)
                logger.debug(f"Cancelled new item at {index}")
                return

    # ==================== WRAPPING ====================

    def _wrap(self, item: Any, status: ChangeStatus) -> Any:
        from changetracking.factory import wrap_object
        from changetracking.proxy import node_of

        node = node_of(item)
        if node is not None:
            if node is self or isinstance(node, TrackedCollection):
                raise NotSupportedError("Tracked collections can not contain collections")
            return item
        reason = untrackable_reason(item)
        if reason is not None:
            raise NotSupportedError(f"Collection items must be trackable objects: {reason}")
        if self._element_type is not None and isinstance(self._element_type, type) \
                and not getattr(self._element_type, '_is_protocol', False) \
                and not isinstance(item, self._element_type):
            raise TypeError(f"Expected {self._element_type.__name__} item, got {type(item).__name__}")
        return wrap_object(item, status, self._settings, self._graph)

    def _adopt_or_wrap(self, value: Any) -> Any:
        wrapper = self._wrap(value, ChangeStatus.ADDED)
        if any(item is wrapper for item in self._items):
            raise ValueError("Item is already in the collection")
        node = self._node(wrapper)
        if node.status is ChangeStatus.DELETED and self._deleted_position(wrapper) is None:
            # Deleted from another collection: new to this one
            node.mark_undeleted()
            node.force_status(ChangeStatus.ADDED)
        return wrapper

    def _source_value(self, wrapper: Any) -> Any:
        if self._settings.make_collection_items_in_source_as_proxies:
            return wrapper
        return self._node(wrapper).target

    def _deleted_position(self, item: Any) -> Optional[int]:
        for position, (wrapper, _) in enumerate(self._deleted):
            if wrapper is item:
                return position
        return None

    def _normalize_index(self, index: int) -> int:
        size = len(self._items)
        if index < 0:
            index += size
        if not 0 <= index < size:
            raise IndexError("tracked collection index out of range")
        return index

    @staticmethod
    def _node(wrapper: Any) -> Any:
        from changetracking.proxy import node_of
        return node_of(wrapper)

    # ==================== NOTIFICATIONS ====================

    def _fire(self, action: str, index: Optional[int] = None, item: Any = None) -> None:
        self.collection_changed.fire(self, CollectionChangedEvent(self, action, index, item), key=action)

    def _watch(self, wrapper: Any) -> None:
        key = id(wrapper)
        if key in self._item_handlers:
            return
        node = self._node(wrapper)

        def handler(event: Any) -> None:
            self._fire('item_changed', None, wrapper)

        node.subscribe_changes(handler)
        self._item_handlers[key] = (node, handler)

    def _unwatch(self, wrapper: Any) -> None:
        entry = self._item_handlers.pop(id(wrapper), None)
        if entry is not None:
            node, handler = entry
            node.unsubscribe_changes(handler)

    def _release(self) -> None:
        """Drop every item subscription (a duplicate that lost registration)."""
        for node, handler in self._item_handlers.values():
            node.unsubscribe_changes(handler)
        self._item_handlers.clear()

    # ==================== PROPAGATION HOOKS ====================

    def _propagation_children(self) -> List[Any]:
        return [self._node(item) for item in self._items]

    def _own_changed(self) -> bool:
        return bool(self._deleted) or any(
            self._node(item).status is ChangeStatus.ADDED for item in self._items
        )

    def _validate_accept(self) -> None:
        pass

    def _commit(self) -> None:
        for wrapper, _ in self._deleted:
            self._unwatch(wrapper)
        had_deleted = bool(self._deleted)
        self._deleted.clear()
        for item in self._items:
            self._node(item)._end_own_edit()
        if had_deleted:
            self._fire('reset')

    def _prepare_reject(self) -> None:
        for index in range(len(self._items) - 1, -1, -1):
            if self._node(self._items[index]).status is ChangeStatus.ADDED:
                self._remove_at(index)

    def _rollback(self, visited: Dict[int, Any]) -> None:
        deleted = list(self._deleted)
        self._deleted.clear()
        # Undo in reverse deletion order so each captured index is valid again
        for wrapper, original_index in reversed(deleted):
            node = self._node(wrapper)
            if id(node) not in visited:
                visited[id(node)] = node
                propagation.reject_changes(node, visited)
            node.mark_undeleted()
            index = min(original_index, len(self._items))
            self._items.insert(index, wrapper)
            self._source.insert(index, self._source_value(wrapper))
            self._fire('inserted', index, wrapper)
        if deleted:
            logger.debug(f"Restored {len(deleted)} deleted items")

    def _unroll(self, unroller: Any) -> list:
        plain: list = []
        unroller.remember(self, plain)
        items = self._original_items() if unroller.original else self._items
        plain.extend(unroller.plain(item) for item in items)
        return plain

    def _original_items(self) -> List[Any]:
        items = [item for item in self._items if self._node(item).status is not ChangeStatus.ADDED]
        for wrapper, original_index in reversed(self._deleted):
            items.insert(min(original_index, len(items)), wrapper)
        return items
