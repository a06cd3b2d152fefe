"""
Entry points: track objects and collections.

Every top-level track()/track_collection() call starts a fresh IdentityGraph
shared by every wrapper created beneath it. Nested wrappers are created
through wrap_object()/wrap_collection() with the parent's graph and settings.

Usage:
    from changetracking import track, tracker_of

    order = track(Order(id=1, customer="Test"))
    order.customer = "Test1"
    tracker_of(order).status          # ChangeStatus.CHANGED
    tracker_of(order).reject_changes()
"""

import array
import logging
from collections import abc
from typing import Any, Iterable, Optional

from changetracking.collection import TrackedCollection
from changetracking.config import ChangeTrackingSettings, resolve_settings
from changetracking.errors import InvalidStateError, NotSupportedError
from changetracking.events import ChangeStatus
from changetracking.identity_graph import IdentityGraph
from changetracking.proxy import create_proxy, node_of
from changetracking.type_inspection import untrackable_reason

logger = logging.getLogger(__name__)


def wrap_object(target: Any, status: ChangeStatus, settings: ChangeTrackingSettings, graph: IdentityGraph) -> Any:
    """Existing wrapper of target in graph, or a new one with the given status."""
    return graph.resolve_or_create(target, lambda t: create_proxy(t, status, settings, graph))


def wrap_collection(
    source: list,
    element_type: Optional[type],
    settings: ChangeTrackingSettings,
    graph: IdentityGraph,
) -> TrackedCollection:
    return graph.resolve_or_create(
        source,
        lambda s: TrackedCollection(s, element_type, settings, graph),
        discard=TrackedCollection._release,
    )


class ChangeTrackingFactory:
    """Creates tracked wrappers with a fixed settings object.

    Without explicit settings the factory resolves the active defaults at
    every call (settings_context() blocks, then set_default_settings()).
    """

    def __init__(self, settings: Optional[ChangeTrackingSettings] = None):
        self._settings = settings

    @property
    def settings(self) -> ChangeTrackingSettings:
        return resolve_settings(self._settings)

    def track(
        self,
        target: Any,
        status: ChangeStatus = ChangeStatus.UNCHANGED,
        settings: Optional[ChangeTrackingSettings] = None,
    ) -> Any:
        """Wrap target for change tracking.

        Args:
            target: Plain object to track
            status: Initial status (e.g. ADDED for a brand new object)
            settings: Overrides the factory settings for this graph

        Raises:
            InvalidStateError: target is already tracked
            NotSupportedError: target cannot be represented as a tracked object
        """
        if node_of(target) is not None:
            raise InvalidStateError(f"{type(target).__name__} instance is already tracked")
        reason = untrackable_reason(target)
        if reason is not None:
            raise NotSupportedError(f"Can not track {type(target).__name__}: {reason}")
        settings = settings if settings is not None else self.settings
        return wrap_object(target, ChangeStatus(status), settings, IdentityGraph())

    def track_collection(
        self,
        items: Iterable[Any],
        settings: Optional[ChangeTrackingSettings] = None,
        element_type: Optional[type] = None,
    ) -> TrackedCollection:
        """Wrap a list of trackable objects.

        A list is tracked in place and kept in step with the wrapper; any
        other collection is copied into a new list first.

        Raises:
            InvalidStateError: items is already tracked, or holds a tracked
                item whose status is not UNCHANGED
            NotSupportedError: items is not a collection of objects
        """
        if isinstance(items, TrackedCollection):
            raise InvalidStateError("Collection is already tracked")
        if isinstance(items, (str, bytes, bytearray, tuple, array.array, abc.Mapping)) \
                or not isinstance(items, abc.Collection):
            raise NotSupportedError(f"Can not track {type(items).__name__} as a collection; use a list")
        for item in items:
            node = node_of(item)
            if isinstance(node, TrackedCollection):
                raise NotSupportedError("Tracked collections can not contain collections")
            if node is not None and node.status is not ChangeStatus.UNCHANGED:
                raise InvalidStateError(
                    f"Collection item {type(node.target).__name__} is already tracked with status {node.status.name}"
                )
        source = items if type(items) is list else list(items)
        settings = settings if settings is not None else self.settings
        return wrap_collection(source, element_type, settings, IdentityGraph())


_default_factory = ChangeTrackingFactory()


def track(
    target: Any,
    status: ChangeStatus = ChangeStatus.UNCHANGED,
    settings: Optional[ChangeTrackingSettings] = None,
) -> Any:
    return _default_factory.track(target, status, settings)


def track_collection(
    items: Iterable[Any],
    settings: Optional[ChangeTrackingSettings] = None,
    element_type: Optional[type] = None,
) -> TrackedCollection:
    return _default_factory.track_collection(items, settings, element_type)
