"""
Interception: dynamically generated tracking subclasses.

For every tracked class a subclass is generated once (cached per class) whose
attribute hooks route tracked property access to the instance's
TrackedObject. The subclass carries the original __name__/__qualname__/__module__,
so isinstance checks, dataclass helpers and reprs keep working.

A proxy instance stores nothing but its TrackedObject. Attribute resolution:
1. tracked property            -> TrackedObject.read/write
2. excluded (do_not_track) one -> underlying instance, untracked
3. instance data of the target -> underlying instance
4. anything on the class       -> normal lookup with self bound to the proxy,
                                  so methods and properties write through tracking
"""

import logging
import threading
from typing import Any, Callable, Dict, Optional, Type

from changetracking.config import ChangeTrackingSettings
from changetracking.events import ChangeStatus
from changetracking.identity_graph import IdentityGraph
from changetracking.tracked_object import TrackedObject
from changetracking.type_inspection import get_catalog

logger = logging.getLogger(__name__)

TRACKER_ATTR = '_changetracking_tracker'
TRACKED_TYPE_ATTR = '__changetracking_tracked_type__'

_proxy_class_cache: Dict[type, type] = {}
_proxy_class_lock = threading.Lock()


def _tracker(proxy: Any) -> TrackedObject:
    return object.__getattribute__(proxy, TRACKER_ATTR)


# ==================== GENERATED METHODS ====================

def _proxy_getattribute(self: Any, name: str) -> Any:
    tracker = _tracker(self)
    if name in tracker.properties:
        return tracker.read(name)
    if name in tracker.passthrough_names:
        return getattr(tracker.target, name)
    if not name.startswith('__'):
        try:
            return object.__getattribute__(tracker.target, '__dict__')[name]
        except (AttributeError, KeyError):
            pass
    return object.__getattribute__(self, name)


def _proxy_getattr(self: Any, name: str) -> Any:
    # Slots and other storage object.__getattribute__ could not find on the proxy
    return getattr(_tracker(self).target, name)


def _proxy_setattr(self: Any, name: str, value: Any) -> None:
    tracker = _tracker(self)
    if name in tracker.properties:
        tracker.write(name, value)
    else:
        setattr(tracker.target, name, value)


def _proxy_delattr(self: Any, name: str) -> None:
    delattr(_tracker(self).target, name)


def _proxy_eq(self: Any, other: Any) -> Any:
    return _tracker(self).target == unwrap(other)


def _proxy_ne(self: Any, other: Any) -> Any:
    return _tracker(self).target != unwrap(other)


def _proxy_hash(self: Any) -> int:
    return hash(_tracker(self).target)


def _proxy_dir(self: Any):
    return dir(_tracker(self).target)


def _proxy_reduce_ex(self: Any, protocol: int):
    # Pickling a proxy pickles a plain copy of its current state
    return _tracker(self).get_current().__reduce_ex__(protocol)


def _proxy_copy(self: Any) -> Any:
    return _tracker(self).get_current()


def _proxy_setitem(self: Any, key: Any, value: Any) -> None:
    _tracker(self).write_item(key, value)


def _proxy_delitem(self: Any, key: Any) -> None:
    _tracker(self).delete_item(key)


_BASE_NAMESPACE: Dict[str, Callable] = {
    '__getattribute__': _proxy_getattribute,
    '__getattr__': _proxy_getattr,
    '__setattr__': _proxy_setattr,
    '__delattr__': _proxy_delattr,
    '__eq__': _proxy_eq,
    '__ne__': _proxy_ne,
    '__hash__': _proxy_hash,
    '__dir__': _proxy_dir,
    '__reduce_ex__': _proxy_reduce_ex,
    '__copy__': _proxy_copy,
}

_KEYED_ITEM_NAMESPACE: Dict[str, Callable] = {
    '__setitem__': _proxy_setitem,
    '__delitem__': _proxy_delitem,
}


def get_proxy_class(cls: Type) -> Type:
    """Get (generating once) the tracking subclass of cls."""
    proxy_cls = _proxy_class_cache.get(cls)
    if proxy_cls is not None:
        return proxy_cls
    with _proxy_class_lock:
        proxy_cls = _proxy_class_cache.get(cls)
        if proxy_cls is None:
            namespace = dict(_BASE_NAMESPACE)
            if get_catalog(cls).has_keyed_items:
                namespace.update(_KEYED_ITEM_NAMESPACE)
            namespace.update({
                '__module__': cls.__module__,
                '__qualname__': cls.__qualname__,
                '__doc__': cls.__doc__,
                TRACKED_TYPE_ATTR: cls,
            })
            # Use the class's own metaclass so ABCMeta and friends keep working
            proxy_cls = type(cls)(cls.__name__, (cls,), namespace)
            _proxy_class_cache[cls] = proxy_cls
            logger.debug(f"Generated tracking subclass for {cls.__qualname__}")
        return proxy_cls


def create_proxy(target: Any, status: ChangeStatus, settings: ChangeTrackingSettings, graph: IdentityGraph) -> Any:
    """Wrap target in a new proxy with its own TrackedObject."""
    proxy = object.__new__(get_proxy_class(type(target)))
    tracker = TrackedObject(proxy, target, status, settings, graph)
    object.__setattr__(proxy, TRACKER_ATTR, tracker)
    logger.debug(f"Tracking {type(target).__name__} with status {status.name}")
    return proxy


# ==================== LOOKUP HELPERS ====================

def is_proxy(value: Any) -> bool:
    return TRACKED_TYPE_ATTR in type(value).__dict__


def node_of(value: Any) -> Optional[Any]:
    """Engine node behind value: TrackedObject for proxies, the collection itself, or None."""
    if getattr(type(value), '_changetracking_collection', False):
        return value
    if is_proxy(value):
        return _tracker(value)
    return None


def is_tracked(value: Any) -> bool:
    return node_of(value) is not None


def tracker_of(value: Any) -> Any:
    """Tracking interface of a proxy or tracked collection.

    Raises:
        TypeError: value is not tracked
    """
    node = node_of(value)
    if node is None:
        raise TypeError(f"{type(value).__name__} instance is not tracked")
    return node


def unwrap(value: Any) -> Any:
    """Underlying instance (or source list) of a wrapper; anything else unchanged."""
    node = node_of(value)
    return node.target if node is not None else value
