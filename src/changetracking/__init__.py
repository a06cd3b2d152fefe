"""
Transparent change tracking for plain Python object graphs.

Wrap an object (or a list of objects) and every write to its tracked
properties is recorded: the wrapper knows whether it is Unchanged, Added,
Changed or Deleted, remembers the original value of each changed property,
and can accept or roll back all pending changes across nested objects,
collections, diamonds and cycles. The tracked classes need no tracking code.

Quick Start:
    >>> from dataclasses import dataclass
    >>> from changetracking import track, tracker_of, ChangeStatus
    >>>
    >>> @dataclass
    ... class Order:
    ...     id: int = 0
    ...     customer: str = ""
    >>>
    >>> order = track(Order(id=1, customer="Test"))
    >>> order.customer = "Test1"
    >>> tracker = tracker_of(order)
    >>> tracker.status is ChangeStatus.CHANGED
    True
    >>> tracker.get_original_value("customer")
    'Test'
    >>> tracker.reject_changes()
    >>> order.customer
    'Test'

Architecture:
    proxy            generated subclasses route property access to the engine
    tracked_object   per-instance engine object (status, ledger, children)
    change_state     ledger and status machine
    child_resolver   lazy wrappers for nested objects and lists
    identity_graph   one wrapper per underlying instance per tracking session
    collection       tracked lists with added/changed/deleted bookkeeping
    propagation      recursive is_changed / accept / reject
    edit_session     begin/cancel/end transactional editing
    unroll           plain copies (get_original / get_current)
"""

# Entry points
from changetracking.factory import (
    ChangeTrackingFactory,
    track,
    track_collection,
)

# Wrappers
from changetracking.tracked_object import TrackedObject
from changetracking.collection import TrackedCollection
from changetracking.proxy import (
    is_tracked,
    tracker_of,
    unwrap,
)

# State and events
from changetracking.change_state import IndexedProperty, MISSING
from changetracking.events import (
    ChangeStatus,
    CollectionChangedEvent,
    PropertyChangedEvent,
    StatusChangedEvent,
)

# Configuration
from changetracking.config import (
    ChangeTrackingSettings,
    do_not_track,
    get_default_settings,
    set_default_settings,
    settings_context,
    tracked_field,
)

# Materialization
from changetracking.unroll import materialize_current, materialize_original

# Errors
from changetracking.errors import (
    ChangeTrackingError,
    InvalidStateError,
    NotSupportedError,
    UnknownPropertyError,
)

__all__ = [
    # Entry points
    'ChangeTrackingFactory',
    'track',
    'track_collection',
    # Wrappers
    'TrackedObject',
    'TrackedCollection',
    'is_tracked',
    'tracker_of',
    'unwrap',
    # State and events
    'IndexedProperty',
    'MISSING',
    'ChangeStatus',
    'CollectionChangedEvent',
    'PropertyChangedEvent',
    'StatusChangedEvent',
    # Configuration
    'ChangeTrackingSettings',
    'do_not_track',
    'get_default_settings',
    'set_default_settings',
    'settings_context',
    'tracked_field',
    # Materialization
    'materialize_current',
    'materialize_original',
    # Errors
    'ChangeTrackingError',
    'InvalidStateError',
    'NotSupportedError',
    'UnknownPropertyError',
]

__version__ = '1.0.0'
__author__ = 'ChangeTracking Team'
__description__ = 'Transparent change tracking for plain Python object graphs'
