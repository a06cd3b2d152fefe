"""
IdentityGraph: at most one tracking wrapper per underlying instance.

One graph is created per top-level track()/track_collection() call and shared
by every wrapper created beneath it, so diamond references resolve to the same
wrapper and cyclic graphs terminate.

Entries are keyed by id(target) and hold weak references: the wrapper is held
weakly (parents and collections keep live wrappers reachable), and the target
is held weakly when its type allows it. A dead entry can never be returned:
lookups verify the entry is still alive and still refers to the same object,
so a recycled id() is treated as a miss.

Concurrency: lookups and inserts share the graph; every COMPACT_INTERVAL
operations a sweep removes dead entries under an exclusive section.
"""

import itertools
import logging
import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generator, Optional

logger = logging.getLogger(__name__)

COMPACT_INTERVAL = 100


class _StrongRef:
    """Stand-in for weakref.ref on objects that cannot be weakly referenced."""
    __slots__ = ('_obj',)

    def __init__(self, obj: Any):
        self._obj = obj

    def __call__(self) -> Any:
        return self._obj


def _ref(obj: Any) -> Callable[[], Any]:
    try:
        return weakref.ref(obj)
    except TypeError:
        return _StrongRef(obj)


@dataclass(frozen=True)
class GraphEntry:
    target_ref: Callable[[], Any]
    wrapper_ref: Callable[[], Any]

    def live_wrapper(self, target: Any) -> Optional[Any]:
        wrapper = self.wrapper_ref()
        if wrapper is None or self.target_ref() is not target:
            return None
        return wrapper

    @property
    def is_dead(self) -> bool:
        return self.wrapper_ref() is None or self.target_ref() is None


class SharedExclusiveLock:
    """Many concurrent shared holders or one exclusive holder.

    Waiting exclusive holders take priority over new shared holders so a sweep
    cannot be starved, and a sweep only ever waits for in-flight operations.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._shared = 0
        self._exclusive = False
        self._exclusive_waiting = 0

    @contextmanager
    def shared(self) -> Generator[None, None, None]:
        with self._cond:
            while self._exclusive or self._exclusive_waiting:
                self._cond.wait()
            self._shared += 1
        try:
            yield
        finally:
            with self._cond:
                self._shared -= 1
                if self._shared == 0:
                    self._cond.notify_all()

    @contextmanager
    def exclusive(self) -> Generator[None, None, None]:
        with self._cond:
            self._exclusive_waiting += 1
            try:
                while self._exclusive or self._shared:
                    self._cond.wait()
            finally:
                self._exclusive_waiting -= 1
            self._exclusive = True
        try:
            yield
        finally:
            with self._cond:
                self._exclusive = False
                self._cond.notify_all()


class IdentityGraph:
    """Weak registry from underlying instance to its tracking wrapper."""

    def __init__(self, compact_interval: int = COMPACT_INTERVAL):
        self._entries: Dict[int, GraphEntry] = {}
        self._lock = SharedExclusiveLock()
        self._insert_lock = threading.Lock()
        self._ops = itertools.count(1)
        self._compact_interval = compact_interval

    def __len__(self) -> int:
        return len(self._entries)

    def resolve(self, target: Any) -> Optional[Any]:
        """Existing live wrapper for target, or None."""
        self._tick()
        with self._lock.shared():
            entry = self._entries.get(id(target))
            return entry.live_wrapper(target) if entry is not None else None

    def register(self, target: Any, wrapper: Any) -> Any:
        """Insert target -> wrapper unless a live mapping already exists.

        Returns:
            The wrapper now mapped to target (the existing one if another
            registration won the race)
        """
        self._tick()
        with self._lock.shared():
            with self._insert_lock:
                key = id(target)
                entry = self._entries.get(key)
                existing = entry.live_wrapper(target) if entry is not None else None
                if existing is not None:
                    return existing
                self._entries[key] = GraphEntry(_ref(target), _ref(wrapper))
                return wrapper

    def resolve_or_create(
        self,
        target: Any,
        create: Callable[[Any], Any],
        discard: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """Return the wrapper for target, creating and registering it if needed.

        create() may run more than once under contention; only the first
        registered result is ever returned. A created wrapper that lost the
        race is handed to discard() so it can drop its subscriptions.
        """
        existing = self.resolve(target)
        if existing is not None:
            return existing
        created = create(target)
        wrapper = self.register(target, created)
        if wrapper is not created and discard is not None:
            discard(created)
        return wrapper

    def compact(self) -> int:
        """Remove entries whose target or wrapper has been collected."""
        with self._lock.exclusive():
            dead = [key for key, entry in self._entries.items() if entry.is_dead]
            for key in dead:
                del self._entries[key]
        if dead:
            logger.debug(f"IdentityGraph compacted {len(dead)} dead entries ({len(self._entries)} live)")
        return len(dead)

    def _tick(self) -> None:
        if next(self._ops) % self._compact_interval == 0:
            self.compact()
