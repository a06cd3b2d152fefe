"""
Plain, untracked copies of tracked objects and collections.

get_original()/get_current() build a copy of the underlying instance with
every tracked property set from the ledger (original) or the live value
(current). Nested wrappers are unrolled recursively into plain objects and
plain lists. A memo keyed by engine node makes cyclic and diamond-shaped
graphs come out with the same shape: every node is copied exactly once.
"""

import logging
from typing import Any, Dict, List

from changetracking.proxy import node_of, unwrap

logger = logging.getLogger(__name__)


class Unroller:
    """One materialization pass over a tracked graph."""

    def __init__(self, original: bool):
        self.original = original
        self._memo: Dict[int, Any] = {}
        # Keeps memo keys from being reused by id() while the pass runs
        self._keep_alive: List[Any] = []

    def remember(self, source: Any, copy: Any) -> None:
        """Register the copy of source before its contents are filled in."""
        self._memo[id(source)] = copy
        self._keep_alive.append(source)

    def plain(self, value: Any) -> Any:
        """Untracked counterpart of value."""
        node = node_of(value)
        if node is not None:
            key = id(node)
            if key in self._memo:
                return self._memo[key]
            return node._unroll(self)
        if isinstance(value, list):
            key = id(value)
            if key in self._memo:
                return self._memo[key]
            copy: List[Any] = []
            self.remember(value, copy)
            copy.extend(self.plain(item) for item in value)
            return copy
        return value


def materialize(value: Any, original: bool) -> Any:
    """Plain copy of a wrapper (or of anything holding wrappers)."""
    result = Unroller(original).plain(value)
    logger.debug(f"Materialized {'original' if original else 'current'} {type(unwrap(value)).__name__}")
    return result


def materialize_original(value: Any) -> Any:
    return materialize(value, original=True)


def materialize_current(value: Any) -> Any:
    return materialize(value, original=False)
