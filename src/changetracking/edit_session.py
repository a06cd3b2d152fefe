"""
Transactional begin/cancel/end editing.

An EditSession snapshots the value each property had before it was first
touched since begin_edit(). It is independent of the permanent ledger:
cancel restores those values through normal tracked writes, so the ledger
and status follow the restored values; end simply forgets them.

The module-level functions recurse into resolved children (children first)
using the same visited discipline as the accept/reject walks.
"""

import logging
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

from changetracking.change_state import values_equal
from changetracking.propagation import Visited, new_visited, unvisited_children

logger = logging.getLogger(__name__)


class EditSession:
    """Before-edit values of one tracked object."""

    def __init__(self):
        self._before_edit: Dict[Hashable, Any] = {}
        self.is_editing = False
        # Set by the owning collection for elements created through add_new()
        self.on_cancel_new: Optional[Callable[[], None]] = None

    @property
    def before_edit_values(self) -> Dict[Hashable, Any]:
        return dict(self._before_edit)

    def begin(self) -> bool:
        if self.is_editing:
            return False
        self._before_edit.clear()
        self.is_editing = True
        return True

    def record_write(self, property_name: Hashable, old_value: Any, new_value: Any) -> None:
        if not self.is_editing:
            return
        if property_name not in self._before_edit:
            if not values_equal(old_value, new_value):
                self._before_edit[property_name] = old_value
        elif values_equal(self._before_edit[property_name], new_value):
            del self._before_edit[property_name]

    def cancel(self) -> Tuple[List[Tuple[Hashable, Any]], Optional[Callable[[], None]]]:
        """Stop editing.

        Returns:
            (entries to restore, cancel-new callback or None); empty when not editing
        """
        if not self.is_editing:
            return [], None
        entries = list(self._before_edit.items())
        self._before_edit.clear()
        self.is_editing = False
        callback, self.on_cancel_new = self.on_cancel_new, None
        return entries, callback

    def end(self) -> None:
        self._before_edit.clear()
        self.is_editing = False
        self.on_cancel_new = None


def begin_edit(node: Any, visited: Optional[Visited] = None) -> None:
    if visited is None:
        visited = new_visited(node)
    session = node._edit_session
    if session is not None and session.is_editing:
        return
    for child in unvisited_children(node, visited):
        begin_edit(child, visited)
    if session is not None:
        session.begin()


def cancel_edit(node: Any, visited: Optional[Visited] = None) -> None:
    if visited is None:
        visited = new_visited(node)
    for child in unvisited_children(node, visited):
        cancel_edit(child, visited)
    if node._edit_session is not None:
        node._cancel_own_edit()


def end_edit(node: Any, visited: Optional[Visited] = None) -> None:
    if visited is None:
        visited = new_visited(node)
    for child in unvisited_children(node, visited):
        end_edit(child, visited)
    if node._edit_session is not None:
        node._edit_session.end()
