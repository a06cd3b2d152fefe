"""
Recursive IsChanged / AcceptChanges / RejectChanges over the tracked graph.

Nodes are engine objects (TrackedObject or TrackedCollection). Each walk
threads a visited map (id(node) -> node) through every recursive call; a
child is added to it before recursing, so cycles and diamonds are visited
exactly once. A fresh map is created for every top-level call.

Node hooks used here:
    _propagation_children()  resolved child nodes (eagerly resolving all)
    _own_changed()           change intrinsic to this node, ignoring children
    _validate_accept()       raise before anything is touched
    _commit()                clear own ledger / deleted bucket
    _prepare_reject()        drop items added since the last accept
    _rollback(visited)       restore own ledger / deleted bucket
"""

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

Visited = Dict[int, Any]


def new_visited(node: Any) -> Visited:
    return {id(node): node}


def unvisited_children(node: Any, visited: Visited) -> List[Any]:
    """Children of node not yet in visited; marks them visited."""
    children = []
    for child in node._propagation_children():
        key = id(child)
        if key not in visited:
            visited[key] = child
            children.append(child)
    return children


def is_changed(node: Any, visited: Optional[Visited] = None) -> bool:
    if visited is None:
        visited = new_visited(node)
    if node._own_changed():
        return True
    return any(is_changed(child, visited) for child in unvisited_children(node, visited))


def any_child_changed(node: Any) -> bool:
    """Whether any descendant of node (node itself excluded) is changed."""
    visited = new_visited(node)
    return any(is_changed(child, visited) for child in unvisited_children(node, visited))


def accept_changes(node: Any, visited: Optional[Visited] = None) -> None:
    if visited is None:
        visited = new_visited(node)
        logger.debug(f"accept_changes from {type(node).__name__}")
    node._validate_accept()
    for child in unvisited_children(node, visited):
        accept_changes(child, visited)
    node._commit()


def reject_changes(node: Any, visited: Optional[Visited] = None) -> None:
    if visited is None:
        visited = new_visited(node)
        logger.debug(f"reject_changes from {type(node).__name__}")
    node._prepare_reject()
    for child in unvisited_children(node, visited):
        reject_changes(child, visited)
    node._rollback(visited)
