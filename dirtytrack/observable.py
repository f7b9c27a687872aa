"""
Schema-less Trackers
====================

create_observable() turns a plain structure into a tracker root with its own
change set. Everything reachable from the root is wrapped eagerly so shared
sub-objects register their parent edges before the first mutation.

Example:
    >>> state = create_observable({"a": {"b": {"c": 0}}})
    >>> state["a"]["b"]["c"] = 1
    >>> get_observable_internals(state).dirty_paths()
    ['a.b.c', 'a.b', 'a']
"""

import logging
from typing import Any, Callable, List

from dirtytrack.base import ChangeSet, NotTrackedError
from dirtytrack.graph import node_of
from dirtytrack.proxy import deep_traverse, ensure_trackable, wrap


class ObservableInternals:
    """Change-set operations of one tracker."""

    def __init__(self, dirty: ChangeSet):
        self.dirty = dirty

    def is_dirty(self) -> bool:
        return len(self.dirty) > 0

    def dirty_paths(self) -> List[str]:
        """Dirty paths in the order they were first recorded."""
        return self.dirty.paths()

    def mark_clean(self) -> None:
        """Forget every dirty path. Subscribers are not notified."""
        self.dirty.clear()

    def __repr__(self):
        return f"{type(self).__name__}({self.dirty.paths()})"


def _attach_tracker(data: Any, make_internals: Callable[..., ObservableInternals]):
    """Wrap data as a new tracker root and install its internals."""
    ensure_trackable(data)
    change_set = ChangeSet()
    handle = wrap(data, change_set)
    node = node_of(handle)
    node.internals = make_internals(change_set, node)
    visited = deep_traverse(handle)
    logging.debug(
        f"Created {type(node.internals).__name__} over "
        f"{type(node.target).__name__} ({visited} nodes)"
    )
    return handle


def create_observable(data: Any) -> Any:
    """
    Start tracking data.

    Args:
        data: A dict, list, object or handle to become the tracker root

    Returns:
        The root handle

    Raises:
        NotTrackableError: If data is immutable or already a tracker root
    """
    return _attach_tracker(data, lambda change_set, node: ObservableInternals(change_set))


def get_observable_internals(tracked: Any) -> ObservableInternals:
    """
    Return the change-set operations of a tracker root.

    Raises:
        NotTrackedError: If tracked is not a tracker root
    """
    node = node_of(tracked)
    if node is None or not isinstance(node.internals, ObservableInternals):
        raise NotTrackedError(
            f"{type(tracked).__name__} object is not an observable tracker root"
        )
    return node.internals


def is_observable(value: Any) -> bool:
    node = node_of(value)
    return node is not None and isinstance(node.internals, ObservableInternals)
