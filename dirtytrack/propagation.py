"""
Dirty-Path Propagation
======================

Marking a key dirty walks the tracking graph upward from the mutated node
through every live parent edge, accumulating the traversed keys. Whenever the
walk reaches a tracker root, the full path and each of its strict prefixes
are recorded into that root's change set.

The cycle guard is scoped to the current branch of the walk: the same node is
visited again when it is reachable along a different chain, so a diamond
shaped graph records a path for every chain. A visited node that is not a
root and has no live parents is an orphan; its paths are recorded into every
change set it owns, relative to itself.

Each change set that received paths is notified once per mutation, after the
whole walk has finished.
"""

import logging
from typing import Dict, Hashable, Iterable, Iterator, List, Optional, Tuple

from dirtytrack.base import ChangeSet, join_path, render_key
from dirtytrack.graph import Node
from dirtytrack.watch import notify_watchers

Segments = Tuple[str, ...]


def walk_roots(node: Node) -> Iterator[Tuple[ChangeSet, Segments]]:
    """
    Yield (change_set, prefix) for every root reachable from node.

    The prefix holds the rendered keys leading from that root down to node.
    """
    stack = [(node, (), frozenset((id(node),)))]
    while stack:
        current, suffix, branch = stack.pop()
        if current.root_change_set is not None:
            yield current.root_change_set, suffix
        parents = current.live_parents()
        for parent, key in parents:
            if id(parent) in branch:
                continue
            stack.append((parent, (render_key(key),) + suffix, branch | {id(parent)}))
        if not parents and current.root_change_set is None:
            if current.change_sets:
                logging.debug(
                    f"Orphaned {current!r} falls back to "
                    f"{len(current.change_sets)} owned change set(s)"
                )
            for change_set in list(current.change_sets):
                yield change_set, suffix


def collect_paths(
    node: Node, keys: Optional[Iterable[Hashable]] = None
) -> Dict[ChangeSet, List[Segments]]:
    """
    Compute the leaf paths a mutation of node produces, grouped by change set.

    Args:
        node: The mutated node
        keys: Keys written or deleted on node; None for a container-level change

    Returns:
        Mapping from each reached change set to its distinct leaf paths
    """
    leaves = [()] if keys is None else [(render_key(key),) for key in keys]
    collected: Dict[ChangeSet, List[Segments]] = {}
    seen = set()
    for change_set, prefix in walk_roots(node):
        for leaf in leaves:
            segments = prefix + leaf
            # The root of a container-level change has no path of its own
            if not segments or (change_set, segments) in seen:
                continue
            seen.add((change_set, segments))
            collected.setdefault(change_set, []).append(segments)
    return collected


def mark_dirty(node: Node, keys: Optional[Iterable[Hashable]] = None) -> List[ChangeSet]:
    """
    Record a mutation of node and notify every affected change set once.

    Returns:
        The change sets that received paths, in the order they were reached
    """
    collected = collect_paths(node, keys)
    for change_set, leaf_paths in collected.items():
        for segments in leaf_paths:
            for end in range(len(segments), 0, -1):
                change_set.add(join_path(segments[:end]))
    touched = list(collected)
    for change_set in touched:
        notify_watchers(change_set)
    return touched


def mark_container_dirty(node: Node) -> List[ChangeSet]:
    """Record a mutation of an opaque container at its own path."""
    return mark_dirty(node, None)
