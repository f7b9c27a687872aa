"""
Tracking Graph
==============

One Node exists per distinct raw value that has been wrapped. Nodes are kept
in a process-wide registry keyed by the identity of their target and hold:

- the raw target (strongly, so its id stays unique while the node lives)
- the single canonical handle exposed to callers
- weak back-references to every parent node, each paired with the key under
  which this node is reachable from that parent
- a strong key -> child node map used as identity cache
- the change sets of every tracker whose tree contains the node

Because parents are only referenced weakly, ancestors can be collected
independently of their descendants. A dead back-reference is skipped by every
traversal.
"""

import dataclasses
import enum
import functools
import logging
import numbers
import types
import weakref
from typing import Any, Dict, Hashable, List, Optional, Tuple

import numpy as np

from dirtytrack.base import ChangeSet
from dirtytrack.util.containers import ContainerAdapter, adapter_for


class NodeKind(enum.Enum):
    """How a node's target is intercepted."""

    MAPPING = "mapping"
    SEQUENCE = "sequence"
    OBJECT = "object"
    CONTAINER = "container"


class ParentRef:
    """Weak edge from a child node back to one of its parents."""

    __slots__ = ("_node_ref", "key")

    def __init__(self, node: "Node", key: Hashable):
        self._node_ref = weakref.ref(node)
        self.key = key

    def resolve(self) -> Optional["Node"]:
        return self._node_ref()

    def __repr__(self):
        return f"ParentRef({self._node_ref()!r}, {self.key!r})"


class Node:
    __slots__ = (
        "target",
        "kind",
        "adapter",
        "handle",
        "parents",
        "children",
        "change_sets",
        "root_change_set",
        "internals",
        "__weakref__",
    )

    def __init__(
        self, target: Any, kind: NodeKind, adapter: Optional[ContainerAdapter] = None
    ):
        self.target = target
        self.kind = kind
        self.adapter = adapter
        self.handle = None
        self.parents: List[ParentRef] = []
        self.children: Dict[Hashable, "Node"] = {}
        self.change_sets: Dict[ChangeSet, None] = {}
        self.root_change_set: Optional[ChangeSet] = None
        self.internals = None

    @property
    def is_root(self) -> bool:
        return self.root_change_set is not None

    def live_parents(self) -> List[Tuple["Node", Hashable]]:
        """Resolve parent edges, dropping the ones whose parent is gone."""
        resolved = []
        alive = []
        for ref in self.parents:
            parent = ref.resolve()
            if parent is not None:
                resolved.append((parent, ref.key))
                alive.append(ref)
        if len(alive) != len(self.parents):
            logging.debug(
                f"Skipped {len(self.parents) - len(alive)} dead parent reference(s) "
                f"of {self!r}"
            )
            self.parents[:] = alive
        return resolved

    def __repr__(self):
        return (
            f"Node({self.kind.value}, {type(self.target).__name__}, "
            f"parents={len(self.parents)}, children={len(self.children)})"
        )


class TrackedHandle:
    """Base class of every tracking handle."""

    __slots__ = ("_dirtytrack_node", "__weakref__")

    def __init__(self, node: Node):
        object.__setattr__(self, "_dirtytrack_node", node)


# ============================================================================
# REGISTRY
# ============================================================================

_registry: "weakref.WeakValueDictionary[int, Node]" = weakref.WeakValueDictionary()


def node_of(value: Any) -> Optional[Node]:
    """Return the node behind a handle, or None for anything else."""
    if issubclass(type(value), TrackedHandle):
        return value._dirtytrack_node
    return None


def lookup(target: Any) -> Optional[Node]:
    """Return the node registered for a raw value, if any."""
    node = _registry.get(id(target))
    if node is not None and node.target is target:
        return node
    return None


def register(node: Node) -> None:
    _registry[id(node.target)] = node


def registry_size() -> int:
    return len(_registry)


# ============================================================================
# EDGES
# ============================================================================


def _same_key(a: Hashable, b: Hashable) -> bool:
    return a is b or (type(a) is type(b) and a == b)


def add_parent(node: Node, parent: Node, key: Hashable) -> None:
    for ref in node.parents:
        if ref.resolve() is parent and _same_key(ref.key, key):
            return
    node.parents.append(ParentRef(parent, key))


def remove_parent(node: Node, parent: Node, key: Hashable) -> None:
    node.parents[:] = [
        ref
        for ref in node.parents
        if ref.resolve() is not None
        and not (ref.resolve() is parent and _same_key(ref.key, key))
    ]


def spread_change_sets(node: Node, change_sets) -> None:
    """Connect change sets to node and, transitively, to all of its descendants."""
    change_sets = list(change_sets)
    if not change_sets:
        return
    stack = [node]
    while stack:
        current = stack.pop()
        added = False
        for change_set in change_sets:
            if change_set not in current.change_sets:
                current.change_sets[change_set] = None
                added = True
        # Descendants already own everything their ancestor owned
        if added:
            stack.extend(current.children.values())


def attach_child(parent: Node, key: Hashable, child: Node) -> None:
    parent.children[key] = child
    add_parent(child, parent, key)
    spread_change_sets(child, parent.change_sets)


def detach_child(parent: Node, key: Hashable) -> Optional[Node]:
    child = parent.children.pop(key, None)
    if child is not None:
        remove_parent(child, parent, key)
    return child


# ============================================================================
# CLASSIFICATION
# ============================================================================

_ATOMIC_TYPES = (
    str,
    bytes,
    numbers.Number,
    np.generic,
    type(None),
    type(Ellipsis),
    tuple,
    frozenset,
    range,
    slice,
    enum.Enum,
    type,
    types.ModuleType,
    types.FunctionType,
    types.BuiltinFunctionType,
    types.MethodType,
    types.MappingProxyType,
    functools.partial,
    property,
    staticmethod,
    classmethod,
)


def is_frozen(value: Any) -> bool:
    """True for values whose fields cannot be reassigned."""
    if isinstance(value, types.MappingProxyType):
        return True
    params = getattr(type(value), "__dataclass_params__", None)
    return (
        params is not None and dataclasses.is_dataclass(value) and bool(params.frozen)
    )


def classify(value: Any) -> Optional[Tuple[NodeKind, Optional[ContainerAdapter]]]:
    """Return (kind, adapter) for a structured value, or None for a leaf."""
    cls = type(value)
    if issubclass(cls, _ATOMIC_TYPES) or issubclass(cls, TrackedHandle):
        return None
    adapter = adapter_for(value)
    if adapter is not None:
        if adapter.immutable:
            return None
        return NodeKind.CONTAINER, adapter
    if issubclass(cls, dict):
        return NodeKind.MAPPING, None
    if issubclass(cls, list):
        return NodeKind.SEQUENCE, None
    if is_frozen(value):
        return None
    if hasattr(value, "__dict__") or hasattr(cls, "__slots__"):
        return NodeKind.OBJECT, None
    return None


def is_structured(value: Any) -> bool:
    """True for handles and for raw values that would be wrapped."""
    return node_of(value) is not None or classify(value) is not None
