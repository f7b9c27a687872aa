"""
Tracking Handles
================

wrap() returns the canonical handle for a structured value. Handles behave
like the value they stand for: reads, writes, deletes, iteration, len(),
membership, comparisons and isinstance() checks all go to the raw target,
while writes additionally report the changed key to the propagation engine.

Four handle types cover the four node kinds:

- TrackedDict: dict and its subclasses, as a MutableMapping
- TrackedList: list and its subclasses, as a MutableSequence
- TrackedObject: instances with a __dict__ or __slots__, through attribute
  access. Python-level methods and properties run with the handle as self so
  writes they make are seen; builtin methods stay bound to the raw instance.
- TrackedContainer: opaque containers (sets, weak maps, deques, buffers,
  numpy arrays), tracked at container granularity through the adapter table

Nested structured values are wrapped lazily on first read and cached per key,
so reading the same key twice returns the same handle. Raw data never holds
handles: every value written through a handle is unwrapped first.
"""

import copy
import functools
import inspect
import operator
import types
from collections.abc import MutableMapping, MutableSequence
from typing import Any, Callable, Hashable, Iterable, List, Optional

import numpy as np
from cachetools import LRUCache

from dirtytrack.base import MISSING, ChangeSet, NotTrackableError
from dirtytrack.graph import (
    Node,
    NodeKind,
    TrackedHandle,
    attach_child,
    classify,
    detach_child,
    is_frozen,
    is_structured,
    lookup,
    node_of,
    register,
    spread_change_sets,
)
from dirtytrack.propagation import mark_container_dirty, mark_dirty
from dirtytrack.util.containers import CLASSIFICATION_CACHE_SIZE


# ============================================================================
# HELPERS
# ============================================================================


def unwrap(value: Any) -> Any:
    """Return the raw target of a handle, or value itself."""
    node = node_of(value)
    return value if node is None else node.target


def is_tracked(value: Any) -> bool:
    return node_of(value) is not None


def values_equal(old: Any, new: Any) -> bool:
    """
    Ordinary equality with the rules writes use to detect a change.

    Structured values compare by identity only. A bool never equals a
    non-bool. Float comparison follows ==, so NaN written over NaN is a change
    and -0.0 written over 0 is not.
    """
    if is_structured(old) or is_structured(new):
        return unwrap(old) is unwrap(new)
    if isinstance(old, (bool, np.bool_)) != isinstance(new, (bool, np.bool_)):
        return False
    try:
        result = old == new
    except (ValueError, TypeError):
        return False
    if isinstance(result, (bool, np.bool_)):
        return bool(result)
    return False


def _target_class(self):
    return type(self._dirtytrack_node.target)


def _store_raw(node: Node, key: Hashable, raw: Any) -> None:
    if node.kind is NodeKind.OBJECT:
        setattr(node.target, key, raw)
    else:
        node.target[key] = raw


def _child_handle(node: Node, key: Hashable, value: Any) -> Any:
    """Return what a read of key yields: a cached or new handle, or the raw value."""
    embedded = node_of(value)
    if embedded is not None:
        # A handle placed directly into raw data; store its target instead
        _store_raw(node, key, embedded.target)
        if node.children.get(key) is not embedded:
            detach_child(node, key)
            attach_child(node, key, embedded)
        return value
    cached = node.children.get(key)
    if cached is not None:
        if cached.target is value:
            return cached.handle
        detach_child(node, key)
    if classify(value) is None:
        return value
    return wrap(value, parent=node, key=key)


def _relink_child(node: Node, key: Hashable, raw: Any) -> None:
    """Point the child cache for key at the node of raw, if raw has one."""
    detach_child(node, key)
    existing = lookup(raw)
    if existing is not None:
        attach_child(node, key, existing)


# ============================================================================
# MAPPINGS
# ============================================================================


class TrackedDict(TrackedHandle, MutableMapping):
    """Handle for dict targets."""

    __slots__ = ()
    __class__ = property(_target_class)

    def __new__(cls, *args, **kwargs):
        if len(args) == 1 and not kwargs and isinstance(args[0], Node):
            return super().__new__(cls)
        # Rebuilding through type(handle)(...) yields a plain dict
        return dict(*args, **kwargs)

    def __getitem__(self, key):
        node = self._dirtytrack_node
        target = node.target
        present = key in target
        value = target[key]
        if not present and key in target:
            # __missing__ inserted the key
            mark_dirty(node, (key,))
        return _child_handle(node, key, value)

    def __setitem__(self, key, value):
        node = self._dirtytrack_node
        target = node.target
        raw = unwrap(value)
        old = target[key] if key in target else MISSING
        target[key] = raw
        if old is not MISSING and values_equal(old, raw):
            return
        _relink_child(node, key, raw)
        mark_dirty(node, (key,))

    def __delitem__(self, key):
        node = self._dirtytrack_node
        if key not in node.target:
            raise KeyError(key)
        mark_dirty(node, (key,))
        del node.target[key]
        detach_child(node, key)

    def __iter__(self):
        return iter(self._dirtytrack_node.target)

    def __len__(self):
        return len(self._dirtytrack_node.target)

    def __contains__(self, key):
        return key in self._dirtytrack_node.target

    def __reversed__(self):
        return reversed(self._dirtytrack_node.target)

    def get(self, key, default=None):
        if key in self._dirtytrack_node.target:
            return self[key]
        return default

    def pop(self, key, default=MISSING):
        if key not in self._dirtytrack_node.target:
            if default is MISSING:
                raise KeyError(key)
            return default
        value = self[key]
        del self[key]
        return value

    def popitem(self):
        node = self._dirtytrack_node
        if not node.target:
            raise KeyError("popitem(): dictionary is empty")
        key = next(reversed(node.target))
        value = self[key]
        del self[key]
        return key, value

    def setdefault(self, key, default=None):
        if key not in self._dirtytrack_node.target:
            self[key] = default
        return self[key]

    def clear(self):
        node = self._dirtytrack_node
        keys = list(node.target)
        if not keys:
            return
        mark_dirty(node, keys)
        node.target.clear()
        for key in keys:
            detach_child(node, key)

    def copy(self):
        return self._dirtytrack_node.target.copy()

    def __or__(self, other):
        return self._dirtytrack_node.target | unwrap(other)

    def __ror__(self, other):
        return unwrap(other) | self._dirtytrack_node.target

    def __ior__(self, other):
        self.update(other)
        return self

    def __eq__(self, other):
        return self._dirtytrack_node.target == unwrap(other)

    __hash__ = None

    def __repr__(self):
        return repr(self._dirtytrack_node.target)

    def __copy__(self):
        return copy.copy(self._dirtytrack_node.target)

    def __deepcopy__(self, memo):
        return copy.deepcopy(self._dirtytrack_node.target, memo)

    def __getattr__(self, name):
        if name == "_dirtytrack_node":
            raise AttributeError(name)
        return getattr(self._dirtytrack_node.target, name)


# ============================================================================
# SEQUENCES
# ============================================================================


def _normalize_index(index, length: int) -> int:
    index = operator.index(index)
    return index + length if index < 0 else index


class TrackedList(TrackedHandle, MutableSequence):
    """
    Handle for list targets.

    Structural list operations run natively on the raw list. The indices whose
    value changed, appeared or disappeared are then marked dirty in a single
    propagation, and cached children are relinked at their new positions.
    """

    __slots__ = ()
    __class__ = property(_target_class)

    def __new__(cls, *args, **kwargs):
        if len(args) == 1 and not kwargs and isinstance(args[0], Node):
            return super().__new__(cls)
        return list(*args, **kwargs)

    def _mutate(self, op: Callable, *args, **kwargs):
        node = self._dirtytrack_node
        target = node.target
        before = list(target)
        result = op(target, *args, **kwargs)
        changed = [
            index
            for index in range(max(len(before), len(target)))
            if index >= len(before)
            or index >= len(target)
            or not values_equal(before[index], target[index])
        ]
        if changed:
            self._relink(changed)
            mark_dirty(node, changed)
        return result

    def _relink(self, indices: Iterable[int]) -> None:
        node = self._dirtytrack_node
        target = node.target
        indices = list(indices)
        for index in indices:
            detach_child(node, index)
        for index in indices:
            if index < len(target):
                existing = lookup(target[index])
                if existing is not None:
                    attach_child(node, index, existing)

    def __getitem__(self, index):
        node = self._dirtytrack_node
        target = node.target
        if isinstance(index, slice):
            return [
                _child_handle(node, i, target[i])
                for i in range(*index.indices(len(target)))
            ]
        value = target[index]
        return _child_handle(node, _normalize_index(index, len(target)), value)

    def __setitem__(self, index, value):
        node = self._dirtytrack_node
        target = node.target
        if isinstance(index, slice):
            self._mutate(operator.setitem, index, [unwrap(v) for v in value])
            return
        raw = unwrap(value)
        position = _normalize_index(index, len(target))
        old = target[index]
        target[index] = raw
        if values_equal(old, raw):
            return
        _relink_child(node, position, raw)
        mark_dirty(node, (position,))

    def __delitem__(self, index):
        node = self._dirtytrack_node
        target = node.target
        if isinstance(index, slice):
            self._mutate(operator.delitem, index)
            return
        length = len(target)
        position = _normalize_index(index, length)
        if not 0 <= position < length:
            raise IndexError("list assignment index out of range")
        shifted = list(range(position, length))
        mark_dirty(node, shifted)
        del target[position]
        self._relink(shifted)

    def __len__(self):
        return len(self._dirtytrack_node.target)

    def __iter__(self):
        node = self._dirtytrack_node
        index = 0
        while index < len(node.target):
            yield _child_handle(node, index, node.target[index])
            index += 1

    def __contains__(self, value):
        return unwrap(value) in self._dirtytrack_node.target

    def insert(self, index, value):
        self._mutate(list.insert, index, unwrap(value))

    def append(self, value):
        node = self._dirtytrack_node
        raw = unwrap(value)
        node.target.append(raw)
        position = len(node.target) - 1
        _relink_child(node, position, raw)
        mark_dirty(node, (position,))

    def extend(self, values):
        self._mutate(list.extend, [unwrap(v) for v in values])

    def clear(self):
        self._mutate(list.clear)

    def reverse(self):
        self._mutate(list.reverse)

    def sort(self, *, key=None, reverse=False):
        self._mutate(list.sort, key=key, reverse=reverse)

    def index(self, value, *args):
        return self._dirtytrack_node.target.index(unwrap(value), *args)

    def count(self, value):
        return self._dirtytrack_node.target.count(unwrap(value))

    def copy(self):
        return list(self._dirtytrack_node.target)

    def __iadd__(self, values):
        self.extend(values)
        return self

    def __imul__(self, times):
        self._mutate(list.__imul__, times)
        return self

    def __add__(self, other):
        return self._dirtytrack_node.target + unwrap(other)

    def __radd__(self, other):
        return unwrap(other) + self._dirtytrack_node.target

    def __mul__(self, times):
        return self._dirtytrack_node.target * times

    __rmul__ = __mul__

    def __eq__(self, other):
        return self._dirtytrack_node.target == unwrap(other)

    def __lt__(self, other):
        return self._dirtytrack_node.target < unwrap(other)

    def __le__(self, other):
        return self._dirtytrack_node.target <= unwrap(other)

    def __gt__(self, other):
        return self._dirtytrack_node.target > unwrap(other)

    def __ge__(self, other):
        return self._dirtytrack_node.target >= unwrap(other)

    __hash__ = None

    def __repr__(self):
        return repr(self._dirtytrack_node.target)

    def __copy__(self):
        return copy.copy(self._dirtytrack_node.target)

    def __deepcopy__(self, memo):
        return copy.deepcopy(self._dirtytrack_node.target, memo)

    def __getattr__(self, name):
        if name == "_dirtytrack_node":
            raise AttributeError(name)
        return getattr(self._dirtytrack_node.target, name)


# ============================================================================
# ATTRIBUTE RECORDS
# ============================================================================


def _class_attribute(cls: type, name: str) -> Any:
    return inspect.getattr_static(cls, name, MISSING)


def _is_field(target: Any, name: str) -> bool:
    """True when name is stored on the instance rather than computed."""
    if name in getattr(target, "__dict__", ()):
        return True
    return isinstance(
        _class_attribute(type(target), name), types.MemberDescriptorType
    )


class TrackedObject(TrackedHandle):
    """Handle for plain objects, intercepting attribute access."""

    __slots__ = ()
    __class__ = property(_target_class)

    def __getattr__(self, name):
        if name == "_dirtytrack_node":
            raise AttributeError(name)
        node = self._dirtytrack_node
        target = node.target
        attribute = _class_attribute(type(target), name)
        if isinstance(attribute, property) and attribute.fget is not None:
            return attribute.fget(self)
        if isinstance(attribute, types.FunctionType) and name not in getattr(
            target, "__dict__", ()
        ):
            return types.MethodType(attribute, self)
        value = getattr(target, name)
        if _is_field(target, name):
            return _child_handle(node, name, value)
        return value

    def __setattr__(self, name, value):
        node = self._dirtytrack_node
        target = node.target
        raw = unwrap(value)
        attribute = _class_attribute(type(target), name)
        if isinstance(attribute, property):
            # The setter runs against the handle so the writes it makes are seen
            attribute.__set__(self, raw)
            return
        old = getattr(target, name, MISSING)
        setattr(target, name, raw)
        if old is not MISSING and values_equal(old, raw):
            return
        _relink_child(node, name, raw)
        mark_dirty(node, (name,))

    def __delattr__(self, name):
        node = self._dirtytrack_node
        target = node.target
        attribute = _class_attribute(type(target), name)
        if isinstance(attribute, property):
            attribute.__delete__(self)
            return
        if not _is_field(target, name):
            delattr(target, name)
            return
        mark_dirty(node, (name,))
        delattr(target, name)
        detach_child(node, name)

    def __dir__(self):
        return dir(self._dirtytrack_node.target)

    def __copy__(self):
        return copy.copy(self._dirtytrack_node.target)

    def __deepcopy__(self, memo):
        return copy.deepcopy(self._dirtytrack_node.target, memo)


def _object_dunder(name: str, fallback: Optional[Callable] = None):
    """Forward a special method to the target's class, bound to the handle."""

    def method(self, *args):
        target = self._dirtytrack_node.target
        implementation = _class_attribute(type(target), name)
        if isinstance(implementation, types.FunctionType):
            return implementation(self, *args)
        if fallback is not None:
            return fallback(target, *args)
        return getattr(target, name)(*map(unwrap, args))

    method.__name__ = name
    return method


_OBJECT_SPECIAL = {
    name: _object_dunder(name)
    for name in (
        "__len__",
        "__iter__",
        "__next__",
        "__reversed__",
        "__contains__",
        "__getitem__",
        "__setitem__",
        "__delitem__",
        "__call__",
        "__lt__",
        "__le__",
        "__gt__",
        "__ge__",
        "__enter__",
        "__exit__",
        "__int__",
        "__float__",
        "__index__",
    )
}
_OBJECT_SPECIAL.update(
    {
        "__repr__": _object_dunder("__repr__", repr),
        "__str__": _object_dunder("__str__", str),
        "__format__": _object_dunder("__format__", format),
        "__bool__": _object_dunder("__bool__", bool),
        "__hash__": _object_dunder("__hash__", hash),
        "__eq__": _object_dunder("__eq__", lambda t, other: t == unwrap(other)),
        "__ne__": _object_dunder("__ne__", lambda t, other: t != unwrap(other)),
    }
)


# ============================================================================
# OPAQUE CONTAINERS
# ============================================================================


def _mutating_method(node: Node, method: Callable) -> Callable:
    @functools.wraps(method)
    def call(*args, **kwargs):
        result = method(*map(unwrap, args), **kwargs)
        mark_container_dirty(node)
        return result

    return call


class TrackedContainer(TrackedHandle):
    """
    Handle for opaque containers.

    Lookups resolve on the raw instance. Methods the adapter lists as mutating
    mark the container dirty at its own path after they ran.
    """

    __slots__ = ()
    __class__ = property(_target_class)

    def __getattr__(self, name):
        if name == "_dirtytrack_node":
            raise AttributeError(name)
        node = self._dirtytrack_node
        value = getattr(node.target, name)
        if callable(value) and node.adapter.is_mutating(name):
            return _mutating_method(node, value)
        return value

    def __setattr__(self, name, value):
        node = self._dirtytrack_node
        setattr(node.target, name, unwrap(value))
        mark_container_dirty(node)

    def __delattr__(self, name):
        node = self._dirtytrack_node
        delattr(node.target, name)
        mark_container_dirty(node)

    def __copy__(self):
        return copy.copy(self._dirtytrack_node.target)

    def __deepcopy__(self, memo):
        return copy.deepcopy(self._dirtytrack_node.target, memo)


def _container_passthrough(function: Callable):
    def method(self, *args):
        return function(self._dirtytrack_node.target, *map(unwrap, args))

    return method


def _container_reflected(function: Callable):
    def method(self, other):
        return function(unwrap(other), self._dirtytrack_node.target)

    return method


def _container_item_write(name: str, function: Callable):
    def method(self, *args):
        node = self._dirtytrack_node
        function(node.target, *map(unwrap, args))
        if node.adapter.is_mutating(name):
            mark_container_dirty(node)

    return method


def _container_inplace(name: str, function: Callable):
    def method(self, other):
        node = self._dirtytrack_node
        result = function(node.target, unwrap(other))
        if result is not node.target:
            return result
        if node.adapter.is_mutating(name):
            mark_container_dirty(node)
        return self

    return method


def _container_array(self, dtype=None, copy=None):
    array = np.asarray(self._dirtytrack_node.target, dtype=dtype)
    return array.copy() if copy else array


_BINARY_OPERATORS = {
    "add": (operator.add, operator.iadd),
    "sub": (operator.sub, operator.isub),
    "mul": (operator.mul, operator.imul),
    "matmul": (operator.matmul, operator.imatmul),
    "truediv": (operator.truediv, operator.itruediv),
    "floordiv": (operator.floordiv, operator.ifloordiv),
    "mod": (operator.mod, operator.imod),
    "pow": (operator.pow, operator.ipow),
    "lshift": (operator.lshift, operator.ilshift),
    "rshift": (operator.rshift, operator.irshift),
    "and": (operator.and_, operator.iand),
    "or": (operator.or_, operator.ior),
    "xor": (operator.xor, operator.ixor),
}

_CONTAINER_SPECIAL = {
    name: _container_passthrough(function)
    for name, function in {
        "__len__": len,
        "__iter__": iter,
        "__reversed__": reversed,
        "__contains__": operator.contains,
        "__getitem__": operator.getitem,
        "__repr__": repr,
        "__str__": str,
        "__format__": format,
        "__bool__": bool,
        "__hash__": hash,
        "__bytes__": bytes,
        "__int__": int,
        "__float__": float,
        "__complex__": complex,
        "__index__": operator.index,
        "__sizeof__": lambda target: target.__sizeof__(),
        "__dir__": dir,
        "__neg__": operator.neg,
        "__pos__": operator.pos,
        "__abs__": operator.abs,
        "__invert__": operator.invert,
        "__eq__": operator.eq,
        "__ne__": operator.ne,
        "__lt__": operator.lt,
        "__le__": operator.le,
        "__gt__": operator.gt,
        "__ge__": operator.ge,
    }.items()
}
_CONTAINER_SPECIAL["__setitem__"] = _container_item_write(
    "__setitem__", operator.setitem
)
_CONTAINER_SPECIAL["__delitem__"] = _container_item_write(
    "__delitem__", operator.delitem
)
_CONTAINER_SPECIAL["__array__"] = _container_array
for _name, (_binary, _inplace) in _BINARY_OPERATORS.items():
    _CONTAINER_SPECIAL[f"__{_name}__"] = _container_passthrough(_binary)
    _CONTAINER_SPECIAL[f"__r{_name}__"] = _container_reflected(_binary)
    _CONTAINER_SPECIAL[f"__i{_name}__"] = _container_inplace(f"__i{_name}__", _inplace)


# ============================================================================
# FACTORY
# ============================================================================

_HANDLE_TYPES = {
    NodeKind.MAPPING: TrackedDict,
    NodeKind.SEQUENCE: TrackedList,
    NodeKind.OBJECT: TrackedObject,
    NodeKind.CONTAINER: TrackedContainer,
}

_SPECIAL_METHODS = {
    NodeKind.OBJECT: _OBJECT_SPECIAL,
    NodeKind.CONTAINER: _CONTAINER_SPECIAL,
}

_handle_types = LRUCache(maxsize=CLASSIFICATION_CACHE_SIZE)

# Class attributes dataclasses.fields(), asdict() and replace() look up
_DATACLASS_ATTRIBUTES = ("__dataclass_fields__", "__dataclass_params__")


def handle_type(kind: NodeKind, cls: type) -> type:
    """
    Return the handle class used for targets of type cls.

    Object and container handles get a subclass per target type carrying only
    the special methods that type defines, so protocol checks such as
    callable() or iter() on a handle answer the way they would on the target.
    """
    base = _HANDLE_TYPES[kind]
    special = _SPECIAL_METHODS.get(kind)
    if special is None:
        return base
    specialized = _handle_types.get((kind, cls))
    if specialized is None:
        namespace = {"__slots__": (), "__hash__": None}
        for name in _DATACLASS_ATTRIBUTES:
            if hasattr(cls, name):
                namespace[name] = getattr(cls, name)
        for name, method in special.items():
            if getattr(cls, name, None) is not None:
                namespace[name] = method
        specialized = type(f"{base.__name__}[{cls.__name__}]", (base,), namespace)
        _handle_types[(kind, cls)] = specialized
    return specialized


def wrap(
    target: Any,
    change_set: Optional[ChangeSet] = None,
    parent: Optional[Node] = None,
    key: Hashable = None,
) -> Any:
    """
    Return the canonical handle for a structured value.

    Args:
        target: Raw value or handle to wrap
        change_set: Change set to connect to the value and its descendants.
            A value wrapped without a parent becomes a root of this set.
        parent: Node the value is read from
        key: Key under which the value is reachable from parent

    Raises:
        NotTrackableError: If target is a leaf value
    """
    target = unwrap(target)
    node = lookup(target)
    if node is None:
        classification = classify(target)
        if classification is None:
            raise NotTrackableError(
                f"cannot track a value of type {type(target).__name__}"
            )
        kind, adapter = classification
        node = Node(target, kind, adapter)
        node.handle = handle_type(kind, type(target))(node)
        register(node)
    if parent is None and change_set is not None and node.root_change_set is None:
        node.root_change_set = change_set
    if change_set is not None:
        spread_change_sets(node, (change_set,))
    if parent is not None:
        attach_child(parent, key, node)
    return node.handle


def get_node(value: Any) -> Optional[Node]:
    """Return the graph node of a handle or of a raw value that has one."""
    node = node_of(value)
    return node if node is not None else lookup(value)


def ensure_trackable(value: Any) -> None:
    """Raise NotTrackableError unless value can become a tracker root."""
    node = get_node(value)
    if node is not None and node.internals is not None:
        raise NotTrackableError(
            f"{type(unwrap(value)).__name__} object is already a tracker root"
        )
    raw = unwrap(value)
    if is_frozen(raw) or classify(raw) is None:
        raise NotTrackableError(
            f"cannot track immutable value of type {type(raw).__name__}"
        )


def _fields(node: Node) -> List[tuple]:
    target = node.target
    if node.kind is NodeKind.MAPPING:
        return list(target.items())
    if node.kind is NodeKind.SEQUENCE:
        return list(enumerate(target))
    if node.kind is NodeKind.OBJECT:
        fields = list(getattr(target, "__dict__", {}).items())
        for cls in type(target).__mro__:
            slots = cls.__dict__.get("__slots__", ())
            if isinstance(slots, str):
                slots = (slots,)
            for name in slots:
                if name in ("__dict__", "__weakref__"):
                    continue
                value = getattr(target, name, MISSING)
                if value is not MISSING:
                    fields.append((name, value))
        return fields
    return []


def deep_traverse(handle: Any) -> int:
    """
    Wrap everything reachable from handle so every shared edge is registered.

    Returns:
        Number of nodes visited
    """
    root = node_of(handle)
    if root is None:
        return 0
    stack = [root]
    seen = set()
    while stack:
        node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        for key, value in _fields(node):
            child = node_of(_child_handle(node, key, value))
            if child is not None and id(child) not in seen:
                stack.append(child)
    return len(seen)
