"""
Container Mutation Adapters
===========================

Some standard types keep their state somewhere the tracking handles cannot
see field by field: sets, weak mappings, deques, numeric buffers, numpy
arrays, byte buffers and memory views. Those values are tracked at container
granularity. Each category is described by a ContainerAdapter that lists the
method names which mutate the instance; everything else is a read.

Categories with no mutating names (datetime values) are immutable in Python
and are treated as plain leaves by the tracking graph.

Classification is a runtime isinstance test over the adapter table, memoised
per concrete type in an LRU cache. register_container() extends the table
and invalidates the cache.

Usage:
    >>> adapter = adapter_for({1, 2})
    >>> adapter.category, adapter.is_mutating("add"), adapter.is_mutating("union")
    ('set', True, False)
"""

import array
import collections
import datetime
import logging
import weakref
from dataclasses import dataclass
from typing import Any, FrozenSet, Iterable, Iterator, List, Optional, Tuple

import numpy as np
from cachetools import LRUCache

# Number of concrete types whose classification is memoised
CLASSIFICATION_CACHE_SIZE = 512

_MISSING = object()


@dataclass(frozen=True)
class ContainerAdapter:
    """
    Describes one container category.

    Attributes:
        category: Short name of the category, used in logs and reprs
        types: Runtime types accepted by this adapter
        mutators: Method names that change the instance in place
    """

    category: str
    types: Tuple[type, ...]
    mutators: FrozenSet[str]

    def is_mutating(self, name: str) -> bool:
        return name in self.mutators

    def accepts(self, value: Any) -> bool:
        return isinstance(value, self.types)

    @property
    def immutable(self) -> bool:
        return not self.mutators


_ITEM_WRITES = frozenset({"__setitem__", "__delitem__"})
_SEQUENCE_REPEAT = frozenset({"__iadd__", "__imul__"})
_INPLACE_NUMERIC = frozenset(
    {
        "__iadd__",
        "__isub__",
        "__imul__",
        "__imatmul__",
        "__itruediv__",
        "__ifloordiv__",
        "__imod__",
        "__ipow__",
        "__ilshift__",
        "__irshift__",
        "__iand__",
        "__ior__",
        "__ixor__",
    }
)

_ADAPTERS: List[ContainerAdapter] = [
    ContainerAdapter(
        "set",
        (set, weakref.WeakSet),
        frozenset(
            {
                "add",
                "discard",
                "remove",
                "pop",
                "clear",
                "update",
                "difference_update",
                "intersection_update",
                "symmetric_difference_update",
                "__ior__",
                "__iand__",
                "__isub__",
                "__ixor__",
            }
        ),
    ),
    ContainerAdapter(
        "weak_map",
        (weakref.WeakKeyDictionary, weakref.WeakValueDictionary),
        _ITEM_WRITES
        | frozenset({"pop", "popitem", "setdefault", "update", "clear", "__ior__"}),
    ),
    ContainerAdapter(
        "deque",
        (collections.deque,),
        _ITEM_WRITES
        | _SEQUENCE_REPEAT
        | frozenset(
            {
                "append",
                "appendleft",
                "extend",
                "extendleft",
                "insert",
                "pop",
                "popleft",
                "remove",
                "reverse",
                "rotate",
                "clear",
            }
        ),
    ),
    ContainerAdapter(
        "timestamp",
        (datetime.date, datetime.time, datetime.timedelta),
        frozenset(),
    ),
    ContainerAdapter(
        "numeric_array",
        (array.array,),
        _ITEM_WRITES
        | _SEQUENCE_REPEAT
        | frozenset(
            {
                "append",
                "extend",
                "insert",
                "pop",
                "remove",
                "reverse",
                "byteswap",
                "frombytes",
                "fromfile",
                "fromlist",
                "fromunicode",
            }
        ),
    ),
    ContainerAdapter(
        "ndarray",
        (np.ndarray,),
        _INPLACE_NUMERIC
        | frozenset(
            {
                "__setitem__",
                "fill",
                "sort",
                "put",
                "partition",
                "resize",
                "setfield",
                "setflags",
                "byteswap",
                "itemset",
            }
        ),
    ),
    ContainerAdapter(
        "byte_buffer",
        (bytearray,),
        _ITEM_WRITES
        | _SEQUENCE_REPEAT
        | frozenset(
            {"append", "extend", "insert", "pop", "remove", "reverse", "clear"}
        ),
    ),
    ContainerAdapter("byte_view", (memoryview,), frozenset({"__setitem__"})),
]

_classification_cache = LRUCache(maxsize=CLASSIFICATION_CACHE_SIZE)


def adapter_for(value: Any) -> Optional[ContainerAdapter]:
    """Return the adapter for value's category, or None if it is not a container."""
    cls = type(value)
    adapter = _classification_cache.get(cls, _MISSING)
    if adapter is _MISSING:
        adapter = next((a for a in _ADAPTERS if issubclass(cls, a.types)), None)
        _classification_cache[cls] = adapter
    return adapter


def iter_adapters() -> Iterator[ContainerAdapter]:
    return iter(list(_ADAPTERS))


def register_container(
    category: str, types: Iterable[type], mutators: Iterable[str]
) -> ContainerAdapter:
    """
    Add a container category to the classification table.

    The new adapter takes precedence over the built-in ones, so registering a
    subclass of a known container overrides its category.

    Args:
        category: Name of the new category
        types: Runtime types belonging to the category
        mutators: Method names that change an instance in place

    Returns:
        The registered adapter
    """
    adapter = ContainerAdapter(category, tuple(types), frozenset(mutators))
    if not adapter.types:
        raise ValueError(f"container category '{category}' needs at least one type")
    _ADAPTERS.insert(0, adapter)
    _classification_cache.clear()
    logging.debug(
        f"Registered container category '{category}' for "
        f"{', '.join(t.__name__ for t in adapter.types)}"
    )
    return adapter


def _unregister_container(adapter: ContainerAdapter) -> None:
    """Remove a registered adapter (used by tests)."""
    _ADAPTERS.remove(adapter)
    _classification_cache.clear()
