"""
Core Primitives
===============

Building blocks shared by every layer of dirtytrack: the exception hierarchy,
the change set that records dirty paths for one tracker, and the rules that
turn raw keys into dotted path segments.

Path format:
    Segments are joined with "." from the shallowest key to the deepest one.
    String keys render as-is and numeric keys via str(), so the list index 5
    and the dict key "5" produce the same segment. Any other hashable key is
    opaque and renders as "<description>". A literal string key that starts
    with "<" or "\\" is escaped with a leading backslash, which keeps it from
    ever colliding with an opaque key.

Example:
    >>> render_key("name"), render_key(3), render_key(("x", 1))
    ('name', '3', "<('x', 1)>")
    >>> render_key("<tuple>")
    '\\\\<tuple>'
"""

from enum import Enum
from typing import Any, Hashable, Iterable, Iterator, List, Optional

# Sentinel for "no value present"
MISSING = object()


# ============================================================================
# EXCEPTIONS
# ============================================================================


class TrackingError(Exception):
    """Base class for every error raised by the tracking layer."""

    pass


class NotTrackableError(TrackingError, TypeError):
    """Raised when a value cannot be turned into a tracker root.

    Immutable values (scalars, tuples, frozen dataclasses, mapping proxies)
    and values that already carry tracker internals are rejected before any
    wrapping happens.
    """

    pass


class NotTrackedError(TrackingError, LookupError):
    """Raised when tracker state is requested for something that is not a root."""

    pass


# ============================================================================
# CHANGE SET
# ============================================================================


class ChangeSet:
    """
    Ordered collection of distinct dirty paths belonging to one tracker.

    Change sets hash and compare by identity so they can key the subscriber
    registry and the per-node ownership maps. Adding a path that is already
    present keeps its original position.
    """

    __slots__ = ("_paths", "name", "__weakref__")

    def __init__(self, name: Optional[str] = None):
        self._paths = {}
        self.name = name

    def add(self, path: str) -> bool:
        """Record a path. Returns True when the path was not present before."""
        if path in self._paths:
            return False
        self._paths[path] = None
        return True

    def update(self, paths: Iterable[str]) -> None:
        for path in paths:
            self.add(path)

    def clear(self) -> None:
        self._paths.clear()

    def paths(self) -> List[str]:
        """Snapshot of the recorded paths in insertion order."""
        return list(self._paths)

    def __contains__(self, path: object) -> bool:
        return path in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._paths))

    def __repr__(self) -> str:
        label = f" {self.name!r}" if self.name else ""
        return f"ChangeSet{label}({list(self._paths)})"


# ============================================================================
# PATH RENDERING
# ============================================================================

_ESCAPED_PREFIXES = ("<", "\\")


def render_key(key: Hashable) -> str:
    """Render one raw key as a path segment."""
    if isinstance(key, str):
        if key.startswith(_ESCAPED_PREFIXES):
            return "\\" + key
        return key
    if isinstance(key, (int, float)) and not isinstance(key, bool):
        return str(key)
    return f"<{describe_key(key)}>"


def describe_key(key: Any) -> str:
    """Textual description of an opaque key."""
    if isinstance(key, Enum):
        return f"{type(key).__name__}.{key.name}"
    return repr(key)


def join_path(segments: Iterable[str]) -> str:
    return ".".join(segments)
