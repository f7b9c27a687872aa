"""
Memory testing utilities for the tracking graph.

These helpers verify that nodes and handles are reclaimed once nothing
references them, which is what the weak parent edges are for.

Examples:
    Collection of a dropped tracker:

        >>> state = create_observable({"a": {}})
        >>> ref = weakref.ref(get_node(state))
        >>> del state
        >>> assert_collected(ref)

    Leak detection around an operation:

        >>> def operation():
        ...     state = create_observable({"items": [{"x": 1}]})
        ...     state["items"][0]["x"] = 2
        >>> assert_no_node_leak(operation)
"""

import gc
from typing import Callable, Optional

from dirtytrack.graph import registry_size


def assert_collected(ref, description: str = "Object should be cleaned up") -> None:
    """Assert that the referent of a weak reference gets garbage collected.

    Args:
        ref: weakref.ref to the object under test; the caller must have
            dropped every strong reference already
        description: Custom description for the assertion failure
    """
    gc.collect()
    assert ref() is None, f"{description}: object was not cleaned up"


def live_nodes() -> int:
    """Number of graph nodes still registered after a full collection."""
    gc.collect()
    return registry_size()


def assert_no_node_leak(
    operation: Callable[[], None],
    tolerance: int = 0,
    description: Optional[str] = None,
) -> None:
    """Assert that an operation leaves no graph nodes behind.

    Args:
        operation: Function that creates and drops trackers
        tolerance: Allowed variance in node count
        description: Custom description for assertion failures
    """
    if description is None:
        description = "Operation should not leak graph nodes"

    initial = live_nodes()
    operation()
    final = live_nodes()

    assert (
        abs(final - initial) <= tolerance
    ), f"{description}: node count changed from {initial} to {final}"
