"""
Test utilities for dirtytrack.

This package contains shared helpers for asserting dirty paths and for
checking that graph nodes are reclaimed.
"""

from .memory_utils import (
    assert_collected,
    assert_no_node_leak,
    live_nodes,
)
from .path_utils import assert_exact_paths, dirty_paths

__all__ = [
    "assert_collected",
    "assert_exact_paths",
    "assert_no_node_leak",
    "dirty_paths",
    "live_nodes",
]
