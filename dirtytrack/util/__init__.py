"""
Utility modules for dirtytrack.
"""

from .containers import (
    CLASSIFICATION_CACHE_SIZE,
    ContainerAdapter,
    adapter_for,
    iter_adapters,
    register_container,
)

__all__ = [
    "CLASSIFICATION_CACHE_SIZE",
    "ContainerAdapter",
    "adapter_for",
    "iter_adapters",
    "register_container",
]
