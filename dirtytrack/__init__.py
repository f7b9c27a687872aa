"""
dirtytrack - Transparent Dirty-Path Tracking

Wrap nested data in handles that behave like the original structure while
recording which dotted paths changed since the last reset, and subscribe to
those changes through push callbacks or async pull iteration.
"""

from .base import (
    ChangeSet,
    NotTrackableError,
    NotTrackedError,
    TrackingError,
    join_path,
    render_key,
)
from .graph import Node, NodeKind, TrackedHandle
from .model import ModelInternals, create_model, get_model_internals, is_model
from .observable import (
    ObservableInternals,
    create_observable,
    get_observable_internals,
    is_observable,
)
from .proxy import (
    TrackedContainer,
    TrackedDict,
    TrackedList,
    TrackedObject,
    get_node,
    is_tracked,
    unwrap,
    wrap,
)
from .util.containers import ContainerAdapter, adapter_for, register_container
from .watch import WatchHandle, Watcher, watch

__all__ = [
    # Trackers
    "create_observable",
    "get_observable_internals",
    "is_observable",
    "ObservableInternals",
    "create_model",
    "get_model_internals",
    "is_model",
    "ModelInternals",
    # Subscriptions
    "watch",
    "WatchHandle",
    "Watcher",
    # Handles
    "wrap",
    "unwrap",
    "is_tracked",
    "get_node",
    "TrackedHandle",
    "TrackedDict",
    "TrackedList",
    "TrackedObject",
    "TrackedContainer",
    "Node",
    "NodeKind",
    # Containers
    "ContainerAdapter",
    "adapter_for",
    "register_container",
    # Primitives
    "ChangeSet",
    "render_key",
    "join_path",
    # Exceptions
    "TrackingError",
    "NotTrackableError",
    "NotTrackedError",
]
