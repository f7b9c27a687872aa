"""
Change Notifications
====================

Subscribers are registered per change set. After a mutation has been fully
propagated, every change set that received paths is handed to
notify_watchers(), which delivers a snapshot of all paths currently recorded
in it (the cumulative dirty state since the last reset, not a diff).

Two ways to listen:

Push:
    >>> handle = watch(tracked, lambda paths: print(paths))
    >>> tracked["a"] = 1
    ['a']
    >>> handle.unsubscribe()

Pull:
    >>> async def consume():
    ...     async with watch(tracked) as watcher:
    ...         async for paths in watcher:
    ...             ...

Delivery is synchronous: a write returns only after every push callback has
run. Callbacks may write back into tracked data, which starts a separate
propagation and notification cycle.
"""

import asyncio
import logging
import weakref
from typing import Any, Callable, List, Optional

from dirtytrack.base import ChangeSet, NotTrackedError
from dirtytrack.graph import node_of

Callback = Callable[[List[str]], Any]

_subscribers: "weakref.WeakKeyDictionary[ChangeSet, List[Callback]]" = (
    weakref.WeakKeyDictionary()
)


def _reset_subscribers() -> None:
    """Drop every subscription (used by tests)."""
    _subscribers.clear()


def notify_watchers(change_set: ChangeSet) -> None:
    """Deliver the current paths of change_set to its subscribers."""
    callbacks = _subscribers.get(change_set)
    if not callbacks:
        return
    paths = change_set.paths()
    # Callbacks registered when delivery began are all called
    for callback in list(callbacks):
        callback(list(paths))


def subscribe(change_set: ChangeSet, callback: Callback) -> Callable[[], None]:
    """Register callback on change_set and return a function that removes it."""
    _subscribers.setdefault(change_set, []).append(callback)
    change_set_ref = weakref.ref(change_set)

    def unsubscribe() -> None:
        current = change_set_ref()
        if current is None:
            return
        callbacks = _subscribers.get(current)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)
            if not callbacks:
                del _subscribers[current]

    return unsubscribe


def subscriber_count(change_set: ChangeSet) -> int:
    return len(_subscribers.get(change_set, ()))


def change_set_of(tracked: Any) -> ChangeSet:
    """Return the change set of a tracker root handle."""
    node = node_of(tracked)
    if node is None or node.internals is None:
        raise NotTrackedError(
            f"{type(tracked).__name__} object is not a tracker root; "
            f"create it with create_observable() or create_model()"
        )
    return node.root_change_set


class WatchHandle:
    """
    Push subscription returned by watch(tracked, callback).

    unsubscribe() is idempotent.
    """

    __slots__ = ("_unsubscribe", "callback", "active")

    def __init__(self, change_set: ChangeSet, callback: Callback):
        self.callback = callback
        self._unsubscribe = subscribe(change_set, callback)
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._unsubscribe()

    def __enter__(self) -> "WatchHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.unsubscribe()

    def __repr__(self):
        state = "active" if self.active else "inactive"
        return f"WatchHandle({self.callback!r}, {state})"


class Watcher:
    """
    Pull subscription returned by watch(tracked).

    get_next() returns the pending batch at once, or suspends until the next
    notification. Only the most recent undelivered batch is kept. Since each
    batch already holds every dirty path, dropping an older one loses nothing;
    coalesce=False is accepted but keeps the same single slot.

    cancel() unregisters the watcher, resolves a suspended get_next() with
    None and ends async iteration. It is synchronous and idempotent.
    """

    def __init__(self, change_set: ChangeSet, coalesce: bool = True):
        self.coalesce = coalesce
        self._pending: Optional[List[str]] = None
        self._waiter: Optional[asyncio.Future] = None
        self._closed = False
        self._unsubscribe = subscribe(change_set, self._deliver)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def _deliver(self, paths: List[str]) -> None:
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            self._waiter = None
            waiter.set_result(paths)
        else:
            self._pending = paths

    async def get_next(self) -> Optional[List[str]]:
        """Return the next batch of dirty paths, or None once cancelled."""
        if self._closed:
            return None
        if self._pending is not None:
            batch, self._pending = self._pending, None
            return batch
        if self._waiter is not None and not self._waiter.done():
            raise RuntimeError("get_next() is already waiting for a batch")
        self._waiter = asyncio.get_running_loop().create_future()
        return await self._waiter

    def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pending = None
        self._unsubscribe()
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)
        logging.debug(f"Cancelled {self!r}")

    unsubscribe = cancel

    def __aiter__(self) -> "Watcher":
        return self

    async def __anext__(self) -> List[str]:
        batch = await self.get_next()
        if batch is None:
            raise StopAsyncIteration
        return batch

    async def aclose(self) -> None:
        self.cancel()

    def __enter__(self) -> "Watcher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()

    async def __aenter__(self) -> "Watcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cancel()

    def __repr__(self):
        state = "closed" if self._closed else "open"
        return f"Watcher(coalesce={self.coalesce}, {state})"


def watch(tracked: Any, callback: Optional[Callback] = None, *, coalesce: bool = True):
    """
    Subscribe to the dirty paths of a tracker.

    Args:
        tracked: A handle returned by create_observable() or create_model()
        callback: Called with the list of dirty paths after each mutation.
            When omitted a pull-based Watcher is returned instead.
        coalesce: Pull mode only; see Watcher

    Returns:
        WatchHandle in push mode, Watcher in pull mode

    Raises:
        NotTrackedError: If tracked is not a tracker root
    """
    change_set = change_set_of(tracked)
    if callback is not None:
        return WatchHandle(change_set, callback)
    return Watcher(change_set, coalesce=coalesce)
