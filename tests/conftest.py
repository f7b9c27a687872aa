"""
Shared pytest fixtures and configuration for dirtytrack tests.
"""

import gc

import pytest

from dirtytrack.watch import _reset_subscribers


@pytest.fixture(autouse=True)
def reset_subscribers():
    """Drop subscriptions left behind by a previous test."""
    yield
    _reset_subscribers()
    gc.collect()


@pytest.fixture
def recorder():
    """Callback recorder: returns (callback, calls) where calls lists every batch."""

    def factory():
        calls = []

        def callback(paths):
            calls.append(paths)

        return callback, calls

    return factory
