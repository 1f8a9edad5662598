"""Adapters shipped with sagaflow-core (system clock, in-memory stores)."""

from __future__ import annotations

from .clock import SystemClock
from .memory import InMemoryExecutionStore, InMemoryIdempotencyStore

__all__ = [
    "InMemoryExecutionStore",
    "InMemoryIdempotencyStore",
    "SystemClock",
]
