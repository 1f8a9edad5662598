"""Infrastructure port protocols for sagaflow-core."""

from __future__ import annotations

from .background_worker import IBackgroundWorker
from .clock import IClock
from .execution_store import IExecutionStore
from .idempotency import IIdempotencyStore

__all__ = [
    "IBackgroundWorker",
    "IClock",
    "IExecutionStore",
    "IIdempotencyStore",
]
