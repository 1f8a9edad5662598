from .execution_store import InMemoryExecutionStore
from .idempotency import InMemoryIdempotencyStore

__all__ = [
    "InMemoryExecutionStore",
    "InMemoryIdempotencyStore",
]
