"""In-memory IIdempotencyStore for testing and single-process use."""

from __future__ import annotations

import copy
from typing import Any

from sagaflow_core.ports.idempotency import IIdempotencyStore


class InMemoryIdempotencyStore(IIdempotencyStore):
    """Dict-backed idempotency store. ``ttl_seconds`` is ignored."""

    def __init__(self) -> None:
        self._results: dict[str, dict[str, Any]] = {}

    async def get(self, key: str) -> dict[str, Any] | None:
        result = self._results.get(key)
        return copy.deepcopy(result) if result is not None else None

    async def put(
        self, key: str, result: dict[str, Any], *, ttl_seconds: int | None = None
    ) -> None:
        self._results[key] = copy.deepcopy(result)

    def __len__(self) -> int:
        return len(self._results)

    def clear(self) -> None:
        """Wipe the store."""
        self._results.clear()
