"""In-memory implementation of Execution Record persistence for testing."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from sagaflow_core.exceptions import ConcurrencyConflictError, ExecutionNotFoundError
from sagaflow_core.orchestration.record import ExecutionRecord, ExecutionStatus
from sagaflow_core.ports.execution_store import IExecutionStore

if TYPE_CHECKING:
    import builtins
    from collections.abc import Iterable
    from datetime import datetime


class InMemoryExecutionStore(IExecutionStore):
    """
    Dict-backed :class:`IExecutionStore` for unit / integration tests.

    Records are deep-copied on the way in and out, so callers never share
    state with the store. Each call yields to the event loop once before
    doing its (synchronous, therefore atomic) work, which lets concurrent
    tasks interleave the way they would against a real database.
    """

    def __init__(self) -> None:
        self._records: dict[str, ExecutionRecord] = {}

    async def load(self, execution_id: str) -> ExecutionRecord:
        await asyncio.sleep(0)
        record = self._records.get(execution_id)
        if record is None:
            raise ExecutionNotFoundError(execution_id)
        return record.snapshot()

    async def save(self, record: ExecutionRecord, expected_version: int) -> int:
        await asyncio.sleep(0)
        stored = self._records.get(record.id)
        actual = stored.version if stored is not None else 0
        if actual != expected_version:
            raise ConcurrencyConflictError(
                record.id,
                expected_version,
                actual if stored is not None else None,
            )
        new_version = expected_version + 1
        self._records[record.id] = record.model_copy(
            deep=True, update={"version": new_version}
        )
        return new_version

    async def find_expired_waiting(
        self, now: datetime, limit: int = 10
    ) -> builtins.list[ExecutionRecord]:
        await asyncio.sleep(0)
        expired = [
            record
            for record in self._records.values()
            if record.status == ExecutionStatus.WAITING
            and record.wait is not None
            and record.wait.is_expired(now)
        ]
        expired.sort(key=lambda r: r.wait.deadline if r.wait else now)
        return [record.snapshot() for record in expired[:limit]]

    async def find_by_status(
        self,
        statuses: Iterable[ExecutionStatus],
        *,
        updated_before: datetime | None = None,
        limit: int = 10,
    ) -> builtins.list[ExecutionRecord]:
        await asyncio.sleep(0)
        wanted = set(statuses)
        matching = [
            record
            for record in self._records.values()
            if record.status in wanted
            and (updated_before is None or record.updated_at <= updated_before)
        ]
        matching.sort(key=lambda r: r.updated_at)
        return [record.snapshot() for record in matching[:limit]]

    # ── Test helpers ─────────────────────────────────────────────────

    def all_records(self) -> builtins.list[ExecutionRecord]:
        """Return copies of all stored records (testing convenience)."""
        return [record.snapshot() for record in self._records.values()]

    def clear(self) -> None:
        """Wipe the store."""
        self._records.clear()
