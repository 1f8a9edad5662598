"""IExecutionStore — persistence port for Execution Records."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from ..orchestration.record import ExecutionRecord, ExecutionStatus


@runtime_checkable
class IExecutionStore(Protocol):
    """
    Port for versioned Execution Record persistence.

    Every call is atomic. ``save`` is a compare-and-swap on ``version``:
    it succeeds only when the stored version equals *expected_version*
    (0 for a record that has never been stored) and returns the new version.

    Infrastructure packages (SQLAlchemy, …) provide the durable
    implementation. :class:`InMemoryExecutionStore` is available from
    :mod:`sagaflow_core.adapters.memory` for testing.
    """

    async def load(self, execution_id: str) -> ExecutionRecord:
        """Return an independent copy of the stored record.

        Raises:
            ExecutionNotFoundError: If no record exists for *execution_id*.
        """
        ...

    async def save(self, record: ExecutionRecord, expected_version: int) -> int:
        """Store *record* if the stored version equals *expected_version*.

        Returns:
            The new version (``expected_version + 1``).

        Raises:
            ConcurrencyConflictError: If another writer got there first.
        """
        ...

    async def find_expired_waiting(
        self, now: datetime, limit: int = 10
    ) -> list[ExecutionRecord]:
        """Return WAITING records whose deadline is at or before *now*."""
        ...

    async def find_by_status(
        self,
        statuses: Iterable[ExecutionStatus],
        *,
        updated_before: datetime | None = None,
        limit: int = 10,
    ) -> list[ExecutionRecord]:
        """Return records in any of *statuses*, oldest update first."""
        ...
