"""
SQLAlchemy implementation of Execution Record persistence.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from sagaflow_core.exceptions import ConcurrencyConflictError, ExecutionNotFoundError
from sagaflow_core.orchestration.record import ExecutionRecord, ExecutionStatus
from sagaflow_core.ports.execution_store import IExecutionStore

from .exceptions import MappingError, StoreError
from .models import ExecutionRecordModel

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger("sagaflow.persistence")


def _utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SQLAlchemyExecutionStore(IExecutionStore):
    """
    SQLAlchemy-backed :class:`IExecutionStore`.

    Each call runs in its own session and transaction. ``save`` is a
    compare-and-swap on the ``version`` column:

    * ``expected_version == 0`` inserts; a duplicate primary key means
      another writer created the record first.
    * otherwise ``UPDATE … WHERE id = :id AND version = :expected``; zero
      affected rows means the stored version moved on.

    Both cases raise :class:`ConcurrencyConflictError`. Other driver errors
    are wrapped in :class:`StoreError`.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    # -- mapping -------------------------------------------------------------

    @staticmethod
    def to_values(record: ExecutionRecord, version: int) -> dict[str, Any]:
        """Column values for *record* stored at *version*."""
        state = record.model_dump(mode="json")
        state["version"] = version
        return {
            "orchestration_name": record.orchestration_name,
            "status": record.status,
            "current_index": record.current_index,
            "wait_event_type": record.wait.event_type if record.wait else None,
            "wait_deadline": _utc(record.wait.deadline) if record.wait else None,
            "cancel_requested": record.cancel_requested,
            "state": state,
            "created_at": _utc(record.created_at),
            "updated_at": _utc(record.updated_at),
            "version": version,
        }

    @staticmethod
    def from_model(model: ExecutionRecordModel) -> ExecutionRecord:
        """Rebuild the record from its JSON state; the column version wins."""
        try:
            record = ExecutionRecord.model_validate(model.state)
        except PydanticValidationError as exc:
            raise MappingError(
                f"Stored execution {model.id!r} cannot be mapped: {exc}"
            ) from exc
        record.version = model.version
        return record

    # -- IExecutionStore -------------------------------------------------------

    async def load(self, execution_id: str) -> ExecutionRecord:
        try:
            async with self._session_factory() as session:
                model = await session.get(ExecutionRecordModel, execution_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to load execution {execution_id!r}") from exc
        if model is None:
            raise ExecutionNotFoundError(execution_id)
        return self.from_model(model)

    async def save(self, record: ExecutionRecord, expected_version: int) -> int:
        new_version = expected_version + 1
        values = self.to_values(record, new_version)
        try:
            async with self._session_factory() as session, session.begin():
                if expected_version == 0:
                    await self._insert(session, record, values)
                else:
                    await self._compare_and_swap(
                        session, record, expected_version, values
                    )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to save execution {record.id!r}") from exc
        logger.debug(
            "Saved execution %s at version %d (%s)",
            record.id,
            new_version,
            record.status.value,
        )
        return new_version

    async def find_expired_waiting(
        self, now: datetime, limit: int = 10
    ) -> list[ExecutionRecord]:
        stmt = (
            select(ExecutionRecordModel)
            .where(
                ExecutionRecordModel.status == ExecutionStatus.WAITING,
                ExecutionRecordModel.wait_deadline.is_not(None),
                ExecutionRecordModel.wait_deadline <= _utc(now),
            )
            .order_by(ExecutionRecordModel.wait_deadline)
            .limit(limit)
        )
        return await self._select(stmt)

    async def find_by_status(
        self,
        statuses: Iterable[ExecutionStatus],
        *,
        updated_before: datetime | None = None,
        limit: int = 10,
    ) -> list[ExecutionRecord]:
        stmt = select(ExecutionRecordModel).where(
            ExecutionRecordModel.status.in_(list(statuses))
        )
        if updated_before is not None:
            stmt = stmt.where(ExecutionRecordModel.updated_at <= _utc(updated_before))
        stmt = stmt.order_by(ExecutionRecordModel.updated_at).limit(limit)
        return await self._select(stmt)

    # -- helpers ---------------------------------------------------------------

    @staticmethod
    async def _insert(
        session: AsyncSession, record: ExecutionRecord, values: dict[str, Any]
    ) -> None:
        session.add(ExecutionRecordModel(id=record.id, **values))
        try:
            await session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflictError(record.id, 0) from exc

    @staticmethod
    async def _compare_and_swap(
        session: AsyncSession,
        record: ExecutionRecord,
        expected_version: int,
        values: dict[str, Any],
    ) -> None:
        stmt = (
            update(ExecutionRecordModel)
            .where(
                ExecutionRecordModel.id == record.id,
                ExecutionRecordModel.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:  # type: ignore[attr-defined]
            actual = await session.scalar(
                select(ExecutionRecordModel.version).where(
                    ExecutionRecordModel.id == record.id
                )
            )
            raise ConcurrencyConflictError(record.id, expected_version, actual)

    async def _select(self, stmt: Any) -> list[ExecutionRecord]:
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                models = list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StoreError("Failed to query executions") from exc
        return [self.from_model(model) for model in models]
