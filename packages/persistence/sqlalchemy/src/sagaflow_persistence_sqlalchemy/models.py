"""
SQLAlchemy models for Execution Record persistence.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from sagaflow_core.orchestration.record import ExecutionStatus

from .types.json import JSONType


class Base(DeclarativeBase):
    """Declarative base for all models in this package."""


class ExecutionRecordModel(Base):
    """
    Persists one Execution Record.

    ``state`` holds the complete record as JSON and is the source of truth
    on load. The remaining columns mirror the fields the store queries on
    (status, wait deadline, last update) plus ``version``, which every
    update compares and swaps.
    """

    __tablename__ = "orchestration_executions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    orchestration_name: Mapped[str] = mapped_column(String(255), index=True)
    status: Mapped[ExecutionStatus] = mapped_column(
        Enum(ExecutionStatus, native_enum=False, length=32), index=True
    )
    current_index: Mapped[int] = mapped_column(Integer, default=0)
    wait_event_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    wait_deadline: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False)
    state: Mapped[dict[str, Any]] = mapped_column(JSONType)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    version: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (
        Index("ix_orchestration_executions_wait", "status", "wait_deadline"),
    )
