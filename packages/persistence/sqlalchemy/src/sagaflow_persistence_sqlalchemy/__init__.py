"""sagaflow-persistence-sqlalchemy — durable Execution Record storage."""

from __future__ import annotations

from .exceptions import MappingError, SQLAlchemyPersistenceError, StoreError
from .models import Base, ExecutionRecordModel
from .store import SQLAlchemyExecutionStore
from .types import JSONType

__all__ = [
    "Base",
    "ExecutionRecordModel",
    "JSONType",
    "MappingError",
    "SQLAlchemyExecutionStore",
    "SQLAlchemyPersistenceError",
    "StoreError",
]
