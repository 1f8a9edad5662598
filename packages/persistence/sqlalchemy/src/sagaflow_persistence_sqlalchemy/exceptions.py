"""Exceptions for the SQLAlchemy persistence layer."""

from __future__ import annotations

from sagaflow_core.exceptions import ConcurrencyConflictError, PersistenceError


class SQLAlchemyPersistenceError(PersistenceError):
    """Base exception for all SQLAlchemy-specific persistence errors."""


class StoreError(SQLAlchemyPersistenceError):
    """Raised when an execution store operation fails in the driver."""


class MappingError(SQLAlchemyPersistenceError):
    """Raised when a stored row cannot be mapped back to an Execution Record."""


__all__: list[str] = [
    "ConcurrencyConflictError",
    "MappingError",
    "SQLAlchemyPersistenceError",
    "StoreError",
]
