"""Domain and infrastructure exceptions for sagaflow-core."""

from __future__ import annotations


class SagaflowError(Exception):
    """Root exception for the entire sagaflow toolkit."""


class DomainError(SagaflowError):
    """Base class for all domain-related errors."""


class NotFoundError(DomainError):
    """Raised when an orchestration resource is not found."""


class InvariantViolationError(DomainError):
    """Raised when an Execution Record invariant would be broken."""


class ValidationError(SagaflowError):
    """Raised when a definition or argument fails validation.

    Carries structured errors: ``{field: [messages]}``.
    """

    def __init__(self, errors: dict[str, list[str]] | str | None = None) -> None:
        if isinstance(errors, str):
            self.errors: dict[str, list[str]] = {"__root__": [errors]}
        elif errors is None:
            self.errors = {}
        else:
            self.errors = errors
        super().__init__(str(self.errors))


# ── Step failures ────────────────────────────────────────────────────


class StepFailure(SagaflowError):
    """Raised by a step action to report a domain-level problem.

    ``retryable`` tells the Step Runner whether the step's RetryPolicy may
    re-invoke the action. Step failures never cross the orchestration
    boundary; once retries are exhausted they drive compensation.
    """

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        self.retryable = retryable
        super().__init__(message)


# ── Concurrency ──────────────────────────────────────────────────────


class ConcurrencyError(SagaflowError):
    """Base class for all concurrency-related conflicts."""


class ConcurrencyConflictError(ConcurrencyError):
    """Raised when a versioned save finds a different stored version.

    Always surfaced to the caller; the core never retries it. The caller
    decides whether to reload and retry.
    """

    def __init__(
        self,
        execution_id: str,
        expected_version: int,
        actual_version: int | None = None,
    ) -> None:
        self.execution_id = execution_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        msg = (
            f"Execution {execution_id!r} version conflict: "
            f"expected {expected_version}"
        )
        if actual_version is not None:
            msg += f", found {actual_version}"
        super().__init__(msg)


# ── Protocol violations (Resume Gateway / operator API misuse) ──────


class ProtocolViolationError(DomainError):
    """Base class for misuse of resume / cancel / recover."""


class ExecutionNotFoundError(ProtocolViolationError, NotFoundError):
    """Raised when no Execution Record exists for an execution ID."""

    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Execution with id={execution_id!r} not found")


class InvalidStateError(ProtocolViolationError):
    """Raised when a record is in the wrong status for the requested operation."""

    def __init__(self, execution_id: str, status: str, operation: str) -> None:
        self.execution_id = execution_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} execution {execution_id!r} in status {status}"
        )


class AlreadyTerminalError(InvalidStateError):
    """Raised when an operation targets a record in a terminal status."""


class EventMismatchError(ProtocolViolationError):
    """Raised when a resume event does not match the record's wait condition."""

    def __init__(self, execution_id: str, expected: str, received: str) -> None:
        self.execution_id = execution_id
        self.expected = expected
        self.received = received
        super().__init__(
            f"Execution {execution_id!r} is waiting for {expected!r}, "
            f"received {received!r}"
        )


# ── Definitions ──────────────────────────────────────────────────────


class OrchestrationConfigurationError(ValidationError):
    """Raised when an orchestration definition or builder call is invalid.

    E.g. no steps, duplicate step names, a context type that does not
    derive from ``OrchestrationContext``.
    """


class DefinitionNotFoundError(NotFoundError):
    """Raised when no definition is registered under a name."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Orchestration definition {name!r} is not registered")


class DefinitionMismatchError(DomainError):
    """Raised when a persisted record's steps differ from its registered definition."""


# ── Infrastructure ───────────────────────────────────────────────────


class InfrastructureError(SagaflowError):
    """Base class for all infrastructure-related errors."""


class PersistenceError(InfrastructureError):
    """Base class for all persistence-related errors."""


__all__ = [
    "AlreadyTerminalError",
    "ConcurrencyConflictError",
    "ConcurrencyError",
    "DefinitionMismatchError",
    "DefinitionNotFoundError",
    "DomainError",
    "EventMismatchError",
    "ExecutionNotFoundError",
    "InfrastructureError",
    "InvalidStateError",
    "InvariantViolationError",
    "NotFoundError",
    "OrchestrationConfigurationError",
    "PersistenceError",
    "ProtocolViolationError",
    "SagaflowError",
    "StepFailure",
    "ValidationError",
]
