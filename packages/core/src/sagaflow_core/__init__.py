"""sagaflow-core — compensating orchestration with durable, versioned state.

Depends only on pydantic. Durable persistence lives in
``sagaflow-persistence-sqlalchemy``.
"""

from __future__ import annotations

# ── Adapters ────────────────────────────────────────────────────
from .adapters import InMemoryExecutionStore, InMemoryIdempotencyStore, SystemClock

# ── Exceptions ──────────────────────────────────────────────────
from .exceptions import (
    AlreadyTerminalError,
    ConcurrencyConflictError,
    ConcurrencyError,
    DefinitionMismatchError,
    DefinitionNotFoundError,
    DomainError,
    EventMismatchError,
    ExecutionNotFoundError,
    InfrastructureError,
    InvalidStateError,
    InvariantViolationError,
    NotFoundError,
    OrchestrationConfigurationError,
    PersistenceError,
    ProtocolViolationError,
    SagaflowError,
    StepFailure,
    ValidationError,
)

# ── Instrumentation ─────────────────────────────────────────────
from .instrumentation import (
    HookRegistration,
    HookRegistry,
    InstrumentationHook,
    get_hook_registry,
    set_hook_registry,
)

# ── Orchestration ───────────────────────────────────────────────
from .orchestration import (
    TIMEOUT_EVENT,
    Continue,
    DeadlineSweeper,
    DefinitionRegistry,
    ExecutionRecord,
    ExecutionResult,
    ExecutionStatus,
    Failure,
    FailureKind,
    Jump,
    OrchestrationBootstrapResult,
    OrchestrationBuilder,
    OrchestrationContext,
    OrchestrationDefinition,
    Orchestrator,
    ResultKind,
    ResumeEvent,
    ResumeGateway,
    RetryPolicy,
    Step,
    StepOutcome,
    StepRunner,
    StepStatus,
    Suspend,
    Terminate,
    audited,
    bootstrap_orchestration,
    idempotent,
)

# ── Ports ───────────────────────────────────────────────────────
from .ports import IBackgroundWorker, IClock, IExecutionStore, IIdempotencyStore

__all__ = [
    # Adapters
    "InMemoryExecutionStore",
    "InMemoryIdempotencyStore",
    "SystemClock",
    # Exceptions
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
    # Instrumentation
    "HookRegistration",
    "HookRegistry",
    "InstrumentationHook",
    "get_hook_registry",
    "set_hook_registry",
    # Orchestration
    "TIMEOUT_EVENT",
    "Continue",
    "DeadlineSweeper",
    "DefinitionRegistry",
    "ExecutionRecord",
    "ExecutionResult",
    "ExecutionStatus",
    "Failure",
    "FailureKind",
    "Jump",
    "OrchestrationBootstrapResult",
    "OrchestrationBuilder",
    "OrchestrationContext",
    "OrchestrationDefinition",
    "Orchestrator",
    "ResultKind",
    "ResumeEvent",
    "ResumeGateway",
    "RetryPolicy",
    "Step",
    "StepOutcome",
    "StepRunner",
    "StepStatus",
    "Suspend",
    "Terminate",
    "audited",
    "bootstrap_orchestration",
    "idempotent",
    # Ports
    "IBackgroundWorker",
    "IClock",
    "IExecutionStore",
    "IIdempotencyStore",
]
