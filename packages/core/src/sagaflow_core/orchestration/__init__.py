"""Compensating orchestration — steps, execution records, runner, orchestrator."""

from .bootstrap import OrchestrationBootstrapResult, bootstrap_orchestration
from .builder import OrchestrationBuilder
from .context import (
    TIMEOUT_EVENT,
    OrchestrationContext,
    ResumeEvent,
    consume_event,
    merge_event,
)
from .decorators import audited, idempotent
from .gateway import ResumeGateway
from .orchestrator import Orchestrator
from .outcomes import Continue, Jump, StepOutcome, Suspend, Terminate
from .record import (
    TERMINAL_STATUSES,
    ExecutionRecord,
    ExecutionStatus,
    Failure,
    FailureKind,
    StepSlot,
    StepStatus,
    TransitionKind,
    TransitionRecord,
    WaitCondition,
)
from .registry import DefinitionRegistry
from .results import ExecutionResult, ResultKind
from .retry import BackoffKind, RetryPolicy
from .runner import (
    CompensationFailed,
    CompensationSucceeded,
    StepFailed,
    StepRunner,
    StepSucceeded,
)
from .steps import OrchestrationDefinition, Step
from .worker import DeadlineSweeper

__all__ = [
    # Definition
    "Step",
    "OrchestrationDefinition",
    "OrchestrationBuilder",
    "DefinitionRegistry",
    "RetryPolicy",
    "BackoffKind",
    # Context & outcomes
    "OrchestrationContext",
    "ResumeEvent",
    "TIMEOUT_EVENT",
    "consume_event",
    "merge_event",
    "StepOutcome",
    "Continue",
    "Suspend",
    "Jump",
    "Terminate",
    # Record
    "ExecutionRecord",
    "ExecutionStatus",
    "TERMINAL_STATUSES",
    "StepSlot",
    "StepStatus",
    "WaitCondition",
    "Failure",
    "FailureKind",
    "TransitionKind",
    "TransitionRecord",
    # Runner
    "StepRunner",
    "StepSucceeded",
    "StepFailed",
    "CompensationSucceeded",
    "CompensationFailed",
    # Orchestrator & gateway
    "Orchestrator",
    "ResumeGateway",
    "ExecutionResult",
    "ResultKind",
    # Wrappers
    "audited",
    "idempotent",
    # Worker
    "DeadlineSweeper",
    # Bootstrap
    "bootstrap_orchestration",
    "OrchestrationBootstrapResult",
]
