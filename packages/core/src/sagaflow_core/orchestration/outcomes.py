"""StepOutcome — the tagged union a forward action returns.

The Orchestrator evaluates outcomes with an exhaustive ``match``::

    match outcome:
        case Continue(context=ctx): ...
        case Suspend(context=ctx, event_type=event_type): ...
        case Jump(context=ctx, target=target): ...
        case Terminate(context=ctx, reason=reason): ...
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Generic, TypeVar, Union

from .context import OrchestrationContext

C = TypeVar("C", bound=OrchestrationContext)


@dataclass(frozen=True)
class Continue(Generic[C]):
    """Proceed to the next step (or complete, after the last one)."""

    context: C


@dataclass(frozen=True)
class Suspend(Generic[C]):
    """Pause until an external event of ``event_type`` arrives.

    ``deadline`` is an absolute time, a delay relative to the orchestrator's
    clock, or ``None`` for no deadline.
    """

    context: C
    event_type: str
    deadline: datetime | timedelta | None = None


@dataclass(frozen=True)
class Jump(Generic[C]):
    """Continue at the step named ``target`` (forward or backward)."""

    context: C
    target: str


@dataclass(frozen=True)
class Terminate(Generic[C]):
    """End the orchestration successfully without running remaining steps."""

    context: C
    reason: str = ""


StepOutcome = Union[Continue[C], Suspend[C], Jump[C], Terminate[C]]

OUTCOME_TYPES: tuple[type, ...] = (Continue, Suspend, Jump, Terminate)
