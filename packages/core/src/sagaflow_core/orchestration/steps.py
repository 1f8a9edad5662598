"""Step and OrchestrationDefinition — immutable orchestration building blocks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Generic, TypeVar, Union

from sagaflow_core.exceptions import OrchestrationConfigurationError

from .context import OrchestrationContext

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from .outcomes import StepOutcome
    from .retry import RetryPolicy

C = TypeVar("C", bound=OrchestrationContext)

if TYPE_CHECKING:
    ForwardAction = Callable[[C], Union["StepOutcome[C]", Awaitable["StepOutcome[C]"]]]
    CompensatingAction = Callable[[C], Union[C, None, Awaitable[Union[C, None]]]]
else:
    ForwardAction = Any
    CompensatingAction = Any


@dataclass(frozen=True)
class Step(Generic[C]):
    """A named forward / compensating action pair.

    Attributes:
        name: Unique within one definition.
        forward: ``context -> StepOutcome`` (sync or async). Raise
            :class:`~sagaflow_core.exceptions.StepFailure` to report a
            domain problem.
        compensate: ``context -> None | context`` (sync or async). Must be
            idempotent and safe to call whether or not ``forward`` ran.
            ``None`` means there is nothing to undo.
        timeout: Deadline for a single invocation of either action.
        retry: Policy for forward retries only.
        compensate_retry: Policy for compensation retries; when unset the
            runner's compensation default applies, whatever ``retry`` says.
    """

    name: str
    forward: ForwardAction
    compensate: CompensatingAction | None = None
    timeout: timedelta | None = None
    retry: RetryPolicy | None = None
    description: str = ""
    compensate_retry: RetryPolicy | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise OrchestrationConfigurationError("Step name must not be empty.")
        if not callable(self.forward):
            raise OrchestrationConfigurationError(
                f"Step {self.name!r}: forward action must be callable."
            )
        if self.compensate is not None and not callable(self.compensate):
            raise OrchestrationConfigurationError(
                f"Step {self.name!r}: compensating action must be callable."
            )
        if self.timeout is not None and self.timeout <= timedelta(0):
            raise OrchestrationConfigurationError(
                f"Step {self.name!r}: timeout must be positive."
            )


@dataclass(frozen=True)
class OrchestrationDefinition(Generic[C]):
    """A named, ordered list of steps plus the context type they share.

    Static and read-only once built; safe to share between executions.
    """

    name: str
    steps: tuple[Step[C], ...]
    context_type: type[C]
    _index: dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.name:
            raise OrchestrationConfigurationError("Orchestration name must not be empty.")
        if not self.steps:
            raise OrchestrationConfigurationError(
                f"Orchestration {self.name!r} has no steps."
            )
        if not (
            isinstance(self.context_type, type)
            and issubclass(self.context_type, OrchestrationContext)
        ):
            raise OrchestrationConfigurationError(
                f"Orchestration {self.name!r}: context_type must derive from "
                "OrchestrationContext."
            )
        index: dict[str, int] = {}
        for position, step in enumerate(self.steps):
            if step.name in index:
                raise OrchestrationConfigurationError(
                    f"Orchestration {self.name!r}: duplicate step name {step.name!r}."
                )
            index[step.name] = position
        object.__setattr__(self, "steps", tuple(self.steps))
        object.__setattr__(self, "_index", index)

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]

    def index_of(self, step_name: str) -> int | None:
        """Return the position of *step_name*, or ``None`` if unknown."""
        return self._index.get(step_name)

    def load_context(self, data: dict[str, Any]) -> C:
        """Rehydrate a persisted context snapshot."""
        return self.context_type.model_validate(data)

    def dump_context(self, context: C) -> dict[str, Any]:
        """Serialise a context for the Execution Record."""
        return context.model_dump(mode="json")

    @classmethod
    def of(
        cls,
        name: str,
        steps: Sequence[Step[C]],
        context_type: type[C],
    ) -> OrchestrationDefinition[C]:
        """Convenience constructor accepting any sequence of steps."""
        return cls(name=name, steps=tuple(steps), context_type=context_type)
