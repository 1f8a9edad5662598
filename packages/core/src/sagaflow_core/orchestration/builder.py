"""OrchestrationBuilder — fluent API for defining orchestrations."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sagaflow_core.exceptions import OrchestrationConfigurationError

from .context import OrchestrationContext
from .steps import OrchestrationDefinition, Step

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import timedelta

    from .retry import RetryPolicy
    from .steps import CompensatingAction, ForwardAction

C = TypeVar("C", bound=OrchestrationContext)


class OrchestrationBuilder(Generic[C]):
    """Fluent builder for :class:`OrchestrationDefinition`.

    Example::

        definition = (
            OrchestrationBuilder("order_fulfilment", OrderContext)
            .with_default_retry(RetryPolicy.fixed(3))
            .step("reserve", reserve, compensate=release)
            .step("charge", charge, compensate=refund, timeout=timedelta(seconds=5))
            .step("ship", ship)
            .build()
        )

    ``wrap`` composes explicit decorators (see
    :mod:`sagaflow_core.orchestration.decorators`) around the forward action
    of every step added *after* the call.
    """

    def __init__(self, name: str, context_type: type[C]) -> None:
        self._name = name
        self._context_type = context_type
        self._steps: list[Step[C]] = []
        self._default_retry: RetryPolicy | None = None
        self._default_timeout: timedelta | None = None
        self._wrappers: list[Callable[[str, Any], Any]] = []

    def with_default_retry(self, policy: RetryPolicy | None) -> OrchestrationBuilder[C]:
        """Retry policy for steps that do not declare their own."""
        self._default_retry = policy
        return self

    def with_default_timeout(
        self, timeout: timedelta | None
    ) -> OrchestrationBuilder[C]:
        """Timeout for steps that do not declare their own."""
        self._default_timeout = timeout
        return self

    def wrap(self, wrapper: Callable[[str, Any], Any]) -> OrchestrationBuilder[C]:
        """Register ``wrapper(step_name, forward) -> forward`` for subsequent steps."""
        self._wrappers.append(wrapper)
        return self

    def step(
        self,
        name: str,
        forward: ForwardAction,
        *,
        compensate: CompensatingAction | None = None,
        timeout: timedelta | None = None,
        retry: RetryPolicy | None = None,
        description: str = "",
        compensate_retry: RetryPolicy | None = None,
    ) -> OrchestrationBuilder[C]:
        """Append a step."""
        if any(existing.name == name for existing in self._steps):
            raise OrchestrationConfigurationError(
                f"Orchestration {self._name!r}: step {name!r} already added."
            )
        for wrapper in self._wrappers:
            forward = wrapper(name, forward)
        self._steps.append(
            Step(
                name=name,
                forward=forward,
                compensate=compensate,
                timeout=timeout if timeout is not None else self._default_timeout,
                retry=retry if retry is not None else self._default_retry,
                description=description,
                compensate_retry=compensate_retry,
            )
        )
        return self

    def add(self, step: Step[C]) -> OrchestrationBuilder[C]:
        """Append a pre-built step unchanged."""
        if any(existing.name == step.name for existing in self._steps):
            raise OrchestrationConfigurationError(
                f"Orchestration {self._name!r}: step {step.name!r} already added."
            )
        self._steps.append(step)
        return self

    def build(self) -> OrchestrationDefinition[C]:
        """Validate and return the immutable definition."""
        return OrchestrationDefinition(
            name=self._name,
            steps=tuple(self._steps),
            context_type=self._context_type,
        )
