"""StepRunner — invokes one step action with timeout and retry."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar, Union

from sagaflow_core.exceptions import StepFailure
from sagaflow_core.instrumentation import get_hook_registry

from .context import TIMEOUT_EVENT, OrchestrationContext
from .outcomes import OUTCOME_TYPES, Jump, Suspend
from .record import Failure, FailureKind
from .retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import timedelta

    from ..ports.clock import IClock
    from .outcomes import StepOutcome
    from .steps import Step

logger = logging.getLogger("sagaflow.runner")

C = TypeVar("C", bound=OrchestrationContext)


# ── Results ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StepSucceeded(Generic[C]):
    outcome: StepOutcome[C]
    attempts: int


@dataclass(frozen=True)
class StepFailed:
    failure: Failure


@dataclass(frozen=True)
class CompensationSucceeded(Generic[C]):
    """``context`` is the value returned by the action, or ``None``."""

    context: C | None
    attempts: int


@dataclass(frozen=True)
class CompensationFailed:
    failure: Failure


ForwardResult = Union[StepSucceeded[Any], StepFailed]
CompensationResult = Union[CompensationSucceeded[Any], CompensationFailed]


class _InvalidResult(Exception):
    """An action returned a value of the wrong shape."""


def _is_async(action: Callable[[Any], Any]) -> bool:
    if inspect.iscoroutinefunction(action):
        return True
    return inspect.iscoroutinefunction(getattr(action, "__call__", None))


class StepRunner:
    """
    Executes a single forward or compensating action.

    * Races the action against the step timeout (``asyncio.wait_for``);
      a timeout is a retryable failure.
    * Forward actions are retried per the step's :class:`RetryPolicy` only
      for retryable failures. Compensating actions are retried for every
      failure under ``step.compensate_retry`` or the runner's compensation
      default; the forward policy never applies to them.
    * Waits between attempts go through the injected clock.
    * Never persists anything; the Orchestrator owns the Execution Record.

    ``asyncio.CancelledError`` is never caught, so task cancellation
    propagates out of the runner unchanged.
    """

    def __init__(
        self,
        clock: IClock,
        *,
        default_retry: RetryPolicy | None = None,
        compensation_retry: RetryPolicy | None = None,
    ) -> None:
        self._clock = clock
        self._default_retry = default_retry or RetryPolicy.none()
        self._compensation_retry = compensation_retry or RetryPolicy.fixed(3)

    # ── Forward ─────────────────────────────────────────────────────

    async def run_forward(
        self,
        step: Step[C],
        context: C,
        *,
        orchestration_name: str = "",
    ) -> ForwardResult:
        """Run ``step.forward`` until it succeeds or the retry budget is spent."""
        policy = step.retry or self._default_retry
        context_type = type(context)
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self._instrumented(
                    "orchestration.step.forward",
                    step,
                    attempt,
                    orchestration_name,
                    lambda: self._call(step.forward, context, step.timeout),
                )
                outcome = self._check_outcome(step, result, context_type)
            except _InvalidResult as exc:
                return StepFailed(
                    self._failure(step, exc, attempt, retryable=False, exhausted=False)
                )
            except asyncio.TimeoutError as exc:
                failure = self._failure(
                    step, exc, attempt, retryable=True, kind=FailureKind.TIMEOUT
                )
            except StepFailure as exc:
                failure = self._failure(step, exc, attempt, retryable=exc.retryable)
            except Exception as exc:  # noqa: BLE001
                failure = self._failure(
                    step, exc, attempt, retryable=policy.is_retryable(exc)
                )
            else:
                return StepSucceeded(outcome=outcome, attempts=attempt)

            if failure.retryable and policy.should_retry(attempt):
                await self._backoff(step, "forward", failure, attempt, policy)
                continue
            return StepFailed(
                failure.model_copy(update={"exhausted": failure.retryable})
            )

    # ── Compensation ────────────────────────────────────────────────

    async def run_compensation(
        self,
        step: Step[C],
        context: C,
        *,
        orchestration_name: str = "",
    ) -> CompensationResult:
        """Run ``step.compensate``, retrying every failure.

        A step without a compensating action succeeds immediately.
        """
        compensate = step.compensate
        if compensate is None:
            return CompensationSucceeded(context=None, attempts=0)
        policy = step.compensate_retry or self._compensation_retry
        context_type = type(context)
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await self._instrumented(
                    "orchestration.step.compensate",
                    step,
                    attempt,
                    orchestration_name,
                    lambda: self._call(compensate, context, step.timeout),
                )
                if result is not None and not isinstance(result, context_type):
                    raise _InvalidResult(
                        f"Compensation of step {step.name!r} returned "
                        f"{type(result).__name__}, expected "
                        f"{context_type.__name__} or None"
                    )
            except _InvalidResult as exc:
                return CompensationFailed(
                    self._failure(
                        step,
                        exc,
                        attempt,
                        retryable=False,
                        kind=FailureKind.COMPENSATION_FAILURE,
                    )
                )
            except Exception as exc:  # noqa: BLE001
                failure = self._failure(
                    step,
                    exc,
                    attempt,
                    retryable=True,
                    kind=FailureKind.COMPENSATION_FAILURE,
                )
            else:
                return CompensationSucceeded(context=result, attempts=attempt)

            if policy.should_retry(attempt):
                await self._backoff(step, "compensation", failure, attempt, policy)
                continue
            return CompensationFailed(failure.model_copy(update={"exhausted": True}))

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    async def _call(
        action: Callable[[Any], Any],
        context: Any,
        timeout: timedelta | None,
    ) -> Any:
        # A blocking sync action cannot be raced inline; with a deadline it
        # runs in a worker thread, which keeps running after a timeout.
        offload = timeout is not None and not _is_async(action)

        async def invoke() -> Any:
            if offload:
                result = await asyncio.to_thread(action, context)
            else:
                result = action(context)
            if inspect.isawaitable(result):
                result = await result
            return result

        if timeout is None:
            return await invoke()
        return await asyncio.wait_for(invoke(), timeout=timeout.total_seconds())

    @staticmethod
    async def _instrumented(
        operation: str,
        step: Step[Any],
        attempt: int,
        orchestration_name: str,
        handler: Callable[[], Any],
    ) -> Any:
        return await get_hook_registry().execute_all(
            operation,
            {
                "orchestration.name": orchestration_name,
                "step.name": step.name,
                "step.attempt": attempt,
            },
            handler,
        )

    @staticmethod
    def _check_outcome(
        step: Step[Any], result: Any, context_type: type[OrchestrationContext]
    ) -> StepOutcome[Any]:
        if not isinstance(result, OUTCOME_TYPES):
            raise _InvalidResult(
                f"Step {step.name!r} returned {type(result).__name__}, "
                "expected a StepOutcome"
            )
        if not isinstance(result.context, context_type):
            raise _InvalidResult(
                f"Step {step.name!r} returned a context of type "
                f"{type(result.context).__name__}, expected {context_type.__name__}"
            )
        if isinstance(result, Suspend) and (
            not result.event_type or result.event_type == TIMEOUT_EVENT
        ):
            raise _InvalidResult(
                f"Step {step.name!r} suspended on invalid event type "
                f"{result.event_type!r}"
            )
        if isinstance(result, Jump) and not result.target:
            raise _InvalidResult(f"Step {step.name!r} jumped to an empty target")
        return result

    @staticmethod
    def _failure(
        step: Step[Any],
        exc: BaseException,
        attempt: int,
        *,
        retryable: bool,
        kind: FailureKind = FailureKind.STEP_FAILURE,
        exhausted: bool = False,
    ) -> Failure:
        message = str(exc)
        if kind == FailureKind.TIMEOUT:
            message = f"Step {step.name!r} timed out after {step.timeout}"
        return Failure(
            kind=kind,
            step_name=step.name,
            message=message or type(exc).__name__,
            error_type=type(exc).__name__,
            retryable=retryable,
            attempts=attempt,
            exhausted=exhausted,
        )

    async def _backoff(
        self,
        step: Step[Any],
        phase: str,
        failure: Failure,
        attempt: int,
        policy: RetryPolicy,
    ) -> None:
        delay = policy.delay_for_attempt(attempt)
        logger.warning(
            "Step %s %s attempt %d/%d failed (%s: %s); retrying in %.2fs",
            step.name,
            phase,
            attempt,
            policy.max_attempts,
            failure.error_type,
            failure.message,
            delay,
        )
        await self._clock.sleep(delay)
