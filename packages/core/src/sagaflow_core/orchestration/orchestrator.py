"""Orchestrator — drives Execution Records through the step state machine."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from sagaflow_core.exceptions import (
    AlreadyTerminalError,
    ConcurrencyConflictError,
    DefinitionMismatchError,
    InfrastructureError,
    InvalidStateError,
    InvariantViolationError,
    OrchestrationConfigurationError,
)
from sagaflow_core.instrumentation import get_hook_registry

from .context import consume_event, merge_event
from .outcomes import Continue, Jump, Suspend, Terminate
from .record import (
    ExecutionRecord,
    ExecutionStatus,
    Failure,
    FailureKind,
    WaitCondition,
)
from .registry import DefinitionRegistry
from .results import ExecutionResult
from .runner import (
    CompensationFailed,
    CompensationSucceeded,
    StepFailed,
    StepRunner,
    StepSucceeded,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..ports.clock import IClock
    from ..ports.execution_store import IExecutionStore
    from .context import OrchestrationContext, ResumeEvent
    from .outcomes import StepOutcome
    from .retry import RetryPolicy
    from .steps import OrchestrationDefinition

logger = logging.getLogger("sagaflow.orchestration")

# Fields a concurrent ``cancel`` is allowed to change under a live run.
_CANCEL_FIELDS = {"version", "cancel_requested", "cancel_reason", "history", "updated_at"}


def _only_cancel_added(persisted: ExecutionRecord, stored: ExecutionRecord) -> bool:
    """True if *stored* is *persisted* plus exactly one cancel request."""
    return (
        stored.version == persisted.version + 1
        and stored.cancel_requested
        and not persisted.cancel_requested
        and stored.model_dump(exclude=_CANCEL_FIELDS)
        == persisted.model_dump(exclude=_CANCEL_FIELDS)
    )


class _Run:
    """One in-process drive of an Execution Record.

    Remembers the last state this process stored so it can tell a
    concurrent cancel request (which it adopts) from a competing writer
    (which aborts the run with ``ConcurrencyConflictError``).
    """

    def __init__(
        self,
        store: IExecutionStore,
        definition: OrchestrationDefinition[Any],
        record: ExecutionRecord,
    ) -> None:
        self.store = store
        self.definition = definition
        self.record = record
        self._persisted = record.snapshot()

    async def persist(self) -> None:
        """Versioned write of the current record."""
        record = self.record
        try:
            record.version = await self.store.save(record, record.version)
        except ConcurrencyConflictError:
            stored = await self.store.load(record.id)
            if not _only_cancel_added(self._persisted, stored):
                raise
            self._adopt_cancel(stored)
            record.version = await self.store.save(record, stored.version)
        self._persisted = record.snapshot()

    async def refresh(self) -> None:
        """Pick up a cancel request written since the last save."""
        record = self.record
        stored = await self.store.load(record.id)
        if stored.version == record.version:
            return
        if not _only_cancel_added(self._persisted, stored):
            raise ConcurrencyConflictError(record.id, record.version, stored.version)
        self._adopt_cancel(stored)
        record.version = stored.version
        self._persisted = record.snapshot()

    def _adopt_cancel(self, stored: ExecutionRecord) -> None:
        logger.info("Execution %s: adopting concurrent cancel request", stored.id)
        record = self.record
        local_entries = record.history[len(self._persisted.history) :]
        record.cancel_requested = True
        record.cancel_reason = stored.cancel_reason
        record.history = [*stored.history, *local_entries]


class Orchestrator:
    """
    Runs orchestration definitions against a versioned execution store.

    Per step: invoke the Step Runner forward; on success persist the new
    context, the slot outcome and the next index according to the outcome
    variant; on an unrecoverable failure persist FAILED, then COMPENSATING,
    then compensate every COMPLETED slot in strictly descending order,
    persisting after each. The first compensation failure aborts the loop
    and leaves the record COMPENSATION_FAILED.

    Every write is ``store.save(record, expected_version)``; a conflict
    aborts the run and surfaces :class:`ConcurrencyConflictError` to the
    caller. The core never retries it.

    Cancellation is cooperative: :meth:`cancel` sets a flag that the
    running loop checks before each step.
    """

    def __init__(
        self,
        store: IExecutionStore,
        *,
        clock: IClock | None = None,
        registry: DefinitionRegistry | None = None,
        runner: StepRunner | None = None,
        default_retry: RetryPolicy | None = None,
        compensation_retry: RetryPolicy | None = None,
        recovery_trigger: Callable[[], None] | None = None,
    ) -> None:
        if clock is None:
            from ..adapters.clock import SystemClock

            clock = SystemClock()
        self.store = store
        self.clock = clock
        self.registry = registry or DefinitionRegistry()
        self.runner = runner or StepRunner(
            clock,
            default_retry=default_retry,
            compensation_retry=compensation_retry,
        )
        self._recovery_trigger = recovery_trigger

    def set_recovery_trigger(self, callback: Callable[[], None] | None) -> None:
        """Set or clear the callback invoked when a run stalls on infrastructure.

        E.g. DeadlineSweeper.trigger.
        """
        self._recovery_trigger = callback

    # ── Public API ──────────────────────────────────────────────────

    async def submit(
        self,
        definition: OrchestrationDefinition[Any],
        initial_context: OrchestrationContext,
        *,
        execution_id: str | None = None,
    ) -> ExecutionResult:
        """Start a new execution and drive it until it waits or finishes."""
        execution_id = execution_id or str(uuid.uuid4())
        return await get_hook_registry().execute_all(
            "orchestration.submit",
            {"orchestration.name": definition.name, "execution.id": execution_id},
            lambda: self._submit(definition, initial_context, execution_id),
        )

    async def inspect(self, execution_id: str) -> ExecutionRecord:
        """Read-only snapshot of the stored record."""
        return await self.store.load(execution_id)

    async def cancel(self, execution_id: str, reason: str = "") -> ExecutionResult:
        """Request cooperative cancellation.

        *reason* is kept on the record and ends up in the CANCELLED failure.

        * RUNNING: sets ``cancel_requested``; the live loop compensates
          before its next step.
        * WAITING: compensates immediately in the caller's task.
        * FAILED / COMPENSATING: already unwinding, returned unchanged.

        Raises:
            AlreadyTerminalError: If the record is in a terminal status.
        """
        return await get_hook_registry().execute_all(
            "orchestration.cancel",
            {"execution.id": execution_id},
            lambda: self._cancel(execution_id, reason),
        )

    async def recover(self, execution_id: str) -> ExecutionResult:
        """Re-drive a stalled execution.

        FAILED and COMPENSATING records continue compensation from the
        highest remaining COMPLETED slot. RUNNING records re-run their
        current step (steps must tolerate at-least-once invocation).

        Raises:
            AlreadyTerminalError: If the record is in a terminal status.
            InvalidStateError: If the record is WAITING (use ``resume``).
        """
        return await get_hook_registry().execute_all(
            "orchestration.recover",
            {"execution.id": execution_id},
            lambda: self._recover(execution_id),
        )

    async def resume_waiting(
        self, record: ExecutionRecord, event: ResumeEvent
    ) -> ExecutionResult:
        """Merge *event* into a WAITING record's context and continue the loop.

        Protocol checks (status, expected event type) belong to the caller;
        see :class:`~sagaflow_core.orchestration.gateway.ResumeGateway`.
        """
        definition = self.definition_for(record)
        run = _Run(self.store, definition, record)
        context = merge_event(definition.load_context(record.context), event)
        record.resume(
            definition.dump_context(context), event.event_type, now=self.clock.now()
        )
        await run.persist()
        logger.info(
            "Execution %s resumed at step %s by event %s",
            record.id,
            record.current_step_name,
            event.event_type,
        )
        return await self._drive(run)

    def definition_for(self, record: ExecutionRecord) -> OrchestrationDefinition[Any]:
        """Registered definition for *record*, checked against its step list."""
        definition = self.registry.require(record.orchestration_name)
        if definition.step_names != record.step_names:
            raise DefinitionMismatchError(
                f"Execution {record.id!r} was created with steps "
                f"{record.step_names}, but orchestration "
                f"{definition.name!r} now has {definition.step_names}"
            )
        return definition

    # ── Internals ───────────────────────────────────────────────────

    async def _submit(
        self,
        definition: OrchestrationDefinition[Any],
        initial_context: OrchestrationContext,
        execution_id: str,
    ) -> ExecutionResult:
        if not isinstance(initial_context, definition.context_type):
            raise OrchestrationConfigurationError(
                f"Orchestration {definition.name!r} expects a "
                f"{definition.context_type.__name__} context, got "
                f"{type(initial_context).__name__}"
            )
        self.registry.register(definition)
        record = ExecutionRecord.new(
            execution_id,
            definition.name,
            definition.step_names,
            definition.dump_context(initial_context),
            now=self.clock.now(),
        )
        run = _Run(self.store, definition, record)
        await run.persist()
        logger.info(
            "Execution %s of %s submitted (%d steps)",
            record.id,
            definition.name,
            len(definition.steps),
        )
        return await self._drive(run)

    async def _cancel(self, execution_id: str, reason: str) -> ExecutionResult:
        record = await self.store.load(execution_id)
        if record.is_terminal:
            raise AlreadyTerminalError(execution_id, record.status.value, "cancel")
        if record.status in (ExecutionStatus.FAILED, ExecutionStatus.COMPENSATING):
            return ExecutionResult.from_record(record)
        if record.cancel_requested:
            return ExecutionResult.from_record(record)

        definition = self.definition_for(record)
        run = _Run(self.store, definition, record)
        now = self.clock.now()
        record.request_cancel(reason, now=now)
        if record.status == ExecutionStatus.WAITING:
            record.fail(self._cancellation_failure(record), now=now)
            await run.persist()
            logger.info("Execution %s cancelled while waiting; compensating", record.id)
            return await self._compensate(run)

        await run.persist()
        logger.info("Cancellation requested for execution %s", record.id)
        return ExecutionResult.from_record(record)

    async def _recover(self, execution_id: str) -> ExecutionResult:
        record = await self.store.load(execution_id)
        if record.is_terminal:
            raise AlreadyTerminalError(execution_id, record.status.value, "recover")
        if record.status == ExecutionStatus.WAITING:
            raise InvalidStateError(execution_id, record.status.value, "recover")

        definition = self.definition_for(record)
        run = _Run(self.store, definition, record)
        record.record_recovery(now=self.clock.now())
        await run.persist()
        logger.info("Recovering execution %s from %s", record.id, record.status.value)
        if record.status == ExecutionStatus.RUNNING:
            return await self._drive(run)
        return await self._compensate(run)

    async def _drive(self, run: _Run) -> ExecutionResult:
        try:
            return await self._drive_steps(run)
        except InfrastructureError:
            self._notify_stalled(run.record)
            raise

    async def _drive_steps(self, run: _Run) -> ExecutionResult:
        record = run.record
        definition = run.definition
        while record.status == ExecutionStatus.RUNNING:
            await run.refresh()
            if record.cancel_requested:
                record.fail(self._cancellation_failure(record), now=self.clock.now())
                await run.persist()
                logger.info(
                    "Execution %s cancelled before step %s; compensating",
                    record.id,
                    record.failure.step_name if record.failure else None,
                )
                return await self._compensate(run)

            index = record.current_index
            step = definition.steps[index]
            context = definition.load_context(record.context)
            result = await self.runner.run_forward(
                step, context, orchestration_name=definition.name
            )
            failure: Failure | None = None
            match result:
                case StepSucceeded(outcome=outcome, attempts=attempts):
                    failure = self._apply_outcome(run, index, outcome, attempts)
                case StepFailed(failure=failure):
                    pass

            if failure is not None:
                record.fail(failure, index=index, now=self.clock.now())
                await run.persist()
                logger.error(
                    "Execution %s: step %s failed after %d attempt(s): %s",
                    record.id,
                    step.name,
                    failure.attempts,
                    failure.message,
                )
                return await self._compensate(run)
            await run.persist()

        if record.status == ExecutionStatus.WAITING:
            logger.info(
                "Execution %s waiting for %s at step %s",
                record.id,
                record.wait.event_type if record.wait else None,
                record.current_step_name,
            )
        elif record.status == ExecutionStatus.COMPLETED:
            logger.info(
                "Execution %s completed%s",
                record.id,
                f" ({record.terminal_reason})" if record.terminal_reason else "",
            )
        return ExecutionResult.from_record(record)

    def _apply_outcome(
        self,
        run: _Run,
        index: int,
        outcome: StepOutcome[Any],
        attempts: int,
    ) -> Failure | None:
        """Update the record for a successful forward action.

        Returns a Failure when the outcome cannot be applied (unknown jump
        target), in which case the record is left unchanged.
        """
        record = run.record
        definition = run.definition
        now = self.clock.now()
        match outcome:
            case Continue(context=context):
                record.complete_step(
                    index,
                    definition.dump_context(consume_event(context)),
                    attempts=attempts,
                    now=now,
                )
                record.advance(now=now)
            case Suspend(context=context, event_type=event_type, deadline=deadline):
                record.suspend(
                    definition.dump_context(context),
                    WaitCondition(
                        event_type=event_type,
                        deadline=self._resolve_deadline(deadline, now),
                        since=now,
                    ),
                    attempts=attempts,
                    now=now,
                )
            case Jump(context=context, target=target):
                target_index = definition.index_of(target)
                if target_index is None:
                    return Failure(
                        kind=FailureKind.STEP_FAILURE,
                        step_name=definition.steps[index].name,
                        message=f"Jump to unknown step {target!r}",
                        error_type="UnknownJumpTarget",
                        attempts=attempts,
                        occurred_at=now,
                    )
                record.jump(
                    index,
                    target_index,
                    definition.dump_context(consume_event(context)),
                    attempts=attempts,
                    now=now,
                )
                logger.debug(
                    "Execution %s jumped from %s to %s",
                    record.id,
                    definition.steps[index].name,
                    target,
                )
            case Terminate(context=context, reason=reason):
                record.terminate(
                    index,
                    definition.dump_context(consume_event(context)),
                    reason,
                    attempts=attempts,
                    now=now,
                )
            case _:
                raise InvariantViolationError(
                    f"Unhandled step outcome {type(outcome).__name__}"
                )
        return None

    async def _compensate(self, run: _Run) -> ExecutionResult:
        record = run.record
        definition = run.definition
        if record.status == ExecutionStatus.FAILED:
            record.begin_compensation(now=self.clock.now())
            await run.persist()
        logger.info(
            "Execution %s compensating %d step(s)",
            record.id,
            len(record.completed_indices),
        )

        for index in reversed(record.completed_indices):
            step = definition.steps[index]
            context = definition.load_context(record.context)
            result = await self.runner.run_compensation(
                step, context, orchestration_name=definition.name
            )
            match result:
                case CompensationSucceeded(context=new_context):
                    record.mark_compensated(
                        index,
                        definition.dump_context(new_context)
                        if new_context is not None
                        else None,
                        now=self.clock.now(),
                    )
                    await run.persist()
                case CompensationFailed(failure=failure):
                    record.fail_compensation(index, failure, now=self.clock.now())
                    await run.persist()
                    logger.critical(
                        "Execution %s: compensation of step %s failed after %d "
                        "attempt(s): %s. Manual intervention required.",
                        record.id,
                        step.name,
                        failure.attempts,
                        failure.message,
                    )
                    return ExecutionResult.from_record(record)

        record.finish_compensation(now=self.clock.now())
        await run.persist()
        logger.info("Execution %s compensated", record.id)
        return ExecutionResult.from_record(record)

    def _cancellation_failure(self, record: ExecutionRecord) -> Failure:
        return Failure(
            kind=FailureKind.CANCELLED,
            step_name=record.current_step_name or "",
            message=f"Cancelled: {record.cancel_reason}"
            if record.cancel_reason
            else "Cancellation requested",
            error_type="Cancelled",
            occurred_at=self.clock.now(),
        )

    @staticmethod
    def _resolve_deadline(
        deadline: datetime | timedelta | None, now: datetime
    ) -> datetime | None:
        if deadline is None:
            return None
        if isinstance(deadline, timedelta):
            return now + deadline
        if deadline.tzinfo is None:
            return deadline.replace(tzinfo=timezone.utc)
        return deadline

    def _notify_stalled(self, record: ExecutionRecord) -> None:
        logger.error("Execution %s stalled on an infrastructure error", record.id)
        if self._recovery_trigger is not None:
            try:
                self._recovery_trigger()
            except Exception:  # noqa: BLE001
                logger.debug("Recovery trigger callback failed", exc_info=True)
