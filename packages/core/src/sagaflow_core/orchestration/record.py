"""Execution Record — persisted, versioned state of one orchestration run."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from sagaflow_core.exceptions import (
    AlreadyTerminalError,
    InvalidStateError,
    InvariantViolationError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    """Lifecycle states of an Execution Record."""

    RUNNING = "RUNNING"
    WAITING = "WAITING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    COMPENSATING = "COMPENSATING"
    COMPENSATED = "COMPENSATED"
    COMPENSATION_FAILED = "COMPENSATION_FAILED"


TERMINAL_STATUSES = frozenset(
    {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.COMPENSATED,
        ExecutionStatus.COMPENSATION_FAILED,
    }
)


class StepStatus(str, Enum):
    """Outcome of a single step slot."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    COMPENSATED = "COMPENSATED"


_SETTLED = (StepStatus.COMPLETED, StepStatus.SKIPPED)


class FailureKind(str, Enum):
    """Why a step or the orchestration failed."""

    STEP_FAILURE = "STEP_FAILURE"
    TIMEOUT = "TIMEOUT"
    COMPENSATION_FAILURE = "COMPENSATION_FAILURE"
    CANCELLED = "CANCELLED"


class Failure(BaseModel):
    """Uniform description of a failed step invocation."""

    model_config = ConfigDict(frozen=True)

    kind: FailureKind
    step_name: str
    message: str
    error_type: str = ""
    retryable: bool = False
    attempts: int = 0
    exhausted: bool = False
    occurred_at: datetime = Field(default_factory=_utcnow)


class StepSlot(BaseModel):
    """Persisted outcome of one step of the definition."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    runs: int = 0
    error: str | None = None
    completed_at: datetime | None = None
    compensated_at: datetime | None = None


class WaitCondition(BaseModel):
    """What a WAITING record expects, and until when."""

    model_config = ConfigDict(frozen=True)

    event_type: str
    deadline: datetime | None = None
    since: datetime = Field(default_factory=_utcnow)

    def is_expired(self, now: datetime) -> bool:
        return self.deadline is not None and self.deadline <= now


class TransitionKind(str, Enum):
    SUBMITTED = "SUBMITTED"
    STEP_COMPLETED = "STEP_COMPLETED"
    SUSPENDED = "SUSPENDED"
    RESUMED = "RESUMED"
    JUMPED = "JUMPED"
    TERMINATED = "TERMINATED"
    COMPLETED = "COMPLETED"
    CANCEL_REQUESTED = "CANCEL_REQUESTED"
    FAILED = "FAILED"
    COMPENSATION_STARTED = "COMPENSATION_STARTED"
    STEP_COMPENSATED = "STEP_COMPENSATED"
    COMPENSATION_FAILED = "COMPENSATION_FAILED"
    COMPENSATED = "COMPENSATED"
    RECOVERED = "RECOVERED"


class TransitionRecord(BaseModel):
    """Immutable audit entry for one state transition."""

    model_config = ConfigDict(frozen=True)

    kind: TransitionKind
    status: ExecutionStatus
    step_name: str | None = None
    at: datetime = Field(default_factory=_utcnow)
    detail: dict[str, Any] = Field(default_factory=dict)


class ExecutionRecord(BaseModel):
    """
    Persisted state of one orchestration run.

    Holds the per-step outcomes, the current step index, the current context
    snapshot, the overall status, the wait condition while WAITING, failure
    details, an append-only transition history and the optimistic
    concurrency ``version`` (0 = never persisted; the store assigns the
    rest).

    Every mutating method enforces the record's invariants:

    * a slot is completed only when all earlier slots are completed or
      skipped, and only at ``current_index``;
    * compensation marks completed slots in strictly descending order;
    * terminal records (COMPLETED, COMPENSATED, COMPENSATION_FAILED) never
      change again.
    """

    # ── Identity ────────────────────────────────────────────────────
    id: str
    orchestration_name: str
    status: ExecutionStatus = ExecutionStatus.RUNNING

    # ── Step tracking ───────────────────────────────────────────────
    steps: list[StepSlot] = Field(default_factory=list)
    current_index: int = 0

    # ── Context snapshot (JSON form of the caller's context) ────────
    context: dict[str, Any] = Field(default_factory=dict)

    # ── Suspension ──────────────────────────────────────────────────
    wait: WaitCondition | None = None

    # ── Failure / compensation ──────────────────────────────────────
    failure: Failure | None = None
    compensation_failure: Failure | None = None

    # ── Cooperative cancellation ────────────────────────────────────
    cancel_requested: bool = False
    cancel_reason: str = ""

    terminal_reason: str | None = None
    history: list[TransitionRecord] = Field(default_factory=list)

    # ── Timestamps ──────────────────────────────────────────────────
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    completed_at: datetime | None = None

    # ── Optimistic concurrency ──────────────────────────────────────
    version: int = 0

    @classmethod
    def new(
        cls,
        execution_id: str,
        orchestration_name: str,
        step_names: Sequence[str],
        context: dict[str, Any],
        *,
        now: datetime | None = None,
    ) -> ExecutionRecord:
        """Create a RUNNING record positioned at the first step."""
        now = now or _utcnow()
        record = cls(
            id=execution_id,
            orchestration_name=orchestration_name,
            steps=[StepSlot(name=name) for name in step_names],
            context=context,
            created_at=now,
            updated_at=now,
        )
        record._log(TransitionKind.SUBMITTED, now, step_name=record.current_step_name)
        return record

    # ── Queries ─────────────────────────────────────────────────────

    @property
    def is_terminal(self) -> bool:
        """Return *True* if the record has reached a final state."""
        return self.status in TERMINAL_STATUSES

    @property
    def step_names(self) -> list[str]:
        return [slot.name for slot in self.steps]

    @property
    def current_step_name(self) -> str | None:
        if 0 <= self.current_index < len(self.steps):
            return self.steps[self.current_index].name
        return None

    @property
    def completed_indices(self) -> list[int]:
        """Indices of slots still marked COMPLETED, ascending."""
        return [
            index
            for index, slot in enumerate(self.steps)
            if slot.status == StepStatus.COMPLETED
        ]

    def slot(self, step_name: str) -> StepSlot:
        for slot in self.steps:
            if slot.name == step_name:
                return slot
        raise KeyError(step_name)

    def snapshot(self) -> ExecutionRecord:
        """Deep, independent copy (what a store hands out)."""
        return self.model_copy(deep=True)

    # ── Forward transitions ─────────────────────────────────────────

    def complete_step(
        self,
        index: int,
        context: dict[str, Any],
        *,
        attempts: int,
        now: datetime | None = None,
    ) -> None:
        """Mark the slot at *index* COMPLETED and store the new context."""
        now = now or _utcnow()
        self._require_status(ExecutionStatus.RUNNING, "complete a step of")
        self._require_current(index)
        for earlier in self.steps[:index]:
            if earlier.status not in _SETTLED:
                raise InvariantViolationError(
                    f"Execution {self.id!r}: cannot complete step "
                    f"{self.steps[index].name!r} while {earlier.name!r} is "
                    f"{earlier.status.value}"
                )
        slot = self.steps[index]
        self.steps[index] = slot.model_copy(
            update={
                "status": StepStatus.COMPLETED,
                "attempts": slot.attempts + attempts,
                "runs": slot.runs + 1,
                "error": None,
                "completed_at": now,
            }
        )
        self.context = context
        self._log(
            TransitionKind.STEP_COMPLETED,
            now,
            step_name=slot.name,
            detail={"attempts": attempts},
        )

    def advance(self, *, now: datetime | None = None) -> None:
        """Move to the next step (or complete after the last one)."""
        now = now or _utcnow()
        self._require_status(ExecutionStatus.RUNNING, "advance")
        self.current_index += 1
        if self.current_index >= len(self.steps):
            self.complete(now=now)
        else:
            self._touch(now)

    def complete(self, *, reason: str | None = None, now: datetime | None = None) -> None:
        """Transition RUNNING → COMPLETED."""
        now = now or _utcnow()
        self._require_status(ExecutionStatus.RUNNING, "complete")
        self.status = ExecutionStatus.COMPLETED
        self.terminal_reason = reason
        self.completed_at = now
        self._log(TransitionKind.COMPLETED, now, detail={"reason": reason or ""})

    def terminate(
        self,
        index: int,
        context: dict[str, Any],
        reason: str,
        *,
        attempts: int,
        now: datetime | None = None,
    ) -> None:
        """Complete the current step, then the whole record, early."""
        now = now or _utcnow()
        self.complete_step(index, context, attempts=attempts, now=now)
        self._log(
            TransitionKind.TERMINATED,
            now,
            step_name=self.steps[index].name,
            detail={"reason": reason},
        )
        self.complete(reason=reason, now=now)

    def jump(
        self,
        index: int,
        target_index: int,
        context: dict[str, Any],
        *,
        attempts: int,
        now: datetime | None = None,
    ) -> None:
        """Complete the current step and continue at *target_index*.

        Forward: slots strictly between the two are marked SKIPPED.
        Backward (or onto itself): slots from the target up to and including
        the jumping step are reset to PENDING without compensation; they run
        again when the loop reaches them.
        """
        now = now or _utcnow()
        if not 0 <= target_index < len(self.steps):
            raise InvariantViolationError(
                f"Execution {self.id!r}: jump target {target_index} out of range"
            )
        self.complete_step(index, context, attempts=attempts, now=now)
        if target_index > index:
            for skipped in range(index + 1, target_index):
                self.steps[skipped] = self.steps[skipped].model_copy(
                    update={"status": StepStatus.SKIPPED}
                )
        else:
            for reset in range(target_index, index + 1):
                self.steps[reset] = self.steps[reset].model_copy(
                    update={"status": StepStatus.PENDING, "completed_at": None}
                )
        self.current_index = target_index
        self._log(
            TransitionKind.JUMPED,
            now,
            step_name=self.steps[index].name,
            detail={"target": self.steps[target_index].name},
        )

    def suspend(
        self,
        context: dict[str, Any],
        wait: WaitCondition,
        *,
        attempts: int,
        now: datetime | None = None,
    ) -> None:
        """Transition RUNNING → WAITING; the current slot stays PENDING."""
        now = now or _utcnow()
        self._require_status(ExecutionStatus.RUNNING, "suspend")
        slot = self.steps[self.current_index]
        self.steps[self.current_index] = slot.model_copy(
            update={"attempts": slot.attempts + attempts, "runs": slot.runs + 1}
        )
        self.context = context
        self.wait = wait
        self.status = ExecutionStatus.WAITING
        self._log(
            TransitionKind.SUSPENDED,
            now,
            step_name=slot.name,
            detail={
                "event_type": wait.event_type,
                "deadline": wait.deadline.isoformat() if wait.deadline else None,
            },
        )

    def resume(
        self,
        context: dict[str, Any],
        event_type: str,
        *,
        now: datetime | None = None,
    ) -> None:
        """Transition WAITING → RUNNING at the same step."""
        now = now or _utcnow()
        self._require_status(ExecutionStatus.WAITING, "resume")
        self.context = context
        self.wait = None
        self.status = ExecutionStatus.RUNNING
        self._log(
            TransitionKind.RESUMED,
            now,
            step_name=self.current_step_name,
            detail={"event_type": event_type},
        )

    def request_cancel(self, reason: str = "", *, now: datetime | None = None) -> None:
        """Set the cooperative cancellation flag."""
        now = now or _utcnow()
        self._ensure_mutable("cancel")
        self.cancel_requested = True
        self.cancel_reason = reason
        self._log(
            TransitionKind.CANCEL_REQUESTED,
            now,
            step_name=self.current_step_name,
            detail={"reason": reason} if reason else None,
        )

    # ── Failure & compensation ──────────────────────────────────────

    def fail(
        self,
        failure: Failure,
        *,
        index: int | None = None,
        now: datetime | None = None,
    ) -> None:
        """Transition RUNNING/WAITING → FAILED.

        When *index* is given the slot is marked FAILED as well (a step
        failure); a cancellation leaves the slots untouched.
        """
        now = now or _utcnow()
        self._ensure_mutable("fail")
        if self.status not in (ExecutionStatus.RUNNING, ExecutionStatus.WAITING):
            raise InvalidStateError(self.id, self.status.value, "fail")
        if index is not None:
            self._require_current(index)
            slot = self.steps[index]
            self.steps[index] = slot.model_copy(
                update={
                    "status": StepStatus.FAILED,
                    "attempts": slot.attempts + failure.attempts,
                    "runs": slot.runs + 1,
                    "error": failure.message,
                }
            )
        self.failure = failure
        self.wait = None
        self.status = ExecutionStatus.FAILED
        self._log(
            TransitionKind.FAILED,
            now,
            step_name=failure.step_name,
            detail={"kind": failure.kind.value, "message": failure.message},
        )

    def begin_compensation(self, *, now: datetime | None = None) -> None:
        """Transition FAILED → COMPENSATING (idempotent while COMPENSATING)."""
        now = now or _utcnow()
        self._ensure_mutable("compensate")
        if self.status == ExecutionStatus.COMPENSATING:
            return
        self._require_status(ExecutionStatus.FAILED, "compensate")
        self.status = ExecutionStatus.COMPENSATING
        self._log(
            TransitionKind.COMPENSATION_STARTED,
            now,
            detail={"steps": [self.steps[i].name for i in reversed(self.completed_indices)]},
        )

    def mark_compensated(
        self,
        index: int,
        context: dict[str, Any] | None = None,
        *,
        now: datetime | None = None,
    ) -> None:
        """Mark the highest remaining COMPLETED slot as COMPENSATED."""
        now = now or _utcnow()
        self._require_status(ExecutionStatus.COMPENSATING, "mark compensated")
        remaining = self.completed_indices
        if not remaining or remaining[-1] != index:
            raise InvariantViolationError(
                f"Execution {self.id!r}: compensation must proceed in descending "
                f"order; expected {remaining[-1] if remaining else None}, got {index}"
            )
        self.steps[index] = self.steps[index].model_copy(
            update={"status": StepStatus.COMPENSATED, "compensated_at": now}
        )
        if context is not None:
            self.context = context
        self._log(TransitionKind.STEP_COMPENSATED, now, step_name=self.steps[index].name)

    def fail_compensation(
        self,
        index: int,
        failure: Failure,
        *,
        now: datetime | None = None,
    ) -> None:
        """Transition COMPENSATING → COMPENSATION_FAILED (terminal)."""
        now = now or _utcnow()
        self._require_status(ExecutionStatus.COMPENSATING, "fail compensation of")
        self.compensation_failure = failure
        self.status = ExecutionStatus.COMPENSATION_FAILED
        self.completed_at = now
        self._log(
            TransitionKind.COMPENSATION_FAILED,
            now,
            step_name=self.steps[index].name,
            detail={"message": failure.message, "attempts": failure.attempts},
        )

    def finish_compensation(self, *, now: datetime | None = None) -> None:
        """Transition COMPENSATING → COMPENSATED (terminal)."""
        now = now or _utcnow()
        self._require_status(ExecutionStatus.COMPENSATING, "finish compensation of")
        if self.completed_indices:
            raise InvariantViolationError(
                f"Execution {self.id!r}: steps still awaiting compensation: "
                f"{[self.steps[i].name for i in self.completed_indices]}"
            )
        self.status = ExecutionStatus.COMPENSATED
        self.completed_at = now
        self._log(TransitionKind.COMPENSATED, now)

    def record_recovery(self, *, now: datetime | None = None) -> None:
        """Note that a recovery pass picked this record up."""
        now = now or _utcnow()
        self._ensure_mutable("recover")
        self._log(TransitionKind.RECOVERED, now, step_name=self.current_step_name)

    # ── Helpers ─────────────────────────────────────────────────────

    def _ensure_mutable(self, operation: str) -> None:
        if self.is_terminal:
            raise AlreadyTerminalError(self.id, self.status.value, operation)

    def _require_status(self, status: ExecutionStatus, operation: str) -> None:
        self._ensure_mutable(operation)
        if self.status != status:
            raise InvalidStateError(self.id, self.status.value, operation)

    def _require_current(self, index: int) -> None:
        if index != self.current_index:
            raise InvariantViolationError(
                f"Execution {self.id!r}: step index {index} is not the current "
                f"step ({self.current_index})"
            )

    def _touch(self, now: datetime) -> None:
        self.updated_at = now

    def _log(
        self,
        kind: TransitionKind,
        now: datetime,
        *,
        step_name: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        self.history.append(
            TransitionRecord(
                kind=kind,
                status=self.status,
                step_name=step_name,
                at=now,
                detail=detail or {},
            )
        )
        self._touch(now)
