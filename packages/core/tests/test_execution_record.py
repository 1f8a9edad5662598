"""Tests for ExecutionRecord transitions and invariants."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from sagaflow_core.exceptions import (
    AlreadyTerminalError,
    InvalidStateError,
    InvariantViolationError,
)
from sagaflow_core.orchestration.record import (
    ExecutionRecord,
    ExecutionStatus,
    Failure,
    FailureKind,
    StepStatus,
    TransitionKind,
    WaitCondition,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _record(*names: str) -> ExecutionRecord:
    return ExecutionRecord.new("ex-1", "orders", list(names or ("a", "b", "c")), {"n": 0}, now=NOW)


def _failure(step: str = "b") -> Failure:
    return Failure(kind=FailureKind.STEP_FAILURE, step_name=step, message="boom", attempts=1)


# ═══════════════════════════════════════════════════════════════════════
# Creation & forward progress
# ═══════════════════════════════════════════════════════════════════════


class TestForwardTransitions:
    def test_new_record(self) -> None:
        record = _record()
        assert record.status == ExecutionStatus.RUNNING
        assert record.version == 0
        assert record.current_index == 0
        assert record.current_step_name == "a"
        assert [s.status for s in record.steps] == [StepStatus.PENDING] * 3
        assert record.history[0].kind == TransitionKind.SUBMITTED
        assert not record.is_terminal

    def test_complete_and_advance_to_completion(self) -> None:
        record = _record("a", "b")
        record.complete_step(0, {"n": 1}, attempts=1, now=NOW)
        record.advance(now=NOW)
        record.complete_step(1, {"n": 2}, attempts=2, now=NOW)
        record.advance(now=NOW)
        assert record.status == ExecutionStatus.COMPLETED
        assert record.is_terminal
        assert record.context == {"n": 2}
        assert record.completed_at == NOW
        assert [s.status for s in record.steps] == [StepStatus.COMPLETED] * 2
        assert record.steps[1].attempts == 2
        assert record.current_step_name is None

    def test_only_current_step_can_complete(self) -> None:
        record = _record()
        with pytest.raises(InvariantViolationError):
            record.complete_step(1, {}, attempts=1)

    def test_prefix_order_is_enforced(self) -> None:
        record = _record()
        record.current_index = 2
        with pytest.raises(InvariantViolationError):
            record.complete_step(2, {}, attempts=1)

    def test_terminate_completes_early(self) -> None:
        record = _record()
        record.terminate(0, {"n": 9}, "nothing to do", attempts=1, now=NOW)
        assert record.status == ExecutionStatus.COMPLETED
        assert record.terminal_reason == "nothing to do"
        assert record.steps[0].status == StepStatus.COMPLETED
        assert record.steps[1].status == StepStatus.PENDING

    def test_suspend_and_resume(self) -> None:
        record = _record()
        wait = WaitCondition(event_type="approval", deadline=NOW + timedelta(hours=1), since=NOW)
        record.suspend({"n": 1}, wait, attempts=1, now=NOW)
        assert record.status == ExecutionStatus.WAITING
        assert record.wait == wait
        assert record.steps[0].status == StepStatus.PENDING
        assert record.steps[0].runs == 1
        assert not wait.is_expired(NOW)
        assert wait.is_expired(NOW + timedelta(hours=1))

        record.resume({"n": 2}, "approval", now=NOW)
        assert record.status == ExecutionStatus.RUNNING
        assert record.wait is None
        assert record.current_index == 0
        assert record.context == {"n": 2}

    def test_resume_requires_waiting(self) -> None:
        with pytest.raises(InvalidStateError):
            _record().resume({}, "approval")


# ═══════════════════════════════════════════════════════════════════════
# Jumps
# ═══════════════════════════════════════════════════════════════════════


class TestJump:
    def test_forward_jump_skips_intermediate_steps(self) -> None:
        record = _record("a", "b", "c", "d")
        record.jump(0, 3, {"n": 1}, attempts=1, now=NOW)
        assert record.current_index == 3
        assert [s.status for s in record.steps] == [
            StepStatus.COMPLETED,
            StepStatus.SKIPPED,
            StepStatus.SKIPPED,
            StepStatus.PENDING,
        ]
        # Skipped slots satisfy the prefix rule.
        record.complete_step(3, {"n": 2}, attempts=1, now=NOW)

    def test_backward_jump_resets_span_to_pending(self) -> None:
        record = _record("a", "b", "c")
        record.complete_step(0, {}, attempts=1, now=NOW)
        record.advance(now=NOW)
        record.complete_step(1, {}, attempts=1, now=NOW)
        record.advance(now=NOW)
        record.jump(2, 1, {"n": 5}, attempts=1, now=NOW)
        assert record.current_index == 1
        assert [s.status for s in record.steps] == [
            StepStatus.COMPLETED,
            StepStatus.PENDING,
            StepStatus.PENDING,
        ]
        assert record.steps[2].runs == 1
        assert record.history[-1].kind == TransitionKind.JUMPED

    def test_jump_target_out_of_range(self) -> None:
        with pytest.raises(InvariantViolationError):
            _record().jump(0, 7, {}, attempts=1)


# ═══════════════════════════════════════════════════════════════════════
# Failure & compensation
# ═══════════════════════════════════════════════════════════════════════


class TestCompensationTransitions:
    def _failed_at_c(self) -> ExecutionRecord:
        record = _record()
        for index in (0, 1):
            record.complete_step(index, {}, attempts=1, now=NOW)
            record.advance(now=NOW)
        record.fail(_failure("c"), index=2, now=NOW)
        return record

    def test_fail_marks_slot_and_status(self) -> None:
        record = self._failed_at_c()
        assert record.status == ExecutionStatus.FAILED
        assert not record.is_terminal
        assert record.steps[2].status == StepStatus.FAILED
        assert record.steps[2].error == "boom"
        assert record.failure is not None
        assert record.failure.step_name == "c"

    def test_compensation_in_descending_order(self) -> None:
        record = self._failed_at_c()
        record.begin_compensation(now=NOW)
        record.begin_compensation(now=NOW)
        assert record.status == ExecutionStatus.COMPENSATING
        with pytest.raises(InvariantViolationError):
            record.mark_compensated(0, now=NOW)
        record.mark_compensated(1, {"undone": "b"}, now=NOW)
        record.mark_compensated(0, now=NOW)
        assert record.context == {"undone": "b"}
        record.finish_compensation(now=NOW)
        assert record.status == ExecutionStatus.COMPENSATED
        assert [s.status for s in record.steps] == [
            StepStatus.COMPENSATED,
            StepStatus.COMPENSATED,
            StepStatus.FAILED,
        ]

    def test_finish_requires_all_compensated(self) -> None:
        record = self._failed_at_c()
        record.begin_compensation(now=NOW)
        with pytest.raises(InvariantViolationError):
            record.finish_compensation(now=NOW)

    def test_compensation_failure_is_terminal(self) -> None:
        record = self._failed_at_c()
        record.begin_compensation(now=NOW)
        failure = Failure(
            kind=FailureKind.COMPENSATION_FAILURE, step_name="b", message="stuck", attempts=3
        )
        record.fail_compensation(1, failure, now=NOW)
        assert record.status == ExecutionStatus.COMPENSATION_FAILED
        assert record.is_terminal
        assert record.compensation_failure == failure
        assert record.steps[0].status == StepStatus.COMPLETED

    def test_cancel_failure_leaves_slots_untouched(self) -> None:
        record = _record()
        record.request_cancel(now=NOW)
        cancel = Failure(kind=FailureKind.CANCELLED, step_name="a", message="cancelled")
        record.fail(cancel, now=NOW)
        assert record.cancel_requested
        assert record.status == ExecutionStatus.FAILED
        assert record.steps[0].status == StepStatus.PENDING


# ═══════════════════════════════════════════════════════════════════════
# Terminal immutability
# ═══════════════════════════════════════════════════════════════════════


class TestTerminalImmutability:
    def _completed(self) -> ExecutionRecord:
        record = _record("a")
        record.complete_step(0, {}, attempts=1, now=NOW)
        record.advance(now=NOW)
        return record

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda r: r.complete_step(0, {}, attempts=1),
            lambda r: r.request_cancel(),
            lambda r: r.fail(_failure("a")),
            lambda r: r.begin_compensation(),
            lambda r: r.record_recovery(),
            lambda r: r.resume({}, "x"),
        ],
    )
    def test_terminal_record_rejects_mutation(self, mutate) -> None:  # type: ignore[no-untyped-def]
        record = self._completed()
        with pytest.raises(AlreadyTerminalError):
            mutate(record)
        assert record.status == ExecutionStatus.COMPLETED

    def test_snapshot_is_independent(self) -> None:
        record = _record()
        copy = record.snapshot()
        copy.steps.clear()
        assert len(record.steps) == 3
