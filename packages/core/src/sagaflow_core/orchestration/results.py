"""ExecutionResult — what submit / resume / cancel / recover return."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from .record import ExecutionRecord, ExecutionStatus, Failure


class ResultKind(str, Enum):
    """Caller-facing summary of an execution's status."""

    RUNNING = "RUNNING"
    WAITING = "WAITING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REQUIRES_ATTENTION = "REQUIRES_ATTENTION"


_KIND_BY_STATUS = {
    ExecutionStatus.RUNNING: ResultKind.RUNNING,
    ExecutionStatus.WAITING: ResultKind.WAITING,
    ExecutionStatus.COMPLETED: ResultKind.SUCCEEDED,
    ExecutionStatus.FAILED: ResultKind.FAILED,
    ExecutionStatus.COMPENSATING: ResultKind.FAILED,
    ExecutionStatus.COMPENSATED: ResultKind.FAILED,
    ExecutionStatus.COMPENSATION_FAILED: ResultKind.REQUIRES_ATTENTION,
}


class ExecutionResult(BaseModel):
    """
    Snapshot of an execution after an orchestration call returns.

    ``kind`` is ``REQUIRES_ATTENTION`` when compensation aborted: the
    ``compensation_failure`` detail names the step whose compensating
    action could not be completed and needs manual intervention.
    """

    model_config = ConfigDict(frozen=True)

    execution_id: str
    orchestration_name: str
    kind: ResultKind
    status: ExecutionStatus
    context: dict[str, Any]
    version: int
    current_step: str | None = None
    waiting_for: str | None = None
    failure: Failure | None = None
    compensation_failure: Failure | None = None
    terminal_reason: str | None = None

    @classmethod
    def from_record(cls, record: ExecutionRecord) -> ExecutionResult:
        return cls(
            execution_id=record.id,
            orchestration_name=record.orchestration_name,
            kind=_KIND_BY_STATUS[record.status],
            status=record.status,
            context=dict(record.context),
            version=record.version,
            current_step=record.current_step_name,
            waiting_for=record.wait.event_type if record.wait else None,
            failure=record.failure,
            compensation_failure=record.compensation_failure,
            terminal_reason=record.terminal_reason,
        )

    @property
    def succeeded(self) -> bool:
        return self.kind == ResultKind.SUCCEEDED

    @property
    def requires_attention(self) -> bool:
        return self.kind == ResultKind.REQUIRES_ATTENTION
