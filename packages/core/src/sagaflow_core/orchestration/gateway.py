"""ResumeGateway — delivers external events to WAITING executions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sagaflow_core.exceptions import EventMismatchError, InvalidStateError
from sagaflow_core.instrumentation import get_hook_registry

from .context import TIMEOUT_EVENT, ResumeEvent
from .record import ExecutionStatus

if TYPE_CHECKING:
    from .orchestrator import Orchestrator
    from .results import ExecutionResult

logger = logging.getLogger("sagaflow.resume")


class ResumeGateway:
    """
    Entry point for the event transport (HTTP endpoint, message consumer…).

    ``resume`` loads the record and enforces the protocol:

    * unknown execution → :class:`ExecutionNotFoundError`
    * status is not WAITING → :class:`InvalidStateError` (this is also what a
      redelivered event gets once the first delivery resumed the record)
    * event type differs from the expected one →
      :class:`EventMismatchError`, record unchanged

    The reserved ``"timeout"`` event is accepted by every WAITING record;
    the waiting step re-runs and sees it through ``context.last_event``.

    Two concurrent deliveries to the same WAITING record race on the
    versioned write: exactly one resumes it, the other raises
    :class:`ConcurrencyConflictError`.
    """

    def __init__(self, orchestrator: Orchestrator) -> None:
        self.orchestrator = orchestrator

    async def resume(
        self,
        execution_id: str,
        event_type: str,
        payload: dict[str, Any] | None = None,
    ) -> ExecutionResult:
        """Deliver an event and drive the execution until it waits or finishes."""
        return await get_hook_registry().execute_all(
            "orchestration.resume",
            {"execution.id": execution_id, "event.type": event_type},
            lambda: self._resume(execution_id, event_type, payload or {}),
        )

    async def _resume(
        self, execution_id: str, event_type: str, payload: dict[str, Any]
    ) -> ExecutionResult:
        record = await self.orchestrator.store.load(execution_id)
        if record.status != ExecutionStatus.WAITING or record.wait is None:
            logger.warning(
                "Rejected %s event for execution %s in status %s",
                event_type,
                execution_id,
                record.status.value,
            )
            raise InvalidStateError(execution_id, record.status.value, "resume")
        expected = record.wait.event_type
        if event_type not in (expected, TIMEOUT_EVENT):
            logger.warning(
                "Rejected %s event for execution %s (waiting for %s)",
                event_type,
                execution_id,
                expected,
            )
            raise EventMismatchError(execution_id, expected, event_type)

        event = ResumeEvent(
            event_type=event_type,
            payload=payload,
            received_at=self.orchestrator.clock.now(),
        )
        return await self.orchestrator.resume_waiting(record, event)
