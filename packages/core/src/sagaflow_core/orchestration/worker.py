"""DeadlineSweeper — delivers timeouts and re-drives stalled executions."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from sagaflow_core.exceptions import (
    ConcurrencyConflictError,
    ProtocolViolationError,
)
from sagaflow_core.instrumentation import get_hook_registry
from sagaflow_core.ports.background_worker import IBackgroundWorker

from .context import TIMEOUT_EVENT
from .record import ExecutionStatus

if TYPE_CHECKING:
    from datetime import timedelta

    from .gateway import ResumeGateway
    from .orchestrator import Orchestrator

logger = logging.getLogger("sagaflow.worker")


class DeadlineSweeper(IBackgroundWorker):
    """
    Reactive background worker for WAITING deadlines and stalled runs.

    Each cycle:

    1. delivers the reserved ``"timeout"`` event to WAITING records whose
       deadline has passed;
    2. if ``stall_threshold`` is set, calls ``recover`` on FAILED and
       COMPENSATING records not updated within it (and on RUNNING ones too
       when ``recover_running`` is set; their current step runs again).

    Losing a race to another writer is expected and only logged. Uses an
    event-driven trigger plus polling fallback: call :meth:`trigger` to
    wake immediately, otherwise the worker runs every ``poll_interval``
    seconds.

    Implements ``IBackgroundWorker``.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        gateway: ResumeGateway,
        *,
        poll_interval: float = 30.0,
        batch_size: int = 10,
        stall_threshold: timedelta | None = None,
        recover_running: bool = False,
    ) -> None:
        self.orchestrator = orchestrator
        self.gateway = gateway
        self._poll_interval = poll_interval
        self.batch_size = batch_size
        self.stall_threshold = stall_threshold
        self.recover_running = recover_running
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._trigger = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._running

    def trigger(self) -> None:
        """Wake the worker immediately (e.g. after a run stalls)."""
        self._trigger.set()

    async def start(self) -> None:
        """Start the background loop."""
        if self._running:
            logger.warning("DeadlineSweeper already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("DeadlineSweeper started (poll_interval=%.1fs)", self._poll_interval)

    async def stop(self) -> None:
        """Stop the background loop gracefully."""
        if not self._running:
            return
        self._running = False
        self._trigger.set()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        logger.info("DeadlineSweeper stopped")

    async def run_once(self) -> int:
        """Execute a single cycle (tests or manual trigger).

        Returns the number of executions advanced.
        """
        return await get_hook_registry().execute_all(
            "orchestration.sweeper.run_once",
            {"batch_size": self.batch_size},
            self._process_cycle,
        )

    async def _run_loop(self) -> None:
        while self._running:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._trigger.wait(), timeout=self._poll_interval)
            self._trigger.clear()
            try:
                await self._process_cycle()
            except Exception as exc:  # noqa: BLE001
                logger.error("Error in DeadlineSweeper cycle: %s", exc)

    async def _process_cycle(self) -> int:
        advanced = 0
        try:
            advanced += await self._deliver_timeouts()
        except Exception as exc:  # noqa: BLE001
            logger.error("Error delivering timeouts: %s", exc)

        if self.stall_threshold is not None:
            try:
                advanced += await self._recover_stalled()
            except Exception as exc:  # noqa: BLE001
                logger.error("Error recovering stalled executions: %s", exc)
        return advanced

    async def _deliver_timeouts(self) -> int:
        now = self.orchestrator.clock.now()
        expired = await self.orchestrator.store.find_expired_waiting(
            now, limit=self.batch_size
        )
        delivered = 0
        for record in expired:
            try:
                await self.gateway.resume(record.id, TIMEOUT_EVENT)
            except (ConcurrencyConflictError, ProtocolViolationError) as exc:
                logger.info("Timeout for execution %s skipped: %s", record.id, exc)
                continue
            except Exception:
                logger.exception("Timeout delivery to execution %s failed", record.id)
                continue
            delivered += 1
            logger.debug("Delivered timeout to execution %s", record.id)
        return delivered

    async def _recover_stalled(self) -> int:
        if self.stall_threshold is None:
            return 0
        statuses = [ExecutionStatus.FAILED, ExecutionStatus.COMPENSATING]
        if self.recover_running:
            statuses.append(ExecutionStatus.RUNNING)
        cutoff = self.orchestrator.clock.now() - self.stall_threshold
        stalled = await self.orchestrator.store.find_by_status(
            statuses, updated_before=cutoff, limit=self.batch_size
        )
        recovered = 0
        for record in stalled:
            try:
                await self.orchestrator.recover(record.id)
            except (ConcurrencyConflictError, ProtocolViolationError) as exc:
                logger.info("Recovery of execution %s skipped: %s", record.id, exc)
                continue
            except Exception:
                logger.exception("Recovery of execution %s failed", record.id)
                continue
            recovered += 1
        return recovered
