"""IBackgroundWorker — lifecycle protocol for the sweeper process."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class IBackgroundWorker(Protocol):
    """
    Start/stop surface for long-lived polling tasks.

    ``trigger`` wakes the loop before its poll interval elapses; the
    orchestrator calls it when an execution is left needing recovery.
    """

    @property
    def is_running(self) -> bool: ...

    def trigger(self) -> None: ...

    async def start(self) -> None: ...

    async def stop(self) -> None:
        """Cancel the loop and wait for the current cycle to unwind."""
        ...
