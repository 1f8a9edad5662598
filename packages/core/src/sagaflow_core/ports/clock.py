"""IClock — time source and delay port."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime


@runtime_checkable
class IClock(Protocol):
    """
    Supplies timestamps and waits.

    The Step Runner waits between retry attempts through :meth:`sleep`,
    and the Orchestrator resolves relative suspend deadlines against
    :meth:`now`, so tests can substitute a fake clock.
    """

    def now(self) -> datetime:
        """Current timezone-aware UTC time."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Wait for *seconds*."""
        ...
