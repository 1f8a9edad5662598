"""SystemClock — wall-clock implementation of IClock."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from ..ports.clock import IClock


class SystemClock(IClock):
    """UTC wall clock backed by :func:`asyncio.sleep`."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
