"""Shared fixtures for sagaflow-core tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from sagaflow_core.adapters.memory import InMemoryExecutionStore
from sagaflow_core.orchestration import Orchestrator, ResumeGateway
from sagaflow_core.ports.clock import IClock


class FakeClock(IClock):
    """Manually advanced clock; ``sleep`` records the delay and moves time."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += timedelta(seconds=seconds)
        await asyncio.sleep(0)

    def advance(self, delta: timedelta) -> None:
        self.current += delta


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryExecutionStore:
    return InMemoryExecutionStore()


@pytest.fixture
def orchestrator(store: InMemoryExecutionStore, clock: FakeClock) -> Orchestrator:
    return Orchestrator(store, clock=clock)


@pytest.fixture
def gateway(orchestrator: Orchestrator) -> ResumeGateway:
    return ResumeGateway(orchestrator)
