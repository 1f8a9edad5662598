"""Tests for HookRegistry and its context-local accessor."""

from __future__ import annotations

from typing import Any

import pytest

from sagaflow_core.adapters.memory import InMemoryExecutionStore
from sagaflow_core.instrumentation import (
    HookRegistry,
    InstrumentationHook,
    get_hook_registry,
    set_hook_registry,
)
from sagaflow_core.orchestration import (
    Continue,
    OrchestrationBuilder,
    OrchestrationContext,
    Orchestrator,
)


class Tracer:
    """Appends ``enter:``/``exit:`` markers around the continuation."""

    def __init__(self, label: str, trail: list[str]) -> None:
        self.label = label
        self.trail = trail

    async def __call__(
        self, operation: str, attributes: dict[str, Any], next_handler: Any
    ) -> Any:
        self.trail.append(f"enter:{self.label}")
        try:
            return await next_handler()
        finally:
            self.trail.append(f"exit:{self.label}")


def handler_for(trail: list[str], value: Any = None) -> Any:
    async def handler() -> Any:
        trail.append("op")
        return value

    return handler


# ═══════════════════════════════════════════════════════════════════════
# Ordering
# ═══════════════════════════════════════════════════════════════════════


class TestOrdering:
    def test_tracer_satisfies_protocol(self) -> None:
        assert isinstance(Tracer("t", []), InstrumentationHook)

    @pytest.mark.asyncio()
    async def test_lower_priority_wraps_outside(self) -> None:
        trail: list[str] = []
        registry = HookRegistry()
        registry.register(Tracer("metrics", trail), priority=5)
        registry.register(Tracer("tracing", trail), priority=-5)

        result = await registry.execute_all("orchestration.submit", {}, handler_for(trail, 42))

        assert result == 42
        assert trail == ["enter:tracing", "enter:metrics", "op", "exit:metrics", "exit:tracing"]

    @pytest.mark.asyncio()
    async def test_equal_priority_keeps_registration_order(self) -> None:
        trail: list[str] = []
        registry = HookRegistry()
        registry.register(Tracer("first", trail))
        registry.register(Tracer("second", trail))

        await registry.execute_all("orchestration.cancel", {}, handler_for(trail))
        assert trail[:2] == ["enter:first", "enter:second"]

    @pytest.mark.asyncio()
    async def test_hook_may_short_circuit(self) -> None:
        trail: list[str] = []
        registry = HookRegistry()

        async def deny(operation: str, attributes: dict[str, Any], next_handler: Any) -> str:
            return "denied"

        registry.register(deny)
        assert await registry.execute_all("x", {}, handler_for(trail)) == "denied"
        assert trail == []

    @pytest.mark.asyncio()
    async def test_errors_propagate_through_hooks(self) -> None:
        trail: list[str] = []
        registry = HookRegistry()
        registry.register(Tracer("outer", trail))

        async def boom() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await registry.execute_all("x", {}, boom)
        assert trail == ["enter:outer", "exit:outer"]


# ═══════════════════════════════════════════════════════════════════════
# Filtering
# ═══════════════════════════════════════════════════════════════════════


class TestFiltering:
    @pytest.mark.asyncio()
    async def test_operation_patterns_and_orchestration_names(self) -> None:
        trail: list[str] = []
        registry = HookRegistry()
        registry.register(
            Tracer("steps", trail),
            operations=["orchestration.step.*"],
            orchestrations=["order_fulfilment"],
        )
        handler = handler_for(trail)

        await registry.execute_all(
            "orchestration.step.compensate", {"orchestration.name": "order_fulfilment"}, handler
        )
        await registry.execute_all(
            "orchestration.step.forward", {"orchestration.name": "refunds"}, handler
        )
        await registry.execute_all(
            "orchestration.resume", {"orchestration.name": "order_fulfilment"}, handler
        )
        await registry.execute_all("orchestration.step.forward", {}, handler)

        assert trail == ["enter:steps", "op", "exit:steps", "op", "op", "enter:steps", "op", "exit:steps"]

    @pytest.mark.asyncio()
    async def test_predicate_sees_attributes(self) -> None:
        trail: list[str] = []
        registry = HookRegistry()
        registry.register(
            Tracer("retries", trail),
            predicate=lambda _op, attrs: attrs.get("step.attempt", 1) > 1,
        )

        await registry.execute_all("orchestration.step.forward", {"step.attempt": 1}, handler_for(trail))
        assert trail == ["op"]

        trail.clear()
        await registry.execute_all("orchestration.step.forward", {"step.attempt": 3}, handler_for(trail))
        assert trail[0] == "enter:retries"

    @pytest.mark.asyncio()
    async def test_toggling_enabled(self) -> None:
        trail: list[str] = []
        registry = HookRegistry()
        registration = registry.register(
            Tracer("toggle", trail), operations=["orchestration.*"], enabled=False
        )

        await registry.execute_all("orchestration.recover", {}, handler_for(trail))
        assert trail == ["op"]

        registration.enabled = True
        trail.clear()
        await registry.execute_all("orchestration.recover", {}, handler_for(trail))
        assert trail[0] == "enter:toggle"

    @pytest.mark.asyncio()
    async def test_clear_removes_registrations(self) -> None:
        trail: list[str] = []
        registry = HookRegistry()
        registry.register(Tracer("gone", trail), operations=["*"])
        await registry.execute_all("x", {}, handler_for(trail))

        registry.clear()
        trail.clear()
        await registry.execute_all("x", {}, handler_for(trail))
        assert trail == ["op"]


# ═══════════════════════════════════════════════════════════════════════
# Context-local registry
# ═══════════════════════════════════════════════════════════════════════


class CountingContext(OrchestrationContext):
    count: int = 0


class TestContextRegistry:
    def test_accessor_is_stable_within_a_context(self) -> None:
        assert get_hook_registry() is get_hook_registry()

    @pytest.mark.asyncio()
    async def test_orchestrator_uses_the_installed_registry(self) -> None:
        previous = get_hook_registry()
        seen: list[tuple[str, Any]] = []

        async def record(operation: str, attributes: dict[str, Any], next_handler: Any) -> Any:
            seen.append((operation, attributes.get("step.name")))
            return await next_handler()

        registry = HookRegistry()
        registry.register(record, operations=["orchestration.step.forward"])
        set_hook_registry(registry)
        try:
            definition = (
                OrchestrationBuilder("counting", CountingContext)
                .step("bump", lambda ctx: Continue(ctx.model_copy(update={"count": ctx.count + 1})))
                .step("bump_again", lambda ctx: Continue(ctx.model_copy(update={"count": ctx.count + 1})))
                .build()
            )
            await Orchestrator(InMemoryExecutionStore()).submit(definition, CountingContext())
        finally:
            set_hook_registry(previous)

        assert seen == [
            ("orchestration.step.forward", "bump"),
            ("orchestration.step.forward", "bump_again"),
        ]
