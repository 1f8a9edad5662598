"""Instrumentation hooks — middleware around orchestration operations.

Every public operation (``orchestration.submit``, ``orchestration.resume``,
``orchestration.cancel``, ``orchestration.recover``,
``orchestration.step.forward``, ``orchestration.step.compensate``,
``orchestration.sweeper.run_once``) is routed through the context-local
:class:`HookRegistry`. A hook receives the operation name, a flat attribute
dict and a zero-argument continuation, and must await the continuation to
let the operation run.
"""

from __future__ import annotations

import fnmatch
import logging
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger("sagaflow.instrumentation")

ORCHESTRATION_ATTRIBUTE = "orchestration.name"
_PATTERN_CACHE_LIMIT = 1024


@runtime_checkable
class InstrumentationHook(Protocol):
    async def __call__(
        self,
        operation: str,
        attributes: dict[str, Any],
        next_handler: Callable[[], Awaitable[Any]],
    ) -> Any: ...


@dataclass
class HookRegistration:
    """One hook plus the rules deciding which operations it sees.

    ``operations`` holds fnmatch patterns (``"orchestration.step.*"``).
    ``orchestrations`` narrows to definition names; operations without an
    ``orchestration.name`` attribute (sweeper cycles) always pass that filter.
    """

    hook: InstrumentationHook
    priority: int = 0
    predicate: Callable[[str, dict[str, Any]], bool] | None = None
    operations: list[str] = field(default_factory=list)
    orchestrations: list[str] = field(default_factory=list)
    enabled: bool = True
    _seen: dict[str, bool] = field(default_factory=dict, repr=False)

    def applies_to(self, operation: str, attributes: dict[str, Any]) -> bool:
        if not self.enabled:
            return False
        if not self._operation_selected(operation):
            return False
        name = attributes.get(ORCHESTRATION_ATTRIBUTE)
        if self.orchestrations and name is not None and name not in self.orchestrations:
            return False
        return self.predicate is None or self.predicate(operation, attributes)

    def _operation_selected(self, operation: str) -> bool:
        if not self.operations:
            return True
        cached = self._seen.get(operation)
        if cached is None:
            if len(self._seen) >= _PATTERN_CACHE_LIMIT:
                self._seen.clear()
            cached = self._seen[operation] = any(
                fnmatch.fnmatchcase(operation, p) for p in self.operations
            )
        return cached

    def clear_cache(self) -> None:
        self._seen.clear()


class HookRegistry:
    """Ordered hook chain; lower ``priority`` runs further outside."""

    def __init__(self) -> None:
        self._registrations: list[HookRegistration] = []

    def register(
        self,
        hook: InstrumentationHook,
        *,
        priority: int = 0,
        predicate: Callable[[str, dict[str, Any]], bool] | None = None,
        operations: list[str] | None = None,
        orchestrations: list[str] | None = None,
        enabled: bool = True,
    ) -> HookRegistration:
        registration = HookRegistration(
            hook,
            priority,
            predicate,
            list(operations or ()),
            list(orchestrations or ()),
            enabled,
        )
        self._registrations.append(registration)
        # stable: equal priorities keep registration order
        self._registrations.sort(key=lambda r: r.priority)
        logger.debug("Registered hook %r (priority=%d)", hook, priority)
        return registration

    async def execute_all(
        self,
        operation: str,
        attributes: dict[str, Any],
        next_handler: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Run ``next_handler`` inside every hook that applies to ``operation``."""
        chain = next_handler
        for registration in reversed(self._registrations):
            if registration.applies_to(operation, attributes):
                chain = _bind(registration.hook, operation, attributes, chain)
        return await chain()

    def clear(self) -> None:
        for registration in self._registrations:
            registration.clear_cache()
        self._registrations.clear()


def _bind(
    hook: InstrumentationHook,
    operation: str,
    attributes: dict[str, Any],
    inner: Callable[[], Awaitable[Any]],
) -> Callable[[], Awaitable[Any]]:
    async def call() -> Any:
        return await hook(operation, attributes, inner)

    return call


_current_registry: ContextVar[HookRegistry | None] = ContextVar(
    "sagaflow_hook_registry", default=None
)


def get_hook_registry() -> HookRegistry:
    """Registry for the current context, created lazily.

    Tasks spawned after the first access share the parent's registry;
    separate test cases start from an empty one.
    """
    registry = _current_registry.get()
    if registry is None:
        registry = HookRegistry()
        _current_registry.set(registry)
    return registry


def set_hook_registry(registry: HookRegistry) -> None:
    _current_registry.set(registry)
