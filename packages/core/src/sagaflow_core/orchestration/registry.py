"""DefinitionRegistry — maps orchestration names to definitions."""

from __future__ import annotations

import logging
from typing import Any

from sagaflow_core.exceptions import (
    DefinitionNotFoundError,
    OrchestrationConfigurationError,
)

from .steps import OrchestrationDefinition

logger = logging.getLogger("sagaflow.orchestration")


class DefinitionRegistry:
    """
    Injectable registry of orchestration definitions by name.

    The Orchestrator registers a definition on first submit; the Resume
    Gateway and recovery look definitions up by the name stored in the
    Execution Record, so a process that only resumes must register its
    definitions up front (see :func:`bootstrap_orchestration`).
    """

    def __init__(self) -> None:
        self._definitions: dict[str, OrchestrationDefinition[Any]] = {}

    def register(self, definition: OrchestrationDefinition[Any]) -> None:
        """Register *definition*. Re-registering the same object is a no-op."""
        existing = self._definitions.get(definition.name)
        if existing is definition:
            return
        if existing is not None:
            raise OrchestrationConfigurationError(
                f"A different definition named {definition.name!r} is already "
                "registered."
            )
        self._definitions[definition.name] = definition
        logger.debug(
            "Registered orchestration %s (%d steps)",
            definition.name,
            len(definition.steps),
        )

    def get(self, name: str) -> OrchestrationDefinition[Any] | None:
        return self._definitions.get(name)

    def require(self, name: str) -> OrchestrationDefinition[Any]:
        """Return the definition registered as *name* or raise."""
        definition = self._definitions.get(name)
        if definition is None:
            raise DefinitionNotFoundError(name)
        return definition

    @property
    def names(self) -> list[str]:
        return list(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def clear(self) -> None:
        """Remove all registrations."""
        self._definitions.clear()
