"""Context values threaded through an orchestration."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field

TIMEOUT_EVENT = "timeout"
"""Reserved event type delivered when a WAITING record passes its deadline."""


class ResumeEvent(BaseModel):
    """An external event delivered to a waiting execution."""

    model_config = ConfigDict(frozen=True)

    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_timeout(self) -> bool:
        """Return *True* if this is the deadline-expiry event."""
        return self.event_type == TIMEOUT_EVENT


class OrchestrationContext(BaseModel):
    """Base class for caller-defined orchestration contexts.

    Contexts are immutable: a forward action returns a new value, usually
    via ``model_copy(update=...)``. Everything a step needs travels in the
    context as an explicit field; a resumed step finds the triggering
    event in :attr:`last_event`.

    Usage::

        class OrderContext(OrchestrationContext):
            order_id: str
            reservation_id: str = ""
            payment_id: str = ""
    """

    model_config = ConfigDict(frozen=True)

    last_event: ResumeEvent | None = None


C = TypeVar("C", bound=OrchestrationContext)


def merge_event(context: C, event: ResumeEvent) -> C:
    """Return a new context with *event* merged in.

    Payload keys that name declared context fields overwrite those fields;
    the event itself is always exposed through ``last_event``. The result
    is re-validated against the context type.
    """
    fields = type(context).model_fields
    updates = {
        key: value
        for key, value in event.payload.items()
        if key in fields and key != "last_event"
    }
    data = context.model_dump()
    data.update(updates)
    data["last_event"] = event
    return type(context).model_validate(data)


def consume_event(context: C) -> C:
    """Drop ``last_event`` once the resumed step has moved past its wait."""
    if context.last_event is None:
        return context
    return context.model_copy(update={"last_event": None})
