"""IIdempotencyStore — remembers results of already-executed step invocations."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class IIdempotencyStore(Protocol):
    """
    Key → recorded result store backing the ``idempotent`` step wrapper.

    Results are stored in JSON-compatible form. Implementations may expire
    entries after ``ttl_seconds``.
    """

    async def get(self, key: str) -> dict[str, Any] | None:
        """Return the recorded result for *key*, or ``None``."""
        ...

    async def put(
        self, key: str, result: dict[str, Any], *, ttl_seconds: int | None = None
    ) -> None:
        """Record *result* under *key*."""
        ...
