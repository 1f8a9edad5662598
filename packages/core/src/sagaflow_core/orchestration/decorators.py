"""Explicit wrappers composed around a step's forward action.

Both factories return ``wrapper(step_name, forward) -> forward`` so they
plug into :meth:`OrchestrationBuilder.wrap`::

    definition = (
        OrchestrationBuilder("payments", PaymentContext)
        .wrap(audited())
        .wrap(idempotent(store, key=lambda ctx: ctx.payment_request_id))
        .step("charge", charge, compensate=refund)
        .build()
    )

Wrappers registered later run closer to the action.
"""

from __future__ import annotations

import inspect
import json
import logging
import time
from typing import TYPE_CHECKING, Any

from .outcomes import Continue, Jump, Suspend, Terminate

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..ports.idempotency import IIdempotencyStore
    from .context import OrchestrationContext
    from .outcomes import StepOutcome

audit_logger = logging.getLogger("sagaflow.audit")


async def _invoke(forward: Callable[[Any], Any], context: Any) -> Any:
    result = forward(context)
    if inspect.isawaitable(result):
        result = await result
    return result


# ── Idempotency ──────────────────────────────────────────────────────


def _dump_outcome(outcome: StepOutcome[Any]) -> dict[str, Any] | None:
    match outcome:
        case Continue(context=context):
            return {"kind": "continue", "context": context.model_dump(mode="json")}
        case Jump(context=context, target=target):
            return {
                "kind": "jump",
                "context": context.model_dump(mode="json"),
                "target": target,
            }
        case Terminate(context=context, reason=reason):
            return {
                "kind": "terminate",
                "context": context.model_dump(mode="json"),
                "reason": reason,
            }
    return None


def _load_outcome(
    recorded: dict[str, Any], context_type: type[OrchestrationContext]
) -> StepOutcome[Any]:
    context = context_type.model_validate(recorded["context"])
    kind = recorded["kind"]
    if kind == "jump":
        return Jump(context=context, target=recorded["target"])
    if kind == "terminate":
        return Terminate(context=context, reason=recorded.get("reason", ""))
    return Continue(context=context)


def idempotent(
    store: IIdempotencyStore,
    key: Callable[[Any], str],
    *,
    ttl_seconds: int | None = None,
) -> Callable[[str, Callable[[Any], Any]], Callable[[Any], Any]]:
    """Skip the action when its outcome for the same key is already recorded.

    ``key`` is an explicit accessor ``context -> str``; the stored key is
    ``"<step name>:<key>"``. Continue, Jump and Terminate outcomes are
    recorded; a Suspend is not, so a resumed step always re-runs. Failures
    are never recorded.
    """

    def wrapper(
        step_name: str, forward: Callable[[Any], Any]
    ) -> Callable[[Any], Any]:
        async def run(context: Any) -> Any:
            cache_key = f"{step_name}:{key(context)}"
            recorded = await store.get(cache_key)
            if recorded is not None:
                audit_logger.debug("Step %s replayed from %s", step_name, cache_key)
                return _load_outcome(recorded, type(context))
            outcome = await _invoke(forward, context)
            if not isinstance(outcome, Suspend):
                dumped = _dump_outcome(outcome)
                if dumped is not None:
                    await store.put(cache_key, dumped, ttl_seconds=ttl_seconds)
            return outcome

        run.__name__ = getattr(forward, "__name__", step_name)
        return run

    return wrapper


# ── Audit ────────────────────────────────────────────────────────────


def audited(
    sink: Callable[[dict[str, Any]], None] | None = None,
    *,
    fields: Callable[[Any], dict[str, Any]] | None = None,
) -> Callable[[str, Callable[[Any], Any]], Callable[[Any], Any]]:
    """Emit one audit entry per invocation of the wrapped action.

    The entry (step, status, outcome, duration_ms, error, plus anything
    ``fields(context)`` returns) goes to *sink* when given, otherwise it is
    logged as a JSON line on the ``sagaflow.audit`` logger.
    """

    def emit(entry: dict[str, Any]) -> None:
        if sink is not None:
            sink(entry)
        else:
            audit_logger.info(json.dumps(entry, default=str, sort_keys=True))

    def wrapper(
        step_name: str, forward: Callable[[Any], Any]
    ) -> Callable[[Any], Any]:
        async def run(context: Any) -> Any:
            entry: dict[str, Any] = {"step": step_name}
            if fields is not None:
                entry.update(fields(context))
            start = time.perf_counter()
            try:
                outcome = await _invoke(forward, context)
            except Exception as exc:
                entry.update(
                    status="error",
                    error=f"{type(exc).__name__}: {exc}",
                    duration_ms=round((time.perf_counter() - start) * 1000, 2),
                )
                emit(entry)
                raise
            entry.update(
                status="ok",
                outcome=type(outcome).__name__,
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            emit(entry)
            return outcome

        run.__name__ = getattr(forward, "__name__", step_name)
        return run

    return wrapper
