"""bootstrap_orchestration — one-call wiring for orchestration infrastructure."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .gateway import ResumeGateway
from .orchestrator import Orchestrator
from .registry import DefinitionRegistry

if TYPE_CHECKING:
    from datetime import timedelta

    from ..ports.clock import IClock
    from ..ports.execution_store import IExecutionStore
    from .retry import RetryPolicy
    from .steps import OrchestrationDefinition
    from .worker import DeadlineSweeper

logger = logging.getLogger("sagaflow.orchestration")


class OrchestrationBootstrapResult:
    """Container returned by :func:`bootstrap_orchestration` with all wired components.

    Attributes:
        registry: The :class:`DefinitionRegistry` with all definitions registered.
        orchestrator: The :class:`Orchestrator`.
        gateway: The :class:`ResumeGateway` bound to the orchestrator.
        sweeper: Optional :class:`DeadlineSweeper` (if ``sweep_interval``
            was provided).
    """

    def __init__(
        self,
        registry: DefinitionRegistry,
        orchestrator: Orchestrator,
        gateway: ResumeGateway,
        sweeper: DeadlineSweeper | None = None,
    ) -> None:
        self.registry = registry
        self.orchestrator = orchestrator
        self.gateway = gateway
        self.sweeper = sweeper


def bootstrap_orchestration(
    *,
    definitions: list[OrchestrationDefinition[Any]],
    store: IExecutionStore,
    clock: IClock | None = None,
    registry: DefinitionRegistry | None = None,
    default_retry: RetryPolicy | None = None,
    compensation_retry: RetryPolicy | None = None,
    sweep_interval: float | None = None,
    sweep_batch_size: int = 10,
    stall_threshold: timedelta | None = None,
    recover_running: bool = False,
) -> OrchestrationBootstrapResult:
    """Wire up the complete orchestration infrastructure in one call.

    1. Registers every definition in the :class:`DefinitionRegistry`, so
       executions can be resumed and recovered by a process that never
       submitted them.
    2. Creates the :class:`Orchestrator` (and its Step Runner) on *store*.
    3. Creates the :class:`ResumeGateway`.
    4. Optionally creates a :class:`DeadlineSweeper` and registers its
       ``trigger`` as the orchestrator's recovery callback.

    Parameters
    ----------
    definitions:
        Orchestration definitions to register.
    store:
        Execution Record persistence implementation.
    clock:
        Time source; defaults to :class:`SystemClock`.
    registry:
        Optional pre-existing :class:`DefinitionRegistry`.
    default_retry:
        Forward retry policy for steps that declare none (default: single
        attempt).
    compensation_retry:
        Compensation retry policy for steps that declare none (default:
        three attempts).
    sweep_interval:
        If set, creates a :class:`DeadlineSweeper` polling at this interval
        (in seconds). The caller must ``await sweeper.start()``.
    sweep_batch_size:
        Records handled per sweep phase.
    stall_threshold:
        Age after which FAILED / COMPENSATING (and, with
        ``recover_running``, RUNNING) records are recovered by the sweeper.

    Example
    -------
    ::

        result = bootstrap_orchestration(
            definitions=[order_fulfilment],
            store=SQLAlchemyExecutionStore(session_factory),
            sweep_interval=30,
            stall_threshold=timedelta(minutes=5),
        )
        await result.sweeper.start()
        outcome = await result.orchestrator.submit(order_fulfilment, ctx)
    """
    # 1. Registry
    definition_registry = registry or DefinitionRegistry()
    for definition in definitions:
        definition_registry.register(definition)

    # 2. Orchestrator
    orchestrator = Orchestrator(
        store,
        clock=clock,
        registry=definition_registry,
        default_retry=default_retry,
        compensation_retry=compensation_retry,
    )

    # 3. Gateway
    gateway = ResumeGateway(orchestrator)

    # 4. Sweeper (reactive: trigger on stall + poll fallback)
    sweeper: DeadlineSweeper | None = None
    if sweep_interval is not None:
        from .worker import DeadlineSweeper

        sweeper = DeadlineSweeper(
            orchestrator,
            gateway,
            poll_interval=float(sweep_interval),
            batch_size=sweep_batch_size,
            stall_threshold=stall_threshold,
            recover_running=recover_running,
        )
        orchestrator.set_recovery_trigger(sweeper.trigger)

    logger.info(
        "Orchestration bootstrap complete: %d definitions registered, sweeper=%s",
        len(definitions),
        f"{sweep_interval}s" if sweep_interval is not None else "disabled",
    )

    return OrchestrationBootstrapResult(
        registry=definition_registry,
        orchestrator=orchestrator,
        gateway=gateway,
        sweeper=sweeper,
    )


__all__ = ["OrchestrationBootstrapResult", "bootstrap_orchestration"]
