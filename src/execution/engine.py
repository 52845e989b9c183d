"""
Execution engine interface.

The engine performs a unit of work asynchronously: ``start_execution``
returns as soon as the work is accepted and the outcome arrives later as
a completion event on the bus.
"""

import asyncio
import random
from collections.abc import Callable
from typing import Any, Protocol
from uuid import uuid4

from loguru import logger

from src.core.exceptions import DispatchError
from src.events.bus import CompletionEvent, CompletionEventBus

ResultFactory = Callable[[str, dict[str, Any]], Any]


class ExecutionEngine(Protocol):
    """Asynchronous capability execution."""

    async def start_execution(self, capability_id: str, context: dict[str, Any]) -> str:
        """Trigger execution; returns an external reference. May raise on rejection."""
        ...

    async def fetch_result(self, result_ref: str) -> Any:
        """Fetch a persisted result by reference; None when unknown."""
        ...


def _default_result(capability_id: str, context: dict[str, Any]) -> dict[str, Any]:
    overrides = context.get("parameter_overrides", {})
    return {"response_payload": {"result": f"Simulated {capability_id} output for {overrides}"}}


class SimulatedExecutionEngine:
    """
    Engine that simulates execution without calling a provider.

    Every accepted dispatch is answered after ``delay`` seconds by a
    completion event carrying the payload built by ``result_factory``.
    Useful for exercising the orchestration pipeline end to end.

    Example:
        >>> bus = CompletionEventBus()
        >>> engine = SimulatedExecutionEngine(bus, delay=0.05)
        >>> ref = await engine.start_execution("joycaption", context)
    """

    def __init__(
        self,
        bus: CompletionEventBus,
        delay: float = 0.1,
        failure_rate: float = 0.0,
        rejection_rate: float = 0.0,
        result_factory: ResultFactory | None = None,
    ):
        """
        Initialize simulated engine.

        Args:
            bus: Bus completion events are published on.
            delay: Simulated execution time in seconds.
            failure_rate: Probability that a result carries no usable value.
            rejection_rate: Probability that a dispatch is rejected outright.
            result_factory: Builds the result payload for a dispatch.
        """
        self.bus = bus
        self.delay = delay
        self.failure_rate = failure_rate
        self.rejection_rate = rejection_rate
        self.result_factory = result_factory or _default_result
        self._results: dict[str, Any] = {}
        self._pending: set[asyncio.Task[None]] = set()

    async def start_execution(self, capability_id: str, context: dict[str, Any]) -> str:
        if random.random() < self.rejection_rate:
            raise DispatchError(f"Simulated rejection of {capability_id}")

        external_ref = str(uuid4())
        task = asyncio.create_task(self._complete(external_ref, capability_id, context))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        logger.debug(f"Simulated execution {external_ref} started for {capability_id}")
        return external_ref

    async def fetch_result(self, result_ref: str) -> Any:
        return self._results.get(result_ref)

    async def _complete(self, external_ref: str, capability_id: str, context: dict[str, Any]) -> None:
        await asyncio.sleep(self.delay)

        if random.random() < self.failure_rate:
            payload: Any = {"response_payload": {}}
        else:
            payload = self.result_factory(capability_id, context)

        result_ref = f"result-{external_ref}"
        self._results[result_ref] = payload

        await self.bus.publish(
            CompletionEvent.for_context(
                context,
                external_ref=external_ref,
                final_result_ref=result_ref,
                inline_snapshot=payload,
            )
        )

    async def wait_idle(self) -> None:
        """Wait for every simulated execution to publish its event."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
