"""
Completion events and the in-process event bus.

The execution engine publishes one completion event per finished
dispatch. Events are routed by the correlation metadata embedded in the
dispatch context rather than by per-dispatch callbacks, so they may
arrive late, twice, or out of order.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

# Keys under which routing metadata travels inside a dispatch context
CORRELATION_CONTEXT_KEY = "embellishment_task"
REGENERATION_CONTEXT_KEY = "embellishment_regeneration"


class CorrelationMetadata(BaseModel):
    """Routes a completion event back to a task item."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    resource_id: str
    index: int = Field(ge=0)
    type: str
    method: str


class RegenerationMetadata(BaseModel):
    """Routes a completion event back to a single-item regeneration."""

    model_config = ConfigDict(frozen=True)

    regeneration_id: str
    resource_id: str
    container_id: str
    index: int = Field(ge=0)
    method: str
    requester_id: str


class CompletionEvent(BaseModel):
    """A finished dispatch reported by the execution engine."""

    model_config = ConfigDict(frozen=True)

    correlation: CorrelationMetadata | None = None
    regeneration: RegenerationMetadata | None = None
    owner_id: str | None = None
    external_ref: str | None = None
    final_result_ref: str | None = None
    step_result_refs: list[str] = Field(default_factory=list)
    inline_snapshot: Any = None

    @classmethod
    def for_context(cls, context: dict[str, Any], **fields: Any) -> "CompletionEvent":
        """Build an event carrying the routing metadata of a dispatch context."""
        correlation = context.get(CORRELATION_CONTEXT_KEY)
        regeneration = context.get(REGENERATION_CONTEXT_KEY)
        return cls(
            correlation=CorrelationMetadata.model_validate(correlation) if correlation else None,
            regeneration=(
                RegenerationMetadata.model_validate(regeneration) if regeneration else None
            ),
            owner_id=context.get("owner_id"),
            **fields,
        )

    @property
    def result_ref(self) -> str | None:
        """Reference to the persisted result (last step when no final ref)."""
        if self.final_result_ref:
            return self.final_result_ref
        if self.step_result_refs:
            return self.step_result_refs[-1]
        return None


CompletionHandler = Callable[[CompletionEvent], Awaitable[None]]


class CompletionEventBus:
    """
    Process-wide publish/subscribe channel for completion events.

    Example:
        >>> bus = CompletionEventBus()
        >>> unsubscribe = bus.subscribe(router.handle_event)
        >>> await bus.publish(CompletionEvent(correlation=..., inline_snapshot=...))
    """

    def __init__(self) -> None:
        self._handlers: list[CompletionHandler] = []

    def subscribe(self, handler: CompletionHandler) -> Callable[[], None]:
        """Register a handler; returns a callable that removes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    async def publish(self, event: CompletionEvent) -> None:
        """Deliver an event to every handler; handler errors are logged."""
        if not self._handlers:
            logger.debug("Completion event published with no subscribers")
            return

        results = await asyncio.gather(
            *(handler(event) for handler in list(self._handlers)),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                logger.opt(exception=result).error(
                    f"Error handling completion event: {result}"
                )
