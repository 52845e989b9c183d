"""Completion events and their bus."""

from src.events.bus import (
    CORRELATION_CONTEXT_KEY,
    REGENERATION_CONTEXT_KEY,
    CompletionEvent,
    CompletionEventBus,
    CompletionHandler,
    CorrelationMetadata,
    RegenerationMetadata,
)

__all__ = [
    "CORRELATION_CONTEXT_KEY",
    "REGENERATION_CONTEXT_KEY",
    "CompletionEvent",
    "CompletionEventBus",
    "CompletionHandler",
    "CorrelationMetadata",
    "RegenerationMetadata",
]
