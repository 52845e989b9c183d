"""Pytest configuration and shared fixtures."""

import os
from collections.abc import AsyncGenerator, Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# Set test environment
os.environ.setdefault("EMBELLISHMENT_LOG_LEVEL", "DEBUG")
os.environ.setdefault("EMBELLISHMENT_RETRY_DELAY_MS", "0")

from src.capabilities.registry import (  # noqa: E402
    CapabilityDescriptor,
    CapabilityRegistry,
    ExtractionDescriptor,
)
from src.core.config import Settings  # noqa: E402
from src.core.exceptions import DispatchError  # noqa: E402
from src.events.bus import CORRELATION_CONTEXT_KEY, CompletionEvent, CompletionEventBus  # noqa: E402
from src.orchestration.service import EmbellishmentService  # noqa: E402
from src.store.base import Resource  # noqa: E402
from src.store.memory import InMemoryResourceStore, InMemoryTaskStore  # noqa: E402

OWNER_ID = "user-1"
RESOURCE_ID = "collection-1"


class RecordingEngine:
    """
    Execution engine double.

    Records every dispatch and never publishes on its own: tests decide
    when, and with which payload, a completion event arrives.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.results: dict[str, Any] = {}
        self.reject_indices: set[int] = set()
        self.reject_all = False
        self.on_start: Any = None

    async def start_execution(self, capability_id: str, context: dict[str, Any]) -> str:
        self.calls.append((capability_id, context))
        if self.on_start is not None:
            self.on_start(capability_id, context)

        correlation = context.get(CORRELATION_CONTEXT_KEY) or {}
        if self.reject_all or correlation.get("index") in self.reject_indices:
            raise DispatchError("Capability rejected the request")
        return f"ref-{len(self.calls)}"

    async def fetch_result(self, result_ref: str) -> Any:
        return self.results.get(result_ref)

    def dispatches_for(self, index: int) -> list[dict[str, Any]]:
        """Contexts of every task dispatch for ``index``."""
        return [
            context
            for _, context in self.calls
            if (context.get(CORRELATION_CONTEXT_KEY) or {}).get("index") == index
        ]

    def last_context(self, index: int) -> dict[str, Any]:
        return self.dispatches_for(index)[-1]

    def external_ref_of(self, context: dict[str, Any]) -> str:
        for position, (_, recorded) in enumerate(self.calls, start=1):
            if recorded is context:
                return f"ref-{position}"
        raise KeyError("context was never dispatched")


@pytest.fixture
def mock_settings() -> Generator:
    """Provide mock settings for testing."""
    from src.core.config import clear_settings_cache

    # Clear any cached settings
    clear_settings_cache()

    yield

    # Clear again after test
    clear_settings_cache()


@pytest.fixture
def caption_capability() -> CapabilityDescriptor:
    """A text-producing capability."""
    return CapabilityDescriptor(
        slug="joycaption",
        type="caption",
        name="JoyCaption",
        extraction=ExtractionDescriptor(path="text", value_type="text"),
    )


@pytest.fixture
def control_capability() -> CapabilityDescriptor:
    """A URL-producing capability."""
    return CapabilityDescriptor(
        slug="depth-map",
        type="control-image",
        name="Depth map",
        extraction=ExtractionDescriptor(path="data.value", value_type="url"),
    )


@pytest.fixture
def registry(
    caption_capability: CapabilityDescriptor,
    control_capability: CapabilityDescriptor,
) -> CapabilityRegistry:
    """Registry with one text and one URL capability."""
    return CapabilityRegistry([caption_capability, control_capability])


@pytest.fixture
def resource_store() -> InMemoryResourceStore:
    """Resource store holding one resource with five units."""
    store = InMemoryResourceStore()
    store.add_resource(
        Resource(
            id=RESOURCE_ID,
            owner_id=OWNER_ID,
            units=[f"https://cdn.example.com/image-{i}.png" for i in range(5)],
        )
    )
    return store


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def bus() -> CompletionEventBus:
    return CompletionEventBus()


@pytest.fixture
def engine() -> RecordingEngine:
    return RecordingEngine()


@pytest.fixture
def channel() -> MagicMock:
    """Notification channel recording every message."""
    channel = MagicMock()
    channel.send_to_user = AsyncMock()
    return channel


@pytest_asyncio.fixture
async def service(
    task_store: InMemoryTaskStore,
    resource_store: InMemoryResourceStore,
    registry: CapabilityRegistry,
    bus: CompletionEventBus,
    engine: RecordingEngine,
    channel: MagicMock,
) -> AsyncGenerator[EmbellishmentService, None]:
    """Service with a concurrency limit of 2, 3 retries and no retry delay."""
    service = EmbellishmentService(
        task_store=task_store,
        resource_store=resource_store,
        registry=registry,
        bus=bus,
        engine=engine,
        channel=channel,
        settings=Settings(),
        concurrency_limit=2,
        max_retries=3,
        retry_delay=0,
    )

    yield service

    await service.close()


def _sent_statuses(channel: MagicMock, message_type: str = "embellishment_progress") -> list[str]:
    return [
        call.args[1]["payload"]["status"]
        for call in channel.send_to_user.await_args_list
        if call.args[1]["type"] == message_type
    ]


async def _complete_item(
    bus: CompletionEventBus,
    engine: RecordingEngine,
    index: int,
    payload: Any = None,
) -> CompletionEvent:
    context = engine.last_context(index)
    event = CompletionEvent.for_context(
        context,
        external_ref=engine.external_ref_of(context),
        final_result_ref=f"result-{index}",
        inline_snapshot=payload if payload is not None else {"result": f"caption {index}"},
    )
    await bus.publish(event)
    return event


@pytest.fixture
def sent_statuses(channel: MagicMock):
    """Statuses of every notification of a given type sent so far."""

    def statuses(message_type: str = "embellishment_progress") -> list[str]:
        return _sent_statuses(channel, message_type)

    return statuses


@pytest.fixture
def complete_item(bus: CompletionEventBus, engine: RecordingEngine):
    """Publish the completion event of the latest dispatch of an index."""

    async def complete(index: int, payload: Any = None) -> CompletionEvent:
        return await _complete_item(bus, engine, index, payload)

    return complete


# Markers
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
