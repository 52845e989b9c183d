"""End-to-end tests with the simulated execution engine."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from src.core.config import Settings
from src.core.state import TERMINAL_TASK_STATUSES, TaskStatus
from src.events.bus import CompletionEventBus
from src.execution.engine import SimulatedExecutionEngine
from src.orchestration.service import EmbellishmentService, create_service

pytestmark = pytest.mark.integration

CATALOGUE = Path(__file__).parents[2] / "config" / "capabilities.yaml"


def _control_image_result(capability_id: str, context: dict) -> dict:
    return {"outputs": {"data": {"value": f"https://cdn.example.com/{capability_id}.png"}}}


@pytest_asyncio.fixture
async def simulated(
    task_store, resource_store, registry, bus, channel
) -> AsyncGenerator[tuple[EmbellishmentService, SimulatedExecutionEngine], None]:
    engine = SimulatedExecutionEngine(bus, delay=0.01)
    service = EmbellishmentService(
        task_store=task_store,
        resource_store=resource_store,
        registry=registry,
        bus=bus,
        engine=engine,
        channel=channel,
        concurrency_limit=2,
        max_retries=2,
        retry_delay=0,
    )

    yield service, engine

    await engine.wait_idle()
    await service.close()


async def _run_to_end(service: EmbellishmentService, engine: SimulatedExecutionEngine, task_id: str):
    for _ in range(100):
        await service.join()
        await engine.wait_idle()
        task = await service.task_store.get_task(task_id)
        if task.status in TERMINAL_TASK_STATUSES:
            return task
    raise AssertionError("task never reached a terminal status")


class TestSimulatedRun:
    """Tests for whole tasks driven by simulated completions."""

    @pytest.mark.asyncio
    async def test_caption_task_completes(self, simulated, resource_store, sent_statuses) -> None:
        service, engine = simulated

        result = await service.start_task("collection-1", "joycaption", "user-1", {"tone": "dry"})
        task = await _run_to_end(service, engine, result.task_id)

        assert task.status == TaskStatus.COMPLETED
        assert task.completed_items == 5
        container = await resource_store.get_result_container(
            "collection-1", result.result_container_id
        )
        assert all(entry is not None for entry in container.results)
        assert container.results[0].value.startswith("Simulated joycaption output")
        assert sent_statuses().count("item_completed") == 5
        assert sent_statuses()[-1] == "completed"

    @pytest.mark.asyncio
    async def test_empty_results_exhaust_retries(self, simulated, sent_statuses) -> None:
        service, engine = simulated
        engine.failure_rate = 1.0

        result = await service.start_task("collection-1", "joycaption", "user-1")
        task = await _run_to_end(service, engine, result.task_id)

        assert task.status == TaskStatus.FAILED
        assert task.failed_items == 5
        assert all(item.retry_count == 2 for item in task.items)
        assert sent_statuses()[-1] == "failed"

    @pytest.mark.asyncio
    async def test_concurrency_never_exceeds_limit(self, simulated) -> None:
        service, engine = simulated
        observed: list[int] = []
        original = engine.start_execution

        async def watched(capability_id, context):
            task_id = context["embellishment_task"]["task_id"]
            observed.append(len(service.active_items(task_id)))
            return await original(capability_id, context)

        engine.start_execution = watched

        result = await service.start_task("collection-1", "joycaption", "user-1")
        await _run_to_end(service, engine, result.task_id)

        assert observed
        assert max(observed) <= 2


class TestCreateService:
    """Tests for building a service from settings."""

    @pytest.mark.asyncio
    async def test_loads_capability_catalogue(self, resource_store, channel, mock_settings) -> None:
        settings = Settings(embellishment_capabilities_file=str(CATALOGUE), embellishment_concurrency=3)
        bus = CompletionEventBus()
        service = create_service(
            settings=settings,
            engine=SimulatedExecutionEngine(
                bus,
                delay=0.01,
                result_factory=_control_image_result,
            ),
            resource_store=resource_store,
            channel=channel,
            bus=bus,
        )
        try:
            assert service.concurrency_limit == 3
            assert [c.slug for c in service.list_capabilities("control-image")] == [
                "canny-edges",
                "depth-map",
            ]
            assert bus.handler_count == 1

            result = await service.start_task("collection-1", "depth-map", "user-1")
            assert result.type == "control-image"

            task = await _run_to_end(service, service.dispatcher.engine, result.task_id)
            assert task.status == TaskStatus.COMPLETED
        finally:
            await service.close()

    @pytest.mark.asyncio
    async def test_defaults_to_empty_registry(self, resource_store, channel, mock_settings) -> None:
        service = create_service(
            settings=Settings(), resource_store=resource_store, channel=channel
        )
        try:
            assert service.list_capabilities() == []
        finally:
            await service.close()
