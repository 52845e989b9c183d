"""Unit tests for completion event routing."""

import pytest
import pytest_asyncio

from src.core.state import ItemStatus, TaskStatus
from src.events.bus import CompletionEvent
from src.orchestration.router import is_complete_snapshot


@pytest_asyncio.fixture
async def started(service):
    result = await service.start_task("collection-1", "joycaption", "user-1")
    await service.join()
    return result


class TestSnapshotCompleteness:
    """Tests for is_complete_snapshot."""

    @pytest.mark.parametrize(
        "snapshot",
        [
            {"response_payload": {"result": "x"}},
            {"responsePayload": [{"text": "x"}]},
            {"outputs": {"data": {}}},
            {"result": "x"},
            [{"text": "x"}],
        ],
    )
    def test_complete(self, snapshot) -> None:
        assert is_complete_snapshot(snapshot)

    @pytest.mark.parametrize("snapshot", [None, {}, {"response_payload": {}}, [], "text"])
    def test_incomplete(self, snapshot) -> None:
        assert not is_complete_snapshot(snapshot)


class TestLocatePayload:
    """Tests for CompletionRouter.locate_payload."""

    @pytest.mark.asyncio
    async def test_prefers_inline_snapshot(self, service, engine) -> None:
        engine.results["result-1"] = {"result": "persisted"}
        event = CompletionEvent(final_result_ref="result-1", inline_snapshot={"result": "inline"})

        assert await service.router.locate_payload(event) == {"result": "inline"}

    @pytest.mark.asyncio
    async def test_fetches_when_snapshot_incomplete(self, service, engine) -> None:
        engine.results["step-2"] = {"result": "persisted"}
        event = CompletionEvent(step_result_refs=["step-1", "step-2"], inline_snapshot={})

        assert await service.router.locate_payload(event) == {"result": "persisted"}

    @pytest.mark.asyncio
    async def test_falls_back_to_snapshot(self, service) -> None:
        event = CompletionEvent(final_result_ref="unknown", inline_snapshot={"response_payload": {}})

        assert await service.router.locate_payload(event) == {"response_payload": {}}


class TestEventFiltering:
    """Tests for discarding events that must not change state."""

    @pytest.mark.asyncio
    async def test_event_without_metadata_is_ignored(self, service, bus, task_store, started) -> None:
        await bus.publish(CompletionEvent(external_ref="ref-1", inline_snapshot={"result": "x"}))

        task = await task_store.get_task(started.task_id)
        assert task.completed_items == 0

    @pytest.mark.asyncio
    async def test_duplicate_event_counts_once(
        self, service, bus, task_store, complete_item, started
    ) -> None:
        event = await complete_item(0)
        await bus.publish(event)
        await service.join()

        task = await task_store.get_task(started.task_id)
        assert task.completed_items == 1
        assert task.items[0].status == ItemStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_stale_external_ref_is_discarded(
        self, service, bus, engine, task_store, started
    ) -> None:
        event = CompletionEvent.for_context(
            engine.last_context(0),
            external_ref="ref-from-an-earlier-attempt",
            inline_snapshot={"result": "late"},
        )
        await bus.publish(event)

        task = await task_store.get_task(started.task_id)
        assert task.items[0].status == ItemStatus.PROCESSING
        assert task.completed_items == 0

    @pytest.mark.asyncio
    async def test_unknown_method_is_dropped(
        self, service, registry, task_store, complete_item, started
    ) -> None:
        registry.unregister("joycaption")

        await complete_item(0)

        task = await task_store.get_task(started.task_id)
        assert task.items[0].status == ItemStatus.PROCESSING
        assert task.items[0].retry_count == 0


class TestCompletion:
    """Tests for successful and failed extraction."""

    @pytest.mark.asyncio
    async def test_success_writes_result_and_notifies(
        self, service, resource_store, task_store, complete_item, sent_statuses, started
    ) -> None:
        await complete_item(1, {"response_payload": [{"type": "text", "text": " a dog "}]})

        task = await task_store.get_task(started.task_id)
        assert task.items[1].status == ItemStatus.COMPLETED
        assert task.items[1].result_ref == "result-1"

        container = await resource_store.get_result_container(
            "collection-1", started.result_container_id
        )
        assert container.results[1].value == "a dog"
        assert container.results[1].result_ref == "result-1"
        assert sent_statuses() == ["started", "item_completed"]

    @pytest.mark.asyncio
    async def test_extraction_failure_retries_with_original_parameters(
        self, service, engine, task_store, complete_item, started
    ) -> None:
        first_dispatch = engine.last_context(0)

        await complete_item(0, {"response_payload": {"unexpected": True}})
        await service.join()

        task = await task_store.get_task(started.task_id)
        assert task.status == TaskStatus.RUNNING
        assert task.items[0].retry_count == 1
        assert task.items[0].error == 'Failed to extract result for path "text"'
        assert task.items[0].status == ItemStatus.PROCESSING

        retry_dispatch = engine.last_context(0)
        assert retry_dispatch is not first_dispatch
        assert retry_dispatch["parameter_overrides"] == first_dispatch["parameter_overrides"]
