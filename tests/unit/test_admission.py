"""Unit tests for concurrency admission."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.core.state import EmbellishmentTask, ItemStatus, TaskStatus
from src.orchestration.admission import ActiveItemTracker, AdmissionController
from src.store.memory import InMemoryTaskStore


async def _running_task(store: InMemoryTaskStore, unit_count: int = 5) -> EmbellishmentTask:
    task = EmbellishmentTask.create(
        resource_id="collection-1",
        owner_id="user-1",
        task_type="caption",
        method="joycaption",
        unit_count=unit_count,
    )
    await store.create_task(task)
    await store.set_status(task.id, TaskStatus.RUNNING)
    return task


@pytest.fixture
def tracker() -> ActiveItemTracker:
    return ActiveItemTracker()


@pytest.fixture
def dispatch() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def finalize() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def controller(
    task_store: InMemoryTaskStore,
    tracker: ActiveItemTracker,
    dispatch: AsyncMock,
    finalize: AsyncMock,
) -> AdmissionController:
    return AdmissionController(task_store, tracker, 2, dispatch, finalize)


class TestActiveItemTracker:
    """Tests for ActiveItemTracker."""

    def test_add_and_discard(self, tracker: ActiveItemTracker) -> None:
        tracker.add("task-1", 0)
        tracker.add("task-1", 1)
        tracker.discard("task-1", 0)
        tracker.discard("task-2", 5)

        assert tracker.active("task-1") == frozenset({1})
        assert tracker.active("task-2") == frozenset()

    def test_tasks_are_sharded(self, tracker: ActiveItemTracker) -> None:
        tracker.add("task-1", 0)
        tracker.add("task-2", 0)

        assert tracker.lock("task-1") is not tracker.lock("task-2")
        assert tracker.lock("task-1") is tracker.lock("task-1")
        assert sorted(tracker.tracked_tasks) == ["task-1", "task-2"]

    def test_clear(self, tracker: ActiveItemTracker) -> None:
        tracker.add("task-1", 0)
        tracker.lock("task-1")
        tracker.clear("task-1")

        assert not tracker.is_tracked("task-1")
        assert tracker.active("task-1") == frozenset()


class TestAdmissionController:
    """Tests for AdmissionController.admit_next."""

    def test_rejects_zero_limit(self, task_store, tracker, dispatch, finalize) -> None:
        with pytest.raises(ValueError):
            AdmissionController(task_store, tracker, 0, dispatch, finalize)

    @pytest.mark.asyncio
    async def test_first_pass_fills_limit(
        self, controller, task_store, tracker, dispatch
    ) -> None:
        task = await _running_task(task_store)

        admitted = await controller.admit_next(task.id)

        assert admitted == [0, 1]
        assert tracker.active(task.id) == frozenset({0, 1})
        stored = await task_store.get_task(task.id)
        assert [item.status for item in stored.items] == [
            ItemStatus.PROCESSING,
            ItemStatus.PROCESSING,
            ItemStatus.PENDING,
            ItemStatus.PENDING,
            ItemStatus.PENDING,
        ]
        assert [call.args[1] for call in dispatch.await_args_list] == [0, 1]

    @pytest.mark.asyncio
    async def test_no_free_slots(self, controller, task_store, dispatch, finalize) -> None:
        task = await _running_task(task_store)
        await controller.admit_next(task.id)
        dispatch.reset_mock()

        assert await controller.admit_next(task.id) == []
        dispatch.assert_not_awaited()
        finalize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_freed_slot_admits_next_in_order(
        self, controller, task_store, tracker
    ) -> None:
        task = await _running_task(task_store)
        await controller.admit_next(task.id)

        await task_store.complete_item(task.id, 0, "result-0")
        tracker.discard(task.id, 0)

        assert await controller.admit_next(task.id) == [2]
        assert tracker.active(task.id) == frozenset({1, 2})

    @pytest.mark.asyncio
    async def test_concurrent_passes_never_over_admit(
        self, controller, task_store, tracker
    ) -> None:
        task = await _running_task(task_store)

        results = await asyncio.gather(*(controller.admit_next(task.id) for _ in range(5)))

        assert sorted(i for admitted in results for i in admitted) == [0, 1]
        assert len(tracker.active(task.id)) == 2

    @pytest.mark.asyncio
    async def test_drained_task_finalizes(
        self, controller, task_store, finalize
    ) -> None:
        task = await _running_task(task_store, unit_count=1)
        await controller.admit_next(task.id)
        await task_store.complete_item(task.id, 0, "result-0")
        controller.tracker.discard(task.id, 0)

        assert await controller.admit_next(task.id) == []
        finalize.assert_awaited_once_with(task.id)

    @pytest.mark.asyncio
    async def test_waits_while_items_active(self, controller, task_store, finalize) -> None:
        task = await _running_task(task_store, unit_count=1)
        await controller.admit_next(task.id)

        await controller.admit_next(task.id)
        finalize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_running_drops_tracking(
        self, controller, task_store, tracker, dispatch
    ) -> None:
        task = await _running_task(task_store)
        await controller.admit_next(task.id)
        await task_store.set_status_if(task.id, TaskStatus.RUNNING, TaskStatus.CANCELLED)
        dispatch.reset_mock()

        assert await controller.admit_next(task.id) == []
        assert not tracker.is_tracked(task.id)
        dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_task(self, controller, dispatch, finalize) -> None:
        assert await controller.admit_next("missing") == []
        dispatch.assert_not_awaited()
        finalize.assert_not_awaited()
