"""
Concurrency admission for running tasks.

Each task has an in-memory set of item indices that were dispatched but
have not resolved yet. Admission fills free slots, up to the concurrency
limit, with pending items in index order. It runs again every time an
item resolves, so progress is driven by completions and never by polling.
"""

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from src.core.state import EmbellishmentTask
from src.store.base import TaskStore

DispatchFn = Callable[[EmbellishmentTask, int], Awaitable[None]]
FinalizeFn = Callable[[str], Awaitable[object]]


class ActiveItemTracker:
    """
    Per-task sets of in-flight item indices.

    Sharded by task id: each task has its own set and its own lock, so
    unrelated tasks never contend.
    """

    def __init__(self) -> None:
        self._active: dict[str, set[int]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, task_id: str) -> asyncio.Lock:
        """Lock serializing admission decisions for one task."""
        return self._locks.setdefault(task_id, asyncio.Lock())

    def active(self, task_id: str) -> frozenset[int]:
        """Snapshot of in-flight indices for a task."""
        return frozenset(self._active.get(task_id, ()))

    def add(self, task_id: str, index: int) -> None:
        self._active.setdefault(task_id, set()).add(index)

    def discard(self, task_id: str, index: int) -> None:
        active = self._active.get(task_id)
        if active is not None:
            active.discard(index)

    def clear(self, task_id: str) -> None:
        """Drop all tracking for a task."""
        self._active.pop(task_id, None)
        lock = self._locks.get(task_id)
        if lock is not None and not lock.locked():
            del self._locks[task_id]

    def is_tracked(self, task_id: str) -> bool:
        return task_id in self._active

    @property
    def tracked_tasks(self) -> list[str]:
        return list(self._active)


class AdmissionController:
    """
    Admit pending items of a task into free concurrency slots.

    Example:
        >>> controller = AdmissionController(store, tracker, 2, dispatch, finalize)
        >>> await controller.admit_next(task_id)
        [0, 1]
    """

    def __init__(
        self,
        store: TaskStore,
        tracker: ActiveItemTracker,
        concurrency_limit: int,
        dispatch: DispatchFn,
        finalize: FinalizeFn,
    ):
        """
        Initialize admission controller.

        Args:
            store: Task store.
            tracker: In-flight item tracking shared with the rest of the service.
            concurrency_limit: Maximum in-flight items per task.
            dispatch: Called for each admitted item; must not block on execution.
            finalize: Called once nothing is pending or in flight.
        """
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self.store = store
        self.tracker = tracker
        self.concurrency_limit = concurrency_limit
        self.dispatch = dispatch
        self.finalize = finalize

    async def admit_next(self, task_id: str) -> list[int]:
        """
        Fill free slots of a task with pending items.

        Args:
            task_id: Task to admit items for.

        Returns:
            Indices admitted by this pass.
        """
        admitted: list[int] = []
        drained = False

        async with self.tracker.lock(task_id):
            task = await self.store.get_task(task_id)
            if task is None or not task.is_running:
                self.tracker.clear(task_id)
                return []

            active = self.tracker.active(task_id)
            pending = task.pending_indices(exclude=active)
            free_slots = self.concurrency_limit - len(active)

            if free_slots <= 0 or not pending:
                drained = not active and not pending
            else:
                for index in pending[:free_slots]:
                    if await self.store.mark_item_processing(task_id, index):
                        self.tracker.add(task_id, index)
                        admitted.append(index)

        if drained:
            await self.finalize(task_id)
            return []

        for index in admitted:
            logger.debug(f"Admitted task {task_id} item {index}")
            await self.dispatch(task, index)

        return admitted
