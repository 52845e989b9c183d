"""In-memory store implementations."""

import asyncio
from typing import Any

from loguru import logger

from src.core.exceptions import NotFoundError
from src.core.state import (
    TERMINAL_TASK_STATUSES,
    EmbellishmentTask,
    ItemStatus,
    TaskItem,
    TaskStatus,
    utcnow,
)
from src.store.base import (
    ContainerStatus,
    Resource,
    ResultContainer,
    ResultContainerSpec,
    ResultEntry,
)


class InMemoryTaskStore:
    """
    Task store kept in process memory.

    A single lock serializes every mutation, which makes each item
    transition and its counter update atomic. Item transitions only apply
    while the task is running, so a cancelled or finalized task never
    changes again. Reads return deep copies
    so callers never mutate stored state by accident.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, EmbellishmentTask] = {}
        self._lock = asyncio.Lock()

    async def create_task(self, task: EmbellishmentTask) -> EmbellishmentTask:
        async with self._lock:
            self._tasks[task.id] = task.model_copy(deep=True)
        logger.debug(f"Created task {task.id} with {task.total_items} items")
        return task.model_copy(deep=True)

    async def get_task(self, task_id: str) -> EmbellishmentTask | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def find_running_tasks(self, resource_id: str) -> list[EmbellishmentTask]:
        return [
            task.model_copy(deep=True)
            for task in self._tasks.values()
            if task.resource_id == resource_id and task.status == TaskStatus.RUNNING
        ]

    async def set_status(self, task_id: str, status: TaskStatus) -> None:
        async with self._lock:
            self._apply_status(self._require(task_id), status)

    async def set_status_if(
        self,
        task_id: str,
        expected: TaskStatus,
        status: TaskStatus,
        unresolved_only: bool = False,
    ) -> bool:
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != expected:
                return False
            if unresolved_only and task.completed_items + task.failed_items >= task.total_items:
                return False
            self._apply_status(task, status)
            return True

    async def set_result_container(self, task_id: str, container_id: str) -> None:
        async with self._lock:
            self._require(task_id).result_container_id = container_id

    async def mark_item_processing(self, task_id: str, index: int) -> bool:
        async with self._lock:
            item = self._running_item(task_id, index, ItemStatus.PENDING)
            if item is None:
                return False
            item.status = ItemStatus.PROCESSING
            item.external_ref = None
            return True

    async def set_item_external_ref(self, task_id: str, index: int, external_ref: str) -> None:
        async with self._lock:
            item = self._item(task_id, index)
            if item is not None:
                item.external_ref = external_ref

    async def mark_item_pending_retry(self, task_id: str, index: int, error: str) -> bool:
        async with self._lock:
            item = self._running_item(task_id, index, ItemStatus.PROCESSING)
            if item is None:
                return False
            item.status = ItemStatus.PENDING
            item.retry_count += 1
            item.error = error
            return True

    async def complete_item(self, task_id: str, index: int, result_ref: str | None) -> bool:
        async with self._lock:
            item = self._running_item(task_id, index, ItemStatus.PROCESSING)
            if item is None:
                return False
            item.status = ItemStatus.COMPLETED
            item.result_ref = result_ref
            item.error = None
            item.completed_at = utcnow()
            self._tasks[task_id].completed_items += 1
            return True

    async def fail_item(self, task_id: str, index: int, error: str) -> bool:
        async with self._lock:
            item = self._running_item(task_id, index, ItemStatus.PROCESSING)
            if item is None:
                return False
            item.status = ItemStatus.FAILED
            item.error = error
            self._tasks[task_id].failed_items += 1
            return True

    # -------------------------------------------------------------------------

    def _require(self, task_id: str) -> EmbellishmentTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    def _item(
        self, task_id: str, index: int, expected: ItemStatus | None = None
    ) -> TaskItem | None:
        task = self._tasks.get(task_id)
        item = task.item(index) if task else None
        if item is None or (expected is not None and item.status != expected):
            return None
        return item

    def _running_item(self, task_id: str, index: int, expected: ItemStatus) -> TaskItem | None:
        """Item in ``expected`` status whose task is still running."""
        task = self._tasks.get(task_id)
        if task is None or task.status != TaskStatus.RUNNING:
            return None
        return self._item(task_id, index, expected)

    @staticmethod
    def _apply_status(task: EmbellishmentTask, status: TaskStatus) -> None:
        task.status = status
        if status == TaskStatus.RUNNING and task.started_at is None:
            task.started_at = utcnow()
        if status in TERMINAL_TASK_STATUSES:
            task.completed_at = utcnow()


class InMemoryResourceStore:
    """Resource store kept in process memory."""

    def __init__(self) -> None:
        self._resources: dict[str, Resource] = {}
        self._containers: dict[str, ResultContainer] = {}

    def add_resource(self, resource: Resource) -> Resource:
        """Register a resource."""
        self._resources[resource.id] = resource
        return resource

    async def get_resource(self, resource_id: str) -> Resource | None:
        resource = self._resources.get(resource_id)
        return resource.model_copy(deep=True) if resource else None

    async def create_result_container(self, resource_id: str, spec: ResultContainerSpec) -> str:
        if resource_id not in self._resources:
            raise NotFoundError(f"Resource {resource_id} not found")

        container = ResultContainer(
            resource_id=resource_id,
            type=spec.type,
            method=spec.method,
            created_by=spec.created_by,
            results=[None] * spec.size,
        )
        self._containers[container.id] = container
        return container.id

    async def get_result_container(
        self, resource_id: str, container_id: str
    ) -> ResultContainer | None:
        container = self._containers.get(container_id)
        if container is None or container.resource_id != resource_id:
            return None
        return container.model_copy(deep=True)

    async def write_result_at_index(
        self, resource_id: str, container_id: str, index: int, value: ResultEntry
    ) -> None:
        container = self._require(resource_id, container_id)
        if not 0 <= index < len(container.results):
            raise IndexError(f"Index {index} out of range for container {container_id}")
        container.results[index] = value

    async def set_container_status(
        self,
        resource_id: str,
        container_id: str,
        status: ContainerStatus,
        detail: dict[str, Any] | None = None,
    ) -> None:
        container = self._require(resource_id, container_id)
        container.status = status
        if detail:
            container.detail.update(detail)

    def _require(self, resource_id: str, container_id: str) -> ResultContainer:
        container = self._containers.get(container_id)
        if container is None or container.resource_id != resource_id:
            raise NotFoundError(f"Result container {container_id} not found")
        return container
