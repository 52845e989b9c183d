"""
Task lifecycle: start, cancel, finalize and progress reads.

Terminal transitions go through a compare-and-set on the task status, so
a cancellation racing with finalization has exactly one winner.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger

from src.capabilities.registry import CapabilityRegistry
from src.core.exceptions import (
    ConflictingTaskError,
    EmptyResourceError,
    ForbiddenError,
    NotFoundError,
)
from src.core.state import (
    CancelResult,
    EmbellishmentTask,
    ProgressStatus,
    StartTaskResult,
    TaskSnapshot,
    TaskStatus,
)
from src.notifications.progress import ProgressNotifier
from src.orchestration.admission import ActiveItemTracker
from src.store.base import ContainerStatus, ResourceStore, ResultContainerSpec, TaskStore

AdmitFn = Callable[[str], Awaitable[object]]

CANCELLED_DETAIL = {"error": "Cancelled by user"}


class TaskLifecycleManager:
    """Owns task creation and every task-level status transition."""

    def __init__(
        self,
        store: TaskStore,
        resources: ResourceStore,
        registry: CapabilityRegistry,
        tracker: ActiveItemTracker,
        notifier: ProgressNotifier,
        admit: AdmitFn,
    ):
        self.store = store
        self.resources = resources
        self.registry = registry
        self.tracker = tracker
        self.notifier = notifier
        self.admit = admit
        self._start_locks: dict[str, asyncio.Lock] = {}
        self._start_waiters: dict[str, int] = {}

    async def start_task(
        self,
        resource_id: str,
        method: str,
        owner_id: str,
        parameter_overrides: dict[str, Any] | None = None,
    ) -> StartTaskResult:
        """
        Create a task over every unit of a resource and start admitting items.

        Args:
            resource_id: Resource to process.
            method: Capability slug applied to each unit.
            owner_id: Requester; must own the resource.
            parameter_overrides: Parameters passed through to every dispatch.

        Returns:
            StartTaskResult with the task and result container ids.

        Raises:
            MethodNotCapable: Unknown method.
            NotFoundError: Resource does not exist.
            ForbiddenError: Requester does not own the resource.
            EmptyResourceError: Resource has no units of work.
            ConflictingTaskError: A task of the same type is running on the resource.
        """
        capability = self.registry.require(method)

        resource = await self.resources.get_resource(resource_id)
        if resource is None:
            raise NotFoundError(f"Resource {resource_id} not found")
        if resource.owner_id != owner_id:
            raise ForbiddenError("You can only embellish your own resources")
        if not resource.units:
            raise EmptyResourceError(f"Resource {resource_id} has no units of work")

        async with self._start_guard(f"{resource_id}:{capability.type}"):
            running = await self.store.find_running_tasks(resource_id)
            if any(t.type == capability.type for t in running):
                raise ConflictingTaskError(resource_id, capability.type)

            container_id = await self.resources.create_result_container(
                resource_id,
                ResultContainerSpec(
                    type=capability.type,
                    method=method,
                    created_by=owner_id,
                    size=len(resource.units),
                ),
            )

            task = EmbellishmentTask.create(
                resource_id=resource_id,
                owner_id=owner_id,
                task_type=capability.type,
                method=method,
                unit_count=len(resource.units),
                parameter_overrides=parameter_overrides,
            )
            await self.store.create_task(task)
            await self.store.set_result_container(task.id, container_id)
            await self.store.set_status(task.id, TaskStatus.RUNNING)

        logger.info(
            f"Started {capability.type} task {task.id} on resource {resource_id} "
            f"({task.total_items} items, method {method})"
        )

        started = await self.store.get_task(task.id)
        await self.notifier.emit(started or task, ProgressStatus.STARTED)
        await self.admit(task.id)

        return StartTaskResult(
            task_id=task.id,
            result_container_id=container_id,
            type=capability.type,
            total_items=task.total_items,
        )

    @asynccontextmanager
    async def _start_guard(self, key: str) -> AsyncIterator[None]:
        """Serialize starts per resource and type; the lock is dropped once unused."""
        lock = self._start_locks.setdefault(key, asyncio.Lock())
        self._start_waiters[key] = self._start_waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._start_waiters[key] -= 1
            if not self._start_waiters[key]:
                del self._start_waiters[key]
                del self._start_locks[key]

    async def cancel_task(self, task_id: str, requester_id: str) -> CancelResult:
        """
        Cancel a running task.

        A task that is no longer running, or whose items are all resolved
        and only awaits finalization, is left untouched and reported with
        ``cancelled=False``.

        Raises:
            NotFoundError: Task does not exist.
            ForbiddenError: Requester does not own the task.
        """
        task = await self.store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        if task.owner_id != requester_id:
            raise ForbiddenError("You can only cancel your own tasks")

        cancelled = await self.store.set_status_if(
            task_id, TaskStatus.RUNNING, TaskStatus.CANCELLED, unresolved_only=True
        )
        if not cancelled:
            logger.debug(f"Cancel of task {task_id} ignored: task is not running or fully resolved")
            return CancelResult(cancelled=False, reason="not-running")

        if task.result_container_id:
            await self.resources.set_container_status(
                task.resource_id,
                task.result_container_id,
                ContainerStatus.FAILED,
                dict(CANCELLED_DETAIL),
            )

        self.tracker.clear(task_id)
        logger.info(f"Cancelled task {task_id}")

        updated = await self.store.get_task(task_id)
        await self.notifier.emit(updated or task, ProgressStatus.CANCELLED)
        return CancelResult(cancelled=True)

    async def finalize_task(self, task_id: str) -> TaskStatus | None:
        """
        Move a drained task to its terminal status.

        Returns:
            The terminal status applied, or None when another caller
            finalized or cancelled the task first.
        """
        task = await self.store.get_task(task_id)
        if task is None or not task.is_running:
            return None

        if task.completed_items + task.failed_items != task.total_items:
            logger.warning(
                f"Not finalizing task {task_id}: "
                f"{task.total_items - task.completed_items - task.failed_items} items unresolved"
            )
            return None

        final_status = TaskStatus.FAILED if task.failed_items else TaskStatus.COMPLETED
        if not await self.store.set_status_if(task_id, TaskStatus.RUNNING, final_status):
            logger.debug(f"Task {task_id} was finalized concurrently")
            return None

        if task.result_container_id:
            await self.resources.set_container_status(
                task.resource_id,
                task.result_container_id,
                ContainerStatus(final_status.value),
            )

        self.tracker.clear(task_id)
        logger.info(
            f"Task {task_id} {final_status.value}: "
            f"{task.completed_items} completed, {task.failed_items} failed"
        )

        finalized = await self.store.get_task(task_id)
        await self.notifier.emit(finalized or task, ProgressStatus(final_status.value))
        return final_status

    async def get_task_progress(self, task_id: str) -> TaskSnapshot:
        """
        Get a progress snapshot.

        Raises:
            NotFoundError: Task does not exist.
        """
        task = await self.store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")
        return task.snapshot()
