"""Embellishment service - wires the orchestration components together.

This module provides the primary interface for running embellishment
tasks: it owns the in-memory admission state, subscribes the completion
router to the event bus and runs dispatches and deferred retries as
background tasks.
"""

import asyncio
from collections.abc import Coroutine
from typing import Any

from loguru import logger

from src.capabilities.registry import CapabilityDescriptor, CapabilityRegistry
from src.core.config import Settings, get_settings
from src.core.setup_logging import configure_logging
from src.core.state import (
    CancelResult,
    EmbellishmentTask,
    RegenerationResult,
    StartTaskResult,
    TaskSnapshot,
    TaskStatus,
)
from src.events.bus import CompletionEventBus
from src.execution.engine import ExecutionEngine
from src.notifications.progress import NotificationChannel, ProgressNotifier
from src.orchestration.admission import ActiveItemTracker, AdmissionController
from src.orchestration.dispatch import ItemDispatcher
from src.orchestration.lifecycle import TaskLifecycleManager
from src.orchestration.regeneration import RegenerationManager
from src.orchestration.retry import ItemFailureHandler, RetryDecision, RetryPolicy
from src.orchestration.router import CompletionRouter
from src.store.base import ResourceStore, TaskStore
from src.store.memory import InMemoryResourceStore, InMemoryTaskStore
from src.store.sql_store import SqlTaskStore


class EmbellishmentService:
    """
    Bounded-concurrency orchestration of embellishment tasks.

    Example:
        >>> service = EmbellishmentService(task_store, resource_store, registry, bus, engine)
        >>> result = await service.start_task(resource_id, "joycaption", owner_id)
        >>> snapshot = await service.get_task_progress(result.task_id)
        >>> snapshot.progress.total
        5
    """

    def __init__(
        self,
        task_store: TaskStore,
        resource_store: ResourceStore,
        registry: CapabilityRegistry,
        bus: CompletionEventBus,
        engine: ExecutionEngine | None = None,
        channel: NotificationChannel | None = None,
        settings: Settings | None = None,
        concurrency_limit: int | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            task_store: Task persistence.
            resource_store: Resources and result containers.
            registry: Capability registry.
            bus: Bus the execution engine publishes completion events on.
            engine: Execution engine; may be injected later.
            channel: Notification channel for progress events.
            settings: Optional settings override. Uses default if not provided.
            concurrency_limit: Overrides ``embellishment_concurrency``.
            max_retries: Overrides ``embellishment_max_retries``.
            retry_delay: Overrides the retry delay, in seconds.
        """
        self.settings = settings or get_settings()
        self.task_store = task_store
        self.resource_store = resource_store
        self.registry = registry
        self.bus = bus

        self.concurrency_limit = (
            concurrency_limit
            if concurrency_limit is not None
            else self.settings.embellishment_concurrency
        )
        self.retry_policy = RetryPolicy(
            max_retries=(
                max_retries if max_retries is not None else self.settings.embellishment_max_retries
            ),
            retry_delay=(
                retry_delay if retry_delay is not None else self.settings.retry_delay_seconds
            ),
        )

        self.tracker = ActiveItemTracker()
        self.notifier = ProgressNotifier(channel)
        self._background: set[asyncio.Task[Any]] = set()

        self.admission = AdmissionController(
            task_store,
            self.tracker,
            self.concurrency_limit,
            dispatch=self._dispatch,
            finalize=self.finalize_task,
        )
        self.dispatcher = ItemDispatcher(
            task_store, resource_store, registry, engine, on_failure=self.on_item_failure
        )
        self.failures = ItemFailureHandler(
            task_store,
            self.tracker,
            self.retry_policy,
            self.notifier,
            admit=self.admit_next,
            schedule=self._schedule_admission,
        )
        self.lifecycle = TaskLifecycleManager(
            task_store, resource_store, registry, self.tracker, self.notifier, admit=self.admit_next
        )
        self.regenerations = RegenerationManager(resource_store, registry, self.notifier, engine)
        self.router = CompletionRouter(
            task_store,
            resource_store,
            registry,
            self.tracker,
            self.notifier,
            self.regenerations,
            on_failure=self.on_item_failure,
            admit=self.admit_next,
            engine=engine,
        )

        self._unsubscribe = bus.subscribe(self.router.handle_event)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def start_task(
        self,
        resource_id: str,
        method: str,
        owner_id: str,
        parameter_overrides: dict[str, Any] | None = None,
    ) -> StartTaskResult:
        return await self.lifecycle.start_task(resource_id, method, owner_id, parameter_overrides)

    async def cancel_task(self, task_id: str, requester_id: str) -> CancelResult:
        return await self.lifecycle.cancel_task(task_id, requester_id)

    async def get_task_progress(self, task_id: str) -> TaskSnapshot:
        return await self.lifecycle.get_task_progress(task_id)

    async def regenerate_single_item(
        self,
        resource_id: str,
        container_id: str,
        index: int,
        requester_id: str,
        parameter_overrides: dict[str, Any] | None = None,
    ) -> RegenerationResult:
        return await self.regenerations.regenerate(
            resource_id, container_id, index, requester_id, parameter_overrides
        )

    def list_capabilities(self, capability_type: str | None = None) -> list[CapabilityDescriptor]:
        """List the methods tasks can be started with."""
        return self.registry.list_capabilities(capability_type)

    def set_execution_engine(self, engine: ExecutionEngine) -> None:
        """Inject the execution engine after construction."""
        self.dispatcher.engine = engine
        self.router.engine = engine
        self.regenerations.engine = engine

    def active_items(self, task_id: str) -> frozenset[int]:
        """Indices of a task currently dispatched and unresolved."""
        return self.tracker.active(task_id)

    # =========================================================================
    # INTERNAL TRANSITIONS
    # =========================================================================

    async def admit_next(self, task_id: str) -> list[int]:
        return await self.admission.admit_next(task_id)

    async def finalize_task(self, task_id: str) -> TaskStatus | None:
        return await self.lifecycle.finalize_task(task_id)

    async def on_item_failure(self, task_id: str, index: int, error: str) -> RetryDecision | None:
        return await self.failures.on_item_failure(task_id, index, error)

    async def _dispatch(self, task: EmbellishmentTask, index: int) -> None:
        self._spawn(self.dispatcher.dispatch(task, index))

    def _schedule_admission(self, delay: float, task_id: str) -> None:
        self._spawn(self._deferred_admit(delay, task_id))

    async def _deferred_admit(self, delay: float, task_id: str) -> None:
        await asyncio.sleep(delay)
        await self.admit_next(task_id)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error(f"Background orchestration step failed: {exc}")

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    async def join(self) -> None:
        """Wait until no dispatch or deferred retry is running."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        """Stop routing events and cancel deferred work."""
        self._unsubscribe()
        pending = list(self._background)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Embellishment service closed")


def create_service(
    settings: Settings | None = None,
    engine: ExecutionEngine | None = None,
    resource_store: ResourceStore | None = None,
    channel: NotificationChannel | None = None,
    bus: CompletionEventBus | None = None,
) -> EmbellishmentService:
    """
    Create a service configured from settings.

    Uses the SQL task store when ``embellishment_database_url`` is set and
    loads capabilities from ``embellishment_capabilities_file`` when given.

    Args:
        settings: Optional settings override. Uses default if not provided.
        engine: Execution engine.
        resource_store: Resource store; in-memory when not provided.
        channel: Notification channel; the websocket manager when not provided.
        bus: Completion event bus; a new one when not provided.

    Returns:
        Configured EmbellishmentService.
    """
    from src.api.websocket import ws_manager

    settings = settings or get_settings()
    configure_logging(settings)

    if settings.embellishment_database_url:
        task_store: TaskStore = SqlTaskStore()
    else:
        task_store = InMemoryTaskStore()

    if settings.embellishment_capabilities_file:
        registry = CapabilityRegistry.from_yaml(settings.embellishment_capabilities_file)
    else:
        registry = CapabilityRegistry()

    return EmbellishmentService(
        task_store=task_store,
        resource_store=resource_store or InMemoryResourceStore(),
        registry=registry,
        bus=bus or CompletionEventBus(),
        engine=engine,
        channel=channel or ws_manager,
        settings=settings,
    )
