"""
Completion event routing.

Completion events arrive from the bus at arbitrary times. Each one is
routed by its embedded metadata either to a task item or to a
single-item regeneration. Task events are acted on only while the task
is running and the item is still processing, which makes duplicate,
stale and post-cancellation events harmless.
"""

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from loguru import logger

from src.capabilities.registry import CapabilityRegistry
from src.core.exceptions import ExtractionFailed
from src.core.state import ItemStatus, ProgressStatus
from src.events.bus import CompletionEvent
from src.execution.engine import ExecutionEngine
from src.extraction.extractor import RESPONSE_KEYS, extract_result
from src.notifications.progress import ProgressNotifier
from src.orchestration.admission import ActiveItemTracker
from src.orchestration.regeneration import RegenerationManager
from src.store.base import ResourceStore, ResultEntry, TaskStore

FailureFn = Callable[[str, int, str], Awaitable[object]]
AdmitFn = Callable[[str], Awaitable[object]]

_PAYLOAD_KEYS = (*RESPONSE_KEYS, "outputs", "result", "text")


def is_complete_snapshot(snapshot: Any) -> bool:
    """Whether an inline snapshot carries something worth extracting from."""
    if isinstance(snapshot, Mapping):
        return any(snapshot.get(key) for key in _PAYLOAD_KEYS)
    if isinstance(snapshot, list):
        return bool(snapshot)
    return False


class CompletionRouter:
    """Route completion events to task items and regenerations."""

    def __init__(
        self,
        store: TaskStore,
        resources: ResourceStore,
        registry: CapabilityRegistry,
        tracker: ActiveItemTracker,
        notifier: ProgressNotifier,
        regenerations: RegenerationManager,
        on_failure: FailureFn,
        admit: AdmitFn,
        engine: ExecutionEngine | None = None,
    ):
        self.store = store
        self.resources = resources
        self.registry = registry
        self.tracker = tracker
        self.notifier = notifier
        self.regenerations = regenerations
        self.on_failure = on_failure
        self.admit = admit
        self.engine = engine

    async def handle_event(self, event: CompletionEvent) -> None:
        """Bus handler."""
        if event.correlation is not None:
            await self._handle_item_completion(event)
        elif event.regeneration is not None:
            await self._handle_regeneration(event)

    async def locate_payload(self, event: CompletionEvent) -> Any:
        """
        Get the payload to extract from.

        The inline snapshot wins when it is complete. Otherwise the
        persisted result is fetched once by reference.
        """
        snapshot = event.inline_snapshot
        if is_complete_snapshot(snapshot):
            return snapshot

        result_ref = event.result_ref
        if result_ref and self.engine is not None:
            try:
                fetched = await self.engine.fetch_result(result_ref)
            except Exception as e:
                logger.warning(f"Failed to fetch result {result_ref}: {e}")
                fetched = None
            if fetched is not None:
                return fetched

        return snapshot

    async def _handle_item_completion(self, event: CompletionEvent) -> None:
        meta = event.correlation
        task_id, index = meta.task_id, meta.index

        capability = self.registry.resolve(meta.method)
        if capability is None:
            logger.error(f"Dropping completion for task {task_id}: method {meta.method} is not known")
            return

        task = await self.store.get_task(task_id)
        if task is None or not task.is_running:
            logger.debug(f"Discarding completion for task {task_id} item {index}: task not running")
            return

        item = task.item(index)
        if item is None or item.status != ItemStatus.PROCESSING:
            logger.debug(f"Discarding completion for task {task_id} item {index}: item not processing")
            return

        if event.external_ref and item.external_ref and event.external_ref != item.external_ref:
            logger.debug(
                f"Discarding stale completion {event.external_ref} for task {task_id} item {index}"
            )
            return

        payload = await self.locate_payload(event)
        value = extract_result(payload, capability.extraction)
        if not value:
            await self.on_failure(task_id, index, str(ExtractionFailed(capability.extraction.path)))
            return

        completed = await self.store.complete_item(task_id, index, event.result_ref)
        self.tracker.discard(task_id, index)
        if not completed:
            logger.debug(f"Task {task_id} item {index} was resolved concurrently")
            return

        if task.result_container_id:
            try:
                await self.resources.write_result_at_index(
                    task.resource_id,
                    task.result_container_id,
                    index,
                    ResultEntry(value=value, result_ref=event.result_ref),
                )
            except Exception as e:
                logger.error(f"Failed to write result for task {task_id} item {index}: {e}")

        updated = await self.store.get_task(task_id)
        await self.notifier.emit(
            updated or task, ProgressStatus.ITEM_COMPLETED, item_index=index, value=value
        )
        logger.debug(f"Task {task_id} item {index} completed")

        await self.admit(task_id)

    async def _handle_regeneration(self, event: CompletionEvent) -> None:
        metadata = self.regenerations.claim(event.regeneration.regeneration_id)
        if metadata is None:
            logger.debug(
                f"Discarding completion for unknown regeneration {event.regeneration.regeneration_id}"
            )
            return

        capability = self.registry.resolve(metadata.method)
        if capability is None:
            await self.regenerations.settle(
                metadata, None, error=f"Method {metadata.method} is not known"
            )
            return

        payload = await self.locate_payload(event)
        value = extract_result(payload, capability.extraction)
        await self.regenerations.settle(
            metadata,
            value,
            result_ref=event.result_ref,
            error=None if value else str(ExtractionFailed(capability.extraction.path)),
        )
