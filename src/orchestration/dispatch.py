"""Dispatch of a single admitted item to the execution engine."""

from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from src.capabilities.registry import CapabilityDescriptor, CapabilityRegistry
from src.core.exceptions import DispatchError
from src.core.state import EmbellishmentTask
from src.events.bus import CORRELATION_CONTEXT_KEY, CorrelationMetadata
from src.execution.engine import ExecutionEngine
from src.store.base import ResourceStore, TaskStore

FailureFn = Callable[[str, int, str], Awaitable[object]]


def build_dispatch_context(
    task: EmbellishmentTask,
    index: int,
    unit: str,
    capability: CapabilityDescriptor,
) -> dict[str, Any]:
    """
    Build the execution context for one item.

    The task's parameter overrides are merged with the item's unit of
    work, and the correlation metadata the completion event is routed
    by is embedded alongside.
    """
    correlation = CorrelationMetadata(
        task_id=task.id,
        resource_id=task.resource_id,
        index=index,
        type=task.type,
        method=task.method,
    )
    return {
        "owner_id": task.owner_id,
        "parameter_overrides": {
            **task.parameter_overrides,
            capability.unit_parameter: unit,
        },
        CORRELATION_CONTEXT_KEY: correlation.model_dump(),
    }


class ItemDispatcher:
    """
    Send admitted items to the execution engine.

    A synchronous rejection is reported through ``on_failure`` right
    away: no completion event will ever arrive for it.
    """

    def __init__(
        self,
        store: TaskStore,
        resources: ResourceStore,
        registry: CapabilityRegistry,
        engine: ExecutionEngine | None,
        on_failure: FailureFn,
    ):
        self.store = store
        self.resources = resources
        self.registry = registry
        self.engine = engine
        self.on_failure = on_failure

    async def dispatch(self, task: EmbellishmentTask, index: int) -> str | None:
        """
        Start execution for one item.

        Args:
            task: Task owning the item (already marked processing).
            index: Item index.

        Returns:
            External reference of the execution, or None if dispatch failed.
        """
        try:
            if self.engine is None:
                raise DispatchError("No execution engine configured")

            capability = self.registry.require(task.method)
            resource = await self.resources.get_resource(task.resource_id)
            if resource is None or index >= len(resource.units):
                raise DispatchError(f"Unit {index} of resource {task.resource_id} no longer exists")

            context = build_dispatch_context(task, index, resource.units[index], capability)
            external_ref = await self.engine.start_execution(task.method, context)
        except Exception as e:
            logger.error(f"Failed to dispatch task {task.id} item {index}: {e}")
            await self.on_failure(task.id, index, str(e))
            return None

        if external_ref:
            await self.store.set_item_external_ref(task.id, index, external_ref)

        logger.debug(f"Dispatched task {task.id} item {index}, external ref: {external_ref}")
        return external_ref
