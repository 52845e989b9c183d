"""
Single-item regeneration.

Regenerates one slot of an existing result container outside any batch
task. The attempt is tracked on its own, is never retried, and reports
its outcome straight to the requester.
"""

from typing import Any
from uuid import uuid4

from loguru import logger

from src.capabilities.registry import CapabilityRegistry
from src.core.exceptions import DispatchError, ForbiddenError, NotFoundError
from src.core.state import RegenerationEvent, RegenerationResult, RegenerationStatus
from src.events.bus import REGENERATION_CONTEXT_KEY, RegenerationMetadata
from src.execution.engine import ExecutionEngine
from src.notifications.progress import ProgressNotifier
from src.store.base import ResourceStore, ResultEntry


class RegenerationManager:
    """Dispatch and settle single-item regenerations."""

    def __init__(
        self,
        resources: ResourceStore,
        registry: CapabilityRegistry,
        notifier: ProgressNotifier,
        engine: ExecutionEngine | None = None,
    ):
        self.resources = resources
        self.registry = registry
        self.notifier = notifier
        self.engine = engine
        self.in_flight: dict[str, RegenerationMetadata] = {}

    async def regenerate(
        self,
        resource_id: str,
        container_id: str,
        index: int,
        requester_id: str,
        parameter_overrides: dict[str, Any] | None = None,
    ) -> RegenerationResult:
        """
        Regenerate the value at ``index`` of a result container.

        Args:
            resource_id: Parent resource.
            container_id: Result container to write into.
            index: Slot to regenerate.
            requester_id: Identity of the caller; must own the resource.
            parameter_overrides: Parameters passed through to the dispatch.

        Returns:
            RegenerationResult; ``regenerating`` is False when the engine
            rejected the dispatch.

        Raises:
            NotFoundError: Resource, container or index does not exist.
            ForbiddenError: Requester does not own the resource.
            MethodNotCapable: The container's method is no longer known.
        """
        resource = await self.resources.get_resource(resource_id)
        if resource is None:
            raise NotFoundError(f"Resource {resource_id} not found")
        if resource.owner_id != requester_id:
            raise ForbiddenError("You can only regenerate items of your own resources")

        container = await self.resources.get_result_container(resource_id, container_id)
        if container is None:
            raise NotFoundError(f"Result container {container_id} not found")
        if not 0 <= index < len(resource.units):
            raise NotFoundError(f"Item {index} not found in resource {resource_id}")

        capability = self.registry.require(container.method)

        metadata = RegenerationMetadata(
            regeneration_id=str(uuid4()),
            resource_id=resource_id,
            container_id=container_id,
            index=index,
            method=container.method,
            requester_id=requester_id,
        )
        context = {
            "owner_id": requester_id,
            "parameter_overrides": {
                **(parameter_overrides or {}),
                capability.unit_parameter: resource.units[index],
            },
            REGENERATION_CONTEXT_KEY: metadata.model_dump(),
        }

        self.in_flight[metadata.regeneration_id] = metadata
        await self._notify(metadata, RegenerationStatus.STARTED)
        try:
            if self.engine is None:
                raise DispatchError("No execution engine configured")
            external_ref = await self.engine.start_execution(container.method, context)
        except Exception as e:
            self.in_flight.pop(metadata.regeneration_id, None)
            logger.error(f"Failed to dispatch regeneration of {container_id}[{index}]: {e}")
            await self._notify(metadata, RegenerationStatus.FAILED, error=str(e))
            return RegenerationResult(
                regeneration_id=metadata.regeneration_id,
                regenerating=False,
                error=str(e),
            )

        logger.info(f"Regenerating {container_id}[{index}] with {container.method}")
        return RegenerationResult(
            regeneration_id=metadata.regeneration_id,
            regenerating=True,
            external_ref=external_ref,
        )

    def claim(self, regeneration_id: str) -> RegenerationMetadata | None:
        """Remove and return an in-flight regeneration; None if unknown or already settled."""
        return self.in_flight.pop(regeneration_id, None)

    async def settle(
        self,
        metadata: RegenerationMetadata,
        value: str | None,
        result_ref: str | None = None,
        error: str | None = None,
    ) -> None:
        """Write a regenerated value and notify the requester."""
        if not value:
            logger.warning(
                f"Regeneration of {metadata.container_id}[{metadata.index}] failed: {error}"
            )
            await self._notify(metadata, RegenerationStatus.FAILED, error=error)
            return

        try:
            await self.resources.write_result_at_index(
                metadata.resource_id,
                metadata.container_id,
                metadata.index,
                ResultEntry(value=value, result_ref=result_ref),
            )
        except Exception as e:
            logger.error(f"Failed to write regenerated value: {e}")
            await self._notify(metadata, RegenerationStatus.FAILED, error=str(e))
            return

        await self._notify(metadata, RegenerationStatus.COMPLETED, value=value)

    async def _notify(
        self,
        metadata: RegenerationMetadata,
        status: RegenerationStatus,
        value: Any = None,
        error: str | None = None,
    ) -> None:
        event = RegenerationEvent(
            regeneration_id=metadata.regeneration_id,
            resource_id=metadata.resource_id,
            container_id=metadata.container_id,
            item_index=metadata.index,
            status=status,
            value=value,
            error=error,
        )
        await self.notifier.emit_regeneration(metadata.requester_id, event)
