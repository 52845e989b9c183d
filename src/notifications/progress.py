"""Progress notifications sent to task owners."""

from typing import Any, Protocol

from loguru import logger

from src.core.state import (
    EmbellishmentTask,
    ProgressEvent,
    ProgressStatus,
    RegenerationEvent,
)


class NotificationChannel(Protocol):
    """Transport delivering messages to a user."""

    async def send_to_user(self, user_id: str, message: dict[str, Any]) -> None: ...


class ProgressNotifier:
    """
    Build progress events and deliver them to the task owner.

    Delivery is best effort: a failing channel is logged and never
    affects task state.
    """

    def __init__(self, channel: NotificationChannel | None = None) -> None:
        self.channel = channel

    async def emit(
        self,
        task: EmbellishmentTask,
        status: ProgressStatus,
        item_index: int | None = None,
        value: Any = None,
        error: str | None = None,
    ) -> ProgressEvent:
        """
        Send a progress event for ``task`` to its owner.

        Args:
            task: Task whose counters are reported.
            status: Kind of progress event.
            item_index: Item the event is about, if any.
            value: Extracted value for ``item_completed``.
            error: Error message for ``item_failed``.

        Returns:
            The event that was sent.
        """
        event = ProgressEvent(
            task_id=task.id,
            resource_id=task.resource_id,
            capability_type=task.type,
            status=status,
            progress=task.progress,
            item_index=item_index,
            value=value,
            error=error,
        )
        await self._send(task.owner_id, event.to_message())
        return event

    async def emit_regeneration(self, user_id: str, event: RegenerationEvent) -> None:
        """Send a single-item regeneration event to ``user_id``."""
        await self._send(user_id, event.to_message())

    async def _send(self, user_id: str, message: dict[str, Any]) -> None:
        if self.channel is None:
            return
        try:
            await self.channel.send_to_user(user_id, message)
        except Exception as e:
            logger.warning(f"Failed to deliver {message.get('type')} notification: {e}")
