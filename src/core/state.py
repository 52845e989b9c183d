"""State types for embellishment tasks and their items."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Status of an embellishment task."""

    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_TASK_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


class ItemStatus(str, Enum):
    """Status of a single item within a task."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ProgressStatus(str, Enum):
    """Kinds of progress notifications sent to the task owner."""

    STARTED = "started"
    ITEM_COMPLETED = "item_completed"
    ITEM_FAILED = "item_failed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RegenerationStatus(str, Enum):
    """Kinds of notifications for a single-item regeneration."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class Progress(BaseModel):
    """Aggregate item counters."""

    total: int
    completed: int = 0
    failed: int = 0


class TaskItem(BaseModel):
    """One unit of work inside a task, addressed by its stable index."""

    model_config = ConfigDict(frozen=False)

    index: int = Field(ge=0)
    external_ref: str | None = None
    result_ref: str | None = None
    status: ItemStatus = ItemStatus.PENDING
    retry_count: int = Field(default=0, ge=0)
    error: str | None = None
    completed_at: datetime | None = None


class EmbellishmentTask(BaseModel):
    """A batch job applying one capability to every unit of a resource."""

    model_config = ConfigDict(frozen=False)

    id: str = Field(default_factory=lambda: str(uuid4()))
    resource_id: str
    owner_id: str
    type: str
    method: str
    parameter_overrides: dict[str, Any] = Field(default_factory=dict)
    items: list[TaskItem] = Field(default_factory=list)
    total_items: int = 0
    completed_items: int = 0
    failed_items: int = 0
    status: TaskStatus = TaskStatus.CREATED
    result_container_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def create(
        cls,
        resource_id: str,
        owner_id: str,
        task_type: str,
        method: str,
        unit_count: int,
        parameter_overrides: dict[str, Any] | None = None,
    ) -> "EmbellishmentTask":
        """Create a task with every item pending."""
        return cls(
            resource_id=resource_id,
            owner_id=owner_id,
            type=task_type,
            method=method,
            parameter_overrides=dict(parameter_overrides or {}),
            items=[TaskItem(index=i) for i in range(unit_count)],
            total_items=unit_count,
        )

    @property
    def progress(self) -> Progress:
        """Current aggregate counters."""
        return Progress(
            total=self.total_items,
            completed=self.completed_items,
            failed=self.failed_items,
        )

    @property
    def is_running(self) -> bool:
        return self.status == TaskStatus.RUNNING

    def item(self, index: int) -> TaskItem | None:
        """Get an item by index."""
        if 0 <= index < len(self.items):
            return self.items[index]
        return None

    def pending_indices(self, exclude: set[int] | frozenset[int] = frozenset()) -> list[int]:
        """Indices of pending items in index order, skipping ``exclude``."""
        return [
            item.index
            for item in sorted(self.items, key=lambda i: i.index)
            if item.status == ItemStatus.PENDING and item.index not in exclude
        ]

    def count(self, status: ItemStatus) -> int:
        """Number of items in a given status."""
        return sum(1 for item in self.items if item.status == status)

    def snapshot(self) -> "TaskSnapshot":
        """Build a read-only progress snapshot."""
        return TaskSnapshot(
            task_id=self.id,
            resource_id=self.resource_id,
            type=self.type,
            method=self.method,
            status=self.status,
            progress=self.progress,
            items=[item.model_copy() for item in self.items],
            result_container_id=self.result_container_id,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )


class TaskSnapshot(BaseModel):
    """Progress snapshot returned to callers."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    resource_id: str
    type: str
    method: str
    status: TaskStatus
    progress: Progress
    items: list[TaskItem]
    result_container_id: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


# =============================================================================
# OPERATION RESULTS
# =============================================================================


class StartTaskResult(BaseModel):
    """Result of starting a task."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    result_container_id: str
    type: str
    total_items: int


class CancelResult(BaseModel):
    """Result of a cancellation request."""

    model_config = ConfigDict(frozen=True)

    cancelled: bool
    reason: str | None = None


class RegenerationResult(BaseModel):
    """Result of a single-item regeneration request."""

    model_config = ConfigDict(frozen=True)

    regeneration_id: str
    regenerating: bool
    external_ref: str | None = None
    error: str | None = None


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class ProgressEvent(BaseModel):
    """Progress notification for a task."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    resource_id: str
    capability_type: str
    status: ProgressStatus
    progress: Progress
    item_index: int | None = None
    value: Any = None
    error: str | None = None

    def to_message(self) -> dict[str, Any]:
        """Wrap the event in a notification envelope."""
        return {
            "type": "embellishment_progress",
            "payload": self.model_dump(mode="json", exclude_none=True),
        }


class RegenerationEvent(BaseModel):
    """Notification for a single-item regeneration."""

    model_config = ConfigDict(frozen=True)

    regeneration_id: str
    resource_id: str
    container_id: str
    item_index: int
    status: RegenerationStatus
    value: Any = None
    error: str | None = None

    def to_message(self) -> dict[str, Any]:
        """Wrap the event in a notification envelope."""
        return {
            "type": "embellishment_regeneration",
            "payload": self.model_dump(mode="json", exclude_none=True),
        }
