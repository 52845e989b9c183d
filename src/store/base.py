"""
Store interfaces.

The task store persists tasks and their embedded items and must apply
every item transition together with its counter update atomically. The
resource store owns the parent resources and the result containers
tasks write into.
"""

from enum import Enum
from typing import Any, Protocol
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from src.core.state import EmbellishmentTask, TaskStatus

# =============================================================================
# RESOURCE MODELS
# =============================================================================


class ContainerStatus(str, Enum):
    """Status of a result container."""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Resource(BaseModel):
    """A parent resource whose units of work get processed."""

    model_config = ConfigDict(frozen=False)

    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str
    units: list[str] = Field(default_factory=list)


class ResultEntry(BaseModel):
    """A value written into a result container slot."""

    model_config = ConfigDict(frozen=True)

    value: Any = None
    result_ref: str | None = None


class ResultContainerSpec(BaseModel):
    """What to create when a task starts."""

    model_config = ConfigDict(frozen=True)

    type: str
    method: str
    created_by: str
    size: int = Field(ge=0)


class ResultContainer(BaseModel):
    """Placeholder holding one result slot per unit of work."""

    model_config = ConfigDict(frozen=False)

    id: str = Field(default_factory=lambda: str(uuid4()))
    resource_id: str
    type: str
    method: str
    created_by: str
    status: ContainerStatus = ContainerStatus.PROCESSING
    detail: dict[str, Any] = Field(default_factory=dict)
    results: list[ResultEntry | None] = Field(default_factory=list)


# =============================================================================
# PROTOCOLS
# =============================================================================


class TaskStore(Protocol):
    """Persistence for tasks and their items."""

    async def create_task(self, task: EmbellishmentTask) -> EmbellishmentTask: ...

    async def get_task(self, task_id: str) -> EmbellishmentTask | None: ...

    async def find_running_tasks(self, resource_id: str) -> list[EmbellishmentTask]: ...

    async def set_status(self, task_id: str, status: TaskStatus) -> None: ...

    async def set_status_if(
        self,
        task_id: str,
        expected: TaskStatus,
        status: TaskStatus,
        unresolved_only: bool = False,
    ) -> bool:
        """
        Compare-and-set: apply ``status`` only if the current one is ``expected``.

        With ``unresolved_only`` the change also requires at least one item
        that is neither completed nor failed.
        """
        ...

    async def set_result_container(self, task_id: str, container_id: str) -> None: ...

    async def mark_item_processing(self, task_id: str, index: int) -> bool:
        """pending -> processing; clears the previous external reference."""
        ...

    async def set_item_external_ref(self, task_id: str, index: int, external_ref: str) -> None: ...

    async def mark_item_pending_retry(self, task_id: str, index: int, error: str) -> bool:
        """processing -> pending, incrementing ``retry_count``."""
        ...

    async def complete_item(self, task_id: str, index: int, result_ref: str | None) -> bool:
        """processing -> completed, incrementing ``completed_items``."""
        ...

    async def fail_item(self, task_id: str, index: int, error: str) -> bool:
        """processing -> failed, incrementing ``failed_items``."""
        ...


class ResourceStore(Protocol):
    """Owner of parent resources and their result containers."""

    async def get_resource(self, resource_id: str) -> Resource | None: ...

    async def create_result_container(
        self, resource_id: str, spec: ResultContainerSpec
    ) -> str: ...

    async def get_result_container(
        self, resource_id: str, container_id: str
    ) -> ResultContainer | None: ...

    async def write_result_at_index(
        self, resource_id: str, container_id: str, index: int, value: ResultEntry
    ) -> None: ...

    async def set_container_status(
        self,
        resource_id: str,
        container_id: str,
        status: ContainerStatus,
        detail: dict[str, Any] | None = None,
    ) -> None: ...
