"""Task and resource stores."""

from src.store.base import (
    ContainerStatus,
    Resource,
    ResourceStore,
    ResultContainer,
    ResultContainerSpec,
    ResultEntry,
    TaskStore,
)
from src.store.memory import InMemoryResourceStore, InMemoryTaskStore
from src.store.sql_store import SqlTaskStore

__all__ = [
    "ContainerStatus",
    "InMemoryResourceStore",
    "InMemoryTaskStore",
    "Resource",
    "ResourceStore",
    "ResultContainer",
    "ResultContainerSpec",
    "ResultEntry",
    "SqlTaskStore",
    "TaskStore",
]
