"""Core module - configuration, logging, errors and state models."""

from src.core.config import Settings, clear_settings_cache, get_settings
from src.core.exceptions import (
    ConflictingTaskError,
    DispatchError,
    EmbellishmentError,
    EmptyResourceError,
    ExtractionFailed,
    ForbiddenError,
    MethodNotCapable,
    NotFoundError,
)
from src.core.state import (
    CancelResult,
    EmbellishmentTask,
    ItemStatus,
    Progress,
    ProgressEvent,
    ProgressStatus,
    RegenerationEvent,
    RegenerationResult,
    RegenerationStatus,
    StartTaskResult,
    TaskItem,
    TaskSnapshot,
    TaskStatus,
)

__all__ = [
    "CancelResult",
    "ConflictingTaskError",
    "DispatchError",
    "EmbellishmentError",
    "EmbellishmentTask",
    "EmptyResourceError",
    "ExtractionFailed",
    "ForbiddenError",
    "ItemStatus",
    "MethodNotCapable",
    "NotFoundError",
    "Progress",
    "ProgressEvent",
    "ProgressStatus",
    "RegenerationEvent",
    "RegenerationResult",
    "RegenerationStatus",
    "Settings",
    "StartTaskResult",
    "TaskItem",
    "TaskSnapshot",
    "TaskStatus",
    "clear_settings_cache",
    "get_settings",
]
