"""Orchestration - admission, dispatch, retry, routing and task lifecycle."""

from src.orchestration.admission import ActiveItemTracker, AdmissionController
from src.orchestration.dispatch import ItemDispatcher, build_dispatch_context
from src.orchestration.lifecycle import TaskLifecycleManager
from src.orchestration.regeneration import RegenerationManager
from src.orchestration.retry import ItemFailureHandler, RetryDecision, RetryPolicy
from src.orchestration.router import CompletionRouter
from src.orchestration.service import EmbellishmentService, create_service

__all__ = [
    "ActiveItemTracker",
    "AdmissionController",
    "CompletionRouter",
    "EmbellishmentService",
    "ItemDispatcher",
    "ItemFailureHandler",
    "RegenerationManager",
    "RetryDecision",
    "RetryPolicy",
    "TaskLifecycleManager",
    "build_dispatch_context",
    "create_service",
]
