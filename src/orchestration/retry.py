"""
Per-item retry policy.

Dispatch rejections and extraction failures share one retry budget per
item. A retried item goes back to pending and becomes admissible after
a one-shot delay; an item that exhausted its budget fails for good and
admission continues with its siblings right away.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from loguru import logger

from src.core.state import ProgressStatus
from src.notifications.progress import ProgressNotifier
from src.orchestration.admission import ActiveItemTracker
from src.store.base import TaskStore

AdmitFn = Callable[[str], Awaitable[object]]
ScheduleFn = Callable[[float, str], None]


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of a retry decision."""

    retry: bool
    attempt: int
    delay: float = 0.0


class RetryPolicy:
    """Bounded retry with a fixed delay."""

    def __init__(self, max_retries: int = 3, retry_delay: float = 2.0):
        """
        Initialize retry policy.

        Args:
            max_retries: Retries allowed per item.
            retry_delay: Delay before a retried item is admissible again, in seconds.
        """
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    def decide(self, retry_count: int) -> RetryDecision:
        """Retry while the item has budget left, otherwise fail it."""
        if retry_count < self.max_retries:
            return RetryDecision(retry=True, attempt=retry_count + 1, delay=self.retry_delay)
        return RetryDecision(retry=False, attempt=retry_count)


class ItemFailureHandler:
    """Apply the retry policy to a failed item."""

    def __init__(
        self,
        store: TaskStore,
        tracker: ActiveItemTracker,
        policy: RetryPolicy,
        notifier: ProgressNotifier,
        admit: AdmitFn,
        schedule: ScheduleFn,
    ):
        self.store = store
        self.tracker = tracker
        self.policy = policy
        self.notifier = notifier
        self.admit = admit
        self.schedule = schedule

    async def on_item_failure(self, task_id: str, index: int, error: str) -> RetryDecision | None:
        """
        Retry or fail an item.

        Args:
            task_id: Task owning the item.
            index: Item index.
            error: Failure reason.

        Returns:
            The decision taken, or None when the failure was discarded.
        """
        task = await self.store.get_task(task_id)
        item = task.item(index) if task else None

        if task is None or item is None:
            logger.warning(f"Failure reported for unknown task {task_id} item {index}")
            self.tracker.discard(task_id, index)
            return None

        if not task.is_running:
            logger.debug(f"Ignoring failure of item {index}: task {task_id} is {task.status.value}")
            self.tracker.discard(task_id, index)
            return None

        decision = self.policy.decide(item.retry_count)

        if decision.retry:
            logger.info(
                f"Scheduling retry {decision.attempt}/{self.policy.max_retries} "
                f"for task {task_id} item {index}"
            )
            retried = await self.store.mark_item_pending_retry(task_id, index, error)
            self.tracker.discard(task_id, index)
            if retried:
                self.schedule(decision.delay, task_id)
            return decision

        logger.warning(f"Task {task_id} item {index} failed after {item.retry_count} retries: {error}")
        failed = await self.store.fail_item(task_id, index, error)
        self.tracker.discard(task_id, index)

        if failed:
            updated = await self.store.get_task(task_id)
            await self.notifier.emit(updated or task, ProgressStatus.ITEM_FAILED, item_index=index, error=error)
            await self.admit(task_id)
        return decision
