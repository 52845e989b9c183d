"""
Task store backed by async SQLAlchemy.

Item transitions are conditional UPDATE statements guarded by the
expected current status and by the task still running; the matching
counter increment runs in the same transaction. Task status
compare-and-set works the same way, so a cancel
and a finalize racing on one task cannot both succeed.
"""

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.exceptions import NotFoundError
from src.core.state import (
    TERMINAL_TASK_STATUSES,
    EmbellishmentTask,
    ItemStatus,
    TaskItem,
    TaskStatus,
    utcnow,
)
from src.store.database import get_db_session
from src.store.models import TaskItemRow, TaskRow


def _to_model(row: TaskRow) -> EmbellishmentTask:
    return EmbellishmentTask(
        id=row.id,
        resource_id=row.resource_id,
        owner_id=row.owner_id,
        type=row.type,
        method=row.method,
        parameter_overrides=row.parameter_overrides or {},
        items=[
            TaskItem(
                index=item.index,
                external_ref=item.external_ref,
                result_ref=item.result_ref,
                status=ItemStatus(item.status),
                retry_count=item.retry_count,
                error=item.error,
                completed_at=item.completed_at,
            )
            for item in sorted(row.items, key=lambda i: i.index)
        ],
        total_items=row.total_items,
        completed_items=row.completed_items,
        failed_items=row.failed_items,
        status=TaskStatus(row.status),
        result_container_id=row.result_container_id,
        created_at=row.created_at,
        started_at=row.started_at,
        completed_at=row.completed_at,
    )


def _status_values(status: TaskStatus) -> dict[str, Any]:
    values: dict[str, Any] = {"status": status.value}
    if status == TaskStatus.RUNNING:
        values["started_at"] = utcnow()
    if status in TERMINAL_TASK_STATUSES:
        values["completed_at"] = utcnow()
    return values


class SqlTaskStore:
    """
    Task store persisted through SQLAlchemy.

    Example:
        >>> engine = build_engine("sqlite+aiosqlite://")
        >>> await init_db(engine)
        >>> store = SqlTaskStore(build_session_maker(engine))
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_maker = session_maker

    def _session(self):
        return get_db_session(self._session_maker)

    async def create_task(self, task: EmbellishmentTask) -> EmbellishmentTask:
        async with self._session() as session:
            session.add(
                TaskRow(
                    id=task.id,
                    resource_id=task.resource_id,
                    owner_id=task.owner_id,
                    type=task.type,
                    method=task.method,
                    parameter_overrides=task.parameter_overrides,
                    total_items=task.total_items,
                    completed_items=task.completed_items,
                    failed_items=task.failed_items,
                    status=task.status.value,
                    result_container_id=task.result_container_id,
                    created_at=task.created_at,
                    started_at=task.started_at,
                    completed_at=task.completed_at,
                    items=[
                        TaskItemRow(
                            index=item.index,
                            status=item.status.value,
                            retry_count=item.retry_count,
                        )
                        for item in task.items
                    ],
                )
            )
        return task.model_copy(deep=True)

    async def get_task(self, task_id: str) -> EmbellishmentTask | None:
        async with self._session() as session:
            result = await session.execute(select(TaskRow).where(TaskRow.id == task_id))
            row = result.scalar_one_or_none()
            return _to_model(row) if row else None

    async def find_running_tasks(self, resource_id: str) -> list[EmbellishmentTask]:
        async with self._session() as session:
            result = await session.execute(
                select(TaskRow).where(
                    TaskRow.resource_id == resource_id,
                    TaskRow.status == TaskStatus.RUNNING.value,
                )
            )
            return [_to_model(row) for row in result.scalars().all()]

    async def set_status(self, task_id: str, status: TaskStatus) -> None:
        async with self._session() as session:
            result = await session.execute(
                update(TaskRow)
                .where(TaskRow.id == task_id)
                .values(**_status_values(status))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFoundError(f"Task {task_id} not found")

    async def set_status_if(
        self,
        task_id: str,
        expected: TaskStatus,
        status: TaskStatus,
        unresolved_only: bool = False,
    ) -> bool:
        conditions = [TaskRow.id == task_id, TaskRow.status == expected.value]
        if unresolved_only:
            conditions.append(TaskRow.completed_items + TaskRow.failed_items < TaskRow.total_items)

        async with self._session() as session:
            result = await session.execute(
                update(TaskRow)
                .where(*conditions)
                .values(**_status_values(status))
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    async def set_result_container(self, task_id: str, container_id: str) -> None:
        async with self._session() as session:
            await session.execute(
                update(TaskRow)
                .where(TaskRow.id == task_id)
                .values(result_container_id=container_id)
                .execution_options(synchronize_session=False)
            )

    async def mark_item_processing(self, task_id: str, index: int) -> bool:
        return await self._transition_item(
            task_id,
            index,
            ItemStatus.PENDING,
            {"status": ItemStatus.PROCESSING.value, "external_ref": None},
        )

    async def set_item_external_ref(self, task_id: str, index: int, external_ref: str) -> None:
        async with self._session() as session:
            await session.execute(
                update(TaskItemRow)
                .where(TaskItemRow.task_id == task_id, TaskItemRow.index == index)
                .values(external_ref=external_ref)
                .execution_options(synchronize_session=False)
            )

    async def mark_item_pending_retry(self, task_id: str, index: int, error: str) -> bool:
        return await self._transition_item(
            task_id,
            index,
            ItemStatus.PROCESSING,
            {
                "status": ItemStatus.PENDING.value,
                "retry_count": TaskItemRow.retry_count + 1,
                "error": error,
            },
        )

    async def complete_item(self, task_id: str, index: int, result_ref: str | None) -> bool:
        return await self._transition_item(
            task_id,
            index,
            ItemStatus.PROCESSING,
            {
                "status": ItemStatus.COMPLETED.value,
                "result_ref": result_ref,
                "error": None,
                "completed_at": utcnow(),
            },
            counter="completed_items",
        )

    async def fail_item(self, task_id: str, index: int, error: str) -> bool:
        return await self._transition_item(
            task_id,
            index,
            ItemStatus.PROCESSING,
            {"status": ItemStatus.FAILED.value, "error": error},
            counter="failed_items",
        )

    async def _transition_item(
        self,
        task_id: str,
        index: int,
        expected: ItemStatus,
        values: dict[str, Any],
        counter: str | None = None,
    ) -> bool:
        """
        Apply ``values`` to an item in ``expected`` status, bumping ``counter``.

        Both statements are conditional on the task still being running; if
        the task left ``running`` between them the transaction is rolled back.
        """
        task_running = (
            select(TaskRow.id)
            .where(TaskRow.id == task_id, TaskRow.status == TaskStatus.RUNNING.value)
            .exists()
        )

        async with self._session() as session:
            result = await session.execute(
                update(TaskItemRow)
                .where(
                    TaskItemRow.task_id == task_id,
                    TaskItemRow.index == index,
                    TaskItemRow.status == expected.value,
                    task_running,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False

            if counter is not None:
                column = getattr(TaskRow, counter)
                bumped = await session.execute(
                    update(TaskRow)
                    .where(TaskRow.id == task_id, TaskRow.status == TaskStatus.RUNNING.value)
                    .values({column: column + 1})
                    .execution_options(synchronize_session=False)
                )
                if bumped.rowcount != 1:
                    await session.rollback()
                    return False
            return True
