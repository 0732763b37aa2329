import logging
from collections import defaultdict
from typing import Iterable

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.domain.errors import NotFoundError
from cleanbook.domain.tasks.db_models import Task
from cleanbook.domain.tasks.schemas import TaskCreateRequest, TaskStats, TaskUpdateRequest

logger = logging.getLogger(__name__)


def _ordered(stmt):  # noqa: ANN001, ANN202
    return stmt.order_by(Task.default_order, Task.name)


async def get_tasks_by_room_type(session: AsyncSession, room_type: str) -> list[Task]:
    stmt = _ordered(select(Task).where(Task.room_type == room_type, Task.is_active.is_(True)))
    result = await session.execute(stmt)
    return list(result.scalars())


async def get_all_tasks_by_room_type(session: AsyncSession) -> dict[str, list[Task]]:
    stmt = _ordered(select(Task).where(Task.is_active.is_(True)))
    grouped: dict[str, list[Task]] = defaultdict(list)
    for task in (await session.execute(stmt)).scalars():
        grouped[task.room_type].append(task)
    return dict(grouped)


async def get_task(session: AsyncSession, task_id: str) -> Task | None:
    return await session.get(Task, task_id)


async def get_tasks_by_ids(
    session: AsyncSession, task_ids: Iterable[str], *, active_only: bool = True
) -> dict[str, Task]:
    unique_ids = {task_id for task_id in task_ids if task_id}
    if not unique_ids:
        return {}
    stmt = select(Task).where(Task.task_id.in_(unique_ids))
    if active_only:
        stmt = stmt.where(Task.is_active.is_(True))
    result = await session.execute(stmt)
    return {task.task_id: task for task in result.scalars()}


async def search_tasks(session: AsyncSession, query: str) -> list[Task]:
    pattern = f"%{query.strip().lower()}%"
    stmt = _ordered(
        select(Task).where(
            Task.is_active.is_(True),
            or_(func.lower(Task.name).like(pattern), func.lower(Task.description).like(pattern)),
        )
    )
    result = await session.execute(stmt)
    return list(result.scalars())


async def get_room_types(session: AsyncSession) -> list[str]:
    stmt = select(Task.room_type).where(Task.is_active.is_(True)).distinct().order_by(Task.room_type)
    result = await session.execute(stmt)
    return list(result.scalars())


async def create_task(session: AsyncSession, request: TaskCreateRequest) -> Task:
    task = Task(**request.model_dump())
    session.add(task)
    await session.commit()
    await session.refresh(task)
    logger.info("task_created", extra={"extra": {"task_id": task.task_id, "room_type": task.room_type}})
    return task


async def update_task(session: AsyncSession, task_id: str, request: TaskUpdateRequest) -> Task:
    task = await get_task(session, task_id)
    if task is None:
        raise NotFoundError(f"Task not found: {task_id}")
    for field_name, value in request.model_dump(exclude_unset=True).items():
        setattr(task, field_name, value)
    await session.commit()
    await session.refresh(task)
    return task


async def deactivate_task(session: AsyncSession, task_id: str) -> Task:
    return await update_task(session, task_id, TaskUpdateRequest(is_active=False))


async def delete_task(session: AsyncSession, task_id: str, *, force: bool = False) -> None:
    """Soft delete by default; ``force`` removes the row.

    Checklists keep their own copy of task names and minutes, so a hard delete never
    rewrites history.
    """
    if not force:
        await deactivate_task(session, task_id)
        return
    result = await session.execute(delete(Task).where(Task.task_id == task_id))
    if result.rowcount == 0:
        await session.rollback()
        raise NotFoundError(f"Task not found: {task_id}")
    await session.commit()
    logger.info("task_hard_deleted", extra={"extra": {"task_id": task_id}})


async def get_task_stats(session: AsyncSession) -> TaskStats:
    stmt = (
        select(Task.room_type, func.count(Task.task_id), func.coalesce(func.sum(Task.effort_minutes), 0))
        .where(Task.is_active.is_(True))
        .group_by(Task.room_type)
    )
    by_room: dict[str, int] = {}
    total_minutes = 0
    for room_type, count, minutes in (await session.execute(stmt)).all():
        by_room[room_type] = int(count)
        total_minutes += int(minutes)
    total_tasks = sum(by_room.values())
    average = round(total_minutes / total_tasks, 1) if total_tasks else 0.0
    return TaskStats(
        total_tasks=total_tasks,
        tasks_by_room_type=by_room,
        total_effort_minutes=total_minutes,
        average_effort_minutes=average,
    )
