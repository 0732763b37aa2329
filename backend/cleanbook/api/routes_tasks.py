from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.dependencies import Actor, require_admin
from cleanbook.domain.errors import NotFoundError
from cleanbook.domain.tasks import service as task_service
from cleanbook.domain.tasks.schemas import TaskCreateRequest, TaskResponse, TaskStats, TaskUpdateRequest
from cleanbook.infra.db import get_db_session

router = APIRouter()


@router.get("/v1/tasks", response_model=dict[str, list[TaskResponse]])
async def list_tasks(
    room_type: str | None = Query(None, min_length=1),
    q: str | None = Query(None, min_length=1),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, list[TaskResponse]]:
    if q:
        tasks = await task_service.search_tasks(session, q)
        grouped: dict[str, list] = {}
        for task in tasks:
            grouped.setdefault(task.room_type, []).append(task)
        return grouped
    if room_type:
        return {room_type: await task_service.get_tasks_by_room_type(session, room_type)}
    return await task_service.get_all_tasks_by_room_type(session)


@router.get("/v1/tasks/room-types", response_model=list[str])
async def list_room_types(session: AsyncSession = Depends(get_db_session)) -> list[str]:
    return await task_service.get_room_types(session)


@router.get("/v1/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, session: AsyncSession = Depends(get_db_session)) -> TaskResponse:
    task = await task_service.get_task(session, task_id)
    if task is None:
        raise NotFoundError(f"Task not found: {task_id}")
    return task


@router.get("/v1/admin/tasks/stats", response_model=TaskStats)
async def task_stats(
    session: AsyncSession = Depends(get_db_session),
    _admin: Actor = Depends(require_admin),
) -> TaskStats:
    return await task_service.get_task_stats(session)


@router.post("/v1/admin/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    request: TaskCreateRequest,
    session: AsyncSession = Depends(get_db_session),
    _admin: Actor = Depends(require_admin),
) -> TaskResponse:
    return await task_service.create_task(session, request)


@router.patch("/v1/admin/tasks/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: str,
    request: TaskUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    _admin: Actor = Depends(require_admin),
) -> TaskResponse:
    return await task_service.update_task(session, task_id, request)


@router.delete("/v1/admin/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str,
    force: bool = False,
    session: AsyncSession = Depends(get_db_session),
    _admin: Actor = Depends(require_admin),
) -> Response:
    await task_service.delete_task(session, task_id, force=force)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
