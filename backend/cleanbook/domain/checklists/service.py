import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.domain.checklists.db_models import Checklist, ChecklistItem
from cleanbook.domain.checklists.schemas import ChecklistResponse, CompletionSummary
from cleanbook.domain.effort.schemas import effort_hours
from cleanbook.domain.errors import NotFoundError, ValidationError
from cleanbook.domain.tasks import service as task_service
from cleanbook.shared.rounding import round_half_away

logger = logging.getLogger(__name__)


async def build_checklist(session: AsyncSession, job_id: str, task_ids: Sequence[str]) -> Checklist:
    """Snapshot the selected tasks for a job.

    Only flushes; the caller owns the transaction so the job and its checklist commit together.
    """
    tasks = await task_service.get_tasks_by_ids(session, task_ids)
    selected = [tasks[task_id] for task_id in task_ids if task_id in tasks]
    if not selected:
        raise ValidationError("No valid tasks provided for checklist")

    checklist = Checklist(
        job_id=job_id,
        total_tasks=len(selected),
        total_minutes=sum(task.effort_minutes for task in selected),
    )
    checklist.items = [
        ChecklistItem(
            position=position,
            source_task_id=task.task_id,
            room=task.room_type,
            task_name=task.name,
            minutes=task.effort_minutes,
            is_priority=task.is_priority,
        )
        for position, task in enumerate(selected)
    ]
    session.add(checklist)
    await session.flush()
    return checklist


async def get_checklist(session: AsyncSession, checklist_id: str) -> Checklist | None:
    return await session.get(Checklist, checklist_id)


async def get_checklist_for_job(session: AsyncSession, job_id: str) -> Checklist | None:
    return await session.scalar(select(Checklist).where(Checklist.job_id == job_id))


def to_response(checklist: Checklist) -> ChecklistResponse:
    return ChecklistResponse(
        checklist_id=checklist.checklist_id,
        job_id=checklist.job_id,
        total_tasks=checklist.total_tasks,
        total_minutes=checklist.total_minutes,
        effort_hours=effort_hours(checklist.total_minutes),
        items=checklist.items,
    )


async def mark_item_completed(
    session: AsyncSession,
    checklist_id: str,
    item_id: int,
    *,
    is_completed: bool = True,
    notes: str | None = None,
) -> ChecklistItem:
    item = await session.scalar(
        select(ChecklistItem).where(
            ChecklistItem.item_id == item_id, ChecklistItem.checklist_id == checklist_id
        )
    )
    if item is None:
        raise NotFoundError("Checklist item not found")
    item.is_completed = is_completed
    item.completed_at = datetime.now(timezone.utc) if is_completed else None
    if notes is not None:
        item.notes = notes
    await session.commit()
    await session.refresh(item)
    return item


def completion_summary(checklist: Checklist) -> CompletionSummary:
    items = list(checklist.items)
    completed = [item for item in items if item.is_completed]
    remaining = [item for item in items if not item.is_completed]
    progress = round_half_away(len(completed) * 100 / len(items)) if items else 0
    return CompletionSummary(
        total_tasks=checklist.total_tasks,
        completed_tasks=len(completed),
        progress=progress,
        estimated_minutes=checklist.total_minutes,
        remaining_minutes=sum(item.minutes for item in remaining),
        remaining_tasks=[item.task_name for item in remaining],
    )


async def get_completion_summary(session: AsyncSession, checklist_id: str) -> CompletionSummary:
    checklist = await get_checklist(session, checklist_id)
    if checklist is None:
        raise NotFoundError("Checklist not found")
    return completion_summary(checklist)
