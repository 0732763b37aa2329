import logging
from typing import Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.domain.effort.schemas import (
    EffortModifier,
    EffortResult,
    ModifierEffect,
    RoomEffort,
    RoomSelection,
    TaskEffort,
)
from cleanbook.domain.pricing.models import JobType
from cleanbook.domain.tasks import service as task_service
from cleanbook.domain.tasks.db_models import Task
from cleanbook.shared.rounding import round_half_away

logger = logging.getLogger(__name__)

STANDARD_ROOMS = ("living_room", "kitchen", "bathroom")
JOB_TYPE_MULTIPLIERS = {
    JobType.standard: 1.0,
    JobType.deep: 1.5,
    JobType.move_out: 1.75,
}


def apply_modifiers(
    base_minutes: float, modifiers: Sequence[EffortModifier] | None
) -> tuple[float, list[ModifierEffect]]:
    """Add each modifier's delta, measured against the unmodified base.

    Returns the unrounded total so callers round once at the end.
    """
    total = float(base_minutes)
    effects: list[ModifierEffect] = []
    for modifier in modifiers or ():
        delta = 0.0
        if modifier.multiplier:
            delta += base_minutes * (modifier.multiplier - 1)
        if modifier.additional_minutes:
            delta += modifier.additional_minutes
        total += delta
        effects.append(
            ModifierEffect(
                type=modifier.type,
                multiplier=modifier.multiplier,
                additional_minutes=modifier.additional_minutes,
                effect_minutes=round_half_away(delta),
            )
        )
    return total, effects


def _room_effort(room: RoomSelection, tasks: list[Task]) -> RoomEffort:
    minutes_per_room = sum(task.effort_minutes for task in tasks)
    return RoomEffort(
        room_type=room.room_type,
        quantity=room.quantity,
        minutes_per_room=minutes_per_room,
        total_minutes=minutes_per_room * room.quantity,
        tasks=[
            TaskEffort(task_id=task.task_id, name=task.name, effort_minutes=task.effort_minutes)
            for task in tasks
        ],
    )


async def calculate_effort(
    session: AsyncSession,
    rooms: Sequence[RoomSelection],
    modifiers: Sequence[EffortModifier] | None = None,
) -> EffortResult:
    explicit_ids = [task_id for room in rooms if room.task_ids for task_id in room.task_ids]
    known = await task_service.get_tasks_by_ids(session, explicit_ids)
    dropped: list[str] = []
    breakdown: list[RoomEffort] = []

    for room in rooms:
        if room.task_ids:
            tasks = []
            for task_id in room.task_ids:
                task = known.get(task_id)
                if task is None:
                    dropped.append(task_id)
                    continue
                tasks.append(task)
        else:
            tasks = await task_service.get_tasks_by_room_type(session, room.room_type)
        breakdown.append(_room_effort(room, tasks))

    if dropped:
        logger.warning(
            "effort_tasks_dropped",
            extra={"extra": {"dropped_count": len(dropped), "task_ids": dropped[:20]}},
        )

    base_minutes = sum(room.total_minutes for room in breakdown)
    modified_minutes, effects = apply_modifiers(base_minutes, modifiers)
    return EffortResult(
        base_minutes=base_minutes,
        modified_minutes=round_half_away(modified_minutes),
        breakdown=breakdown,
        modifiers=effects,
        dropped_task_ids=dropped,
    )


def group_task_ids(task_ids: Iterable[str], tasks: dict[str, Task]) -> tuple[list[RoomSelection], list[str]]:
    """Group known task ids into one room selection per room type, first-seen order."""
    grouped: dict[str, list[str]] = {}
    unknown: list[str] = []
    for task_id in task_ids:
        task = tasks.get(task_id)
        if task is None:
            unknown.append(task_id)
            continue
        grouped.setdefault(task.room_type, []).append(task_id)
    rooms = [RoomSelection(room_type=room_type, quantity=1, task_ids=ids) for room_type, ids in grouped.items()]
    return rooms, unknown


async def calculate_effort_from_tasks(
    session: AsyncSession,
    task_ids: Sequence[str],
    modifiers: Sequence[EffortModifier] | None = None,
) -> EffortResult:
    if not task_ids:
        return EffortResult(base_minutes=0, modified_minutes=0)
    tasks = await task_service.get_tasks_by_ids(session, task_ids)
    rooms, unknown = group_task_ids(task_ids, tasks)
    result = await calculate_effort(session, rooms, modifiers)
    if unknown:
        logger.warning(
            "effort_tasks_dropped",
            extra={"extra": {"dropped_count": len(unknown), "task_ids": unknown[:20]}},
        )
        result.dropped_task_ids = unknown + result.dropped_task_ids
    return result


async def estimate_by_job_type(session: AsyncSession, job_type: JobType | str) -> int:
    resolved = JobType(job_type)
    all_tasks = await task_service.get_all_tasks_by_room_type(session)
    if resolved == JobType.standard:
        room_types = [room for room in STANDARD_ROOMS if room in all_tasks]
    else:
        room_types = list(all_tasks)
    base_minutes = sum(task.effort_minutes for room in room_types for task in all_tasks[room])
    return round_half_away(base_minutes * JOB_TYPE_MULTIPLIERS[resolved])
