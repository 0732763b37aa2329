import logging
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, time
from typing import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.domain.bookings.db_models import ACTIVE_JOB_STATUSES, Job
from cleanbook.domain.cleaners.db_models import (
    CLEANER_ACTIVE,
    Cleaner,
    CleanerSchedule,
    Zone,
    cleaner_zones,
)
from cleanbook.domain.errors import ValidationError
from cleanbook.settings import settings

logger = logging.getLogger(__name__)

DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
MINUTES_PER_DAY = 24 * 60
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

REASON_NOT_ACTIVE = "not active"
REASON_DATE_BLOCKED = "date blocked"
REASON_DAY_OFF = "does not work on {day}"
REASON_OUTSIDE_HOURS = "outside working hours ({requested} vs {working})"
REASON_CONFLICT = "conflicting booking"

Interval = tuple[int, int]


@dataclass
class AvailabilityResult:
    cleaner: Cleaner
    is_available: bool
    reason: str | None = None
    schedule: CleanerSchedule | None = None


def time_to_minutes(value: str | time | int) -> int:
    if isinstance(value, int):
        minutes = value
    elif isinstance(value, time):
        minutes = value.hour * 60 + value.minute
    else:
        match = _TIME_RE.match(value.strip())
        if not match:
            raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
        hours, mins = int(match.group(1)), int(match.group(2))
        if hours > 23 or mins > 59:
            raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
        minutes = hours * 60 + mins
    if not 0 <= minutes < MINUTES_PER_DAY:
        raise ValidationError(f"Time out of range: {value!r}")
    return minutes


def minutes_to_time(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def intervals_overlap(first: Interval, second: Interval) -> bool:
    """Half-open [start, end) overlap; touching intervals do not overlap."""
    return first[0] < second[1] and first[1] > second[0]


def _schedule_for(cleaner: Cleaner, target_date: date) -> CleanerSchedule | None:
    weekday = target_date.weekday()
    for schedule in cleaner.schedules:
        if schedule.day_of_week == weekday and schedule.is_available:
            return schedule
    return None


def _static_check(
    cleaner: Cleaner, target_date: date, start_minute: int, duration_minutes: int
) -> AvailabilityResult | None:
    if cleaner.status != CLEANER_ACTIVE:
        return AvailabilityResult(cleaner, False, REASON_NOT_ACTIVE)
    if any(blocked.blocked_date == target_date for blocked in cleaner.blocked_dates):
        return AvailabilityResult(cleaner, False, REASON_DATE_BLOCKED)
    schedule = _schedule_for(cleaner, target_date)
    if schedule is None:
        return AvailabilityResult(
            cleaner, False, REASON_DAY_OFF.format(day=DAY_NAMES[target_date.weekday()])
        )
    work_start = time_to_minutes(schedule.start_time)
    work_end = time_to_minutes(schedule.end_time)
    end_minute = start_minute + duration_minutes
    if start_minute < work_start or end_minute > work_end:
        reason = REASON_OUTSIDE_HOURS.format(
            requested=f"{minutes_to_time(start_minute)}-{minutes_to_time(end_minute % MINUTES_PER_DAY)}",
            working=f"{minutes_to_time(work_start)}-{minutes_to_time(work_end)}",
        )
        return AvailabilityResult(cleaner, False, reason, schedule)
    return None


def evaluate_availability(
    cleaner: Cleaner,
    target_date: date,
    start_minute: int,
    duration_minutes: int,
    busy: Sequence[Interval],
) -> AvailabilityResult:
    """Run the five checks in order and stop at the first failure."""
    failure = _static_check(cleaner, target_date, start_minute, duration_minutes)
    if failure is not None:
        return failure
    schedule = _schedule_for(cleaner, target_date)
    requested = (start_minute, start_minute + duration_minutes)
    if any(intervals_overlap(requested, interval) for interval in busy):
        return AvailabilityResult(cleaner, False, REASON_CONFLICT, schedule)
    return AvailabilityResult(cleaner, True, None, schedule)


async def load_busy_intervals(
    session: AsyncSession,
    cleaner_ids: Iterable[str],
    target_date: date,
    *,
    exclude_job_id: str | None = None,
) -> dict[str, list[Interval]]:
    ids = list(cleaner_ids)
    if not ids:
        return {}
    stmt = select(Job.cleaner_id, Job.scheduled_start_minute, Job.estimated_duration_minutes).where(
        Job.cleaner_id.in_(ids),
        Job.scheduled_date == target_date,
        Job.status.in_(ACTIVE_JOB_STATUSES),
    )
    if exclude_job_id:
        stmt = stmt.where(Job.job_id != exclude_job_id)
    busy: dict[str, list[Interval]] = defaultdict(list)
    for cleaner_id, start, duration in (await session.execute(stmt)).all():
        busy[cleaner_id].append((start, start + duration))
    for intervals in busy.values():
        intervals.sort()
    return dict(busy)


async def check_cleaner_availability(
    session: AsyncSession,
    cleaner: Cleaner,
    target_date: date,
    start_time: str | time | int,
    duration_minutes: int,
    *,
    exclude_job_id: str | None = None,
) -> AvailabilityResult:
    start_minute = time_to_minutes(start_time)
    failure = _static_check(cleaner, target_date, start_minute, duration_minutes)
    if failure is not None:
        return failure
    busy = await load_busy_intervals(session, [cleaner.cleaner_id], target_date, exclude_job_id=exclude_job_id)
    return evaluate_availability(
        cleaner, target_date, start_minute, duration_minutes, busy.get(cleaner.cleaner_id, [])
    )


async def get_zone(session: AsyncSession, zone_id: str) -> Zone | None:
    return await session.get(Zone, zone_id)


async def get_zone_cleaners(session: AsyncSession, zone_id: str) -> list[Cleaner]:
    stmt = (
        select(Cleaner)
        .join(cleaner_zones, cleaner_zones.c.cleaner_id == Cleaner.cleaner_id)
        .where(cleaner_zones.c.zone_id == zone_id)
        .order_by(Cleaner.cleaner_id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().unique())


async def find_available_cleaners(
    session: AsyncSession,
    zone_id: str,
    target_date: date,
    start_time: str | time | int,
    duration_minutes: int,
    *,
    exclude_job_id: str | None = None,
) -> list[AvailabilityResult]:
    """Evaluate every cleaner serving the zone; unavailable ones carry their reason."""
    start_minute = time_to_minutes(start_time)
    if duration_minutes <= 0:
        raise ValidationError("duration_minutes must be positive")
    cleaners = await get_zone_cleaners(session, zone_id)
    busy = await load_busy_intervals(
        session, [cleaner.cleaner_id for cleaner in cleaners], target_date, exclude_job_id=exclude_job_id
    )
    results = [
        evaluate_availability(
            cleaner, target_date, start_minute, duration_minutes, busy.get(cleaner.cleaner_id, [])
        )
        for cleaner in cleaners
    ]
    logger.debug(
        "availability_evaluated",
        extra={
            "extra": {
                "zone_id": zone_id,
                "candidates": len(results),
                "available": sum(1 for result in results if result.is_available),
            }
        },
    )
    return results


def free_slots(
    work_start: int,
    work_end: int,
    duration_minutes: int,
    busy: Sequence[Interval],
    step_minutes: int,
) -> list[int]:
    slots: list[int] = []
    start = work_start
    while start + duration_minutes <= work_end:
        candidate = (start, start + duration_minutes)
        if not any(intervals_overlap(candidate, interval) for interval in busy):
            slots.append(start)
        start += step_minutes
    return slots


async def get_available_time_slots(
    session: AsyncSession,
    cleaner_id: str,
    target_date: date,
    duration_minutes: int,
    *,
    step_minutes: int | None = None,
) -> list[str]:
    if duration_minutes <= 0:
        raise ValidationError("duration_minutes must be positive")
    cleaner = await session.get(Cleaner, cleaner_id)
    if cleaner is None or cleaner.status != CLEANER_ACTIVE:
        return []
    if any(blocked.blocked_date == target_date for blocked in cleaner.blocked_dates):
        return []
    schedule = _schedule_for(cleaner, target_date)
    if schedule is None:
        return []
    busy = await load_busy_intervals(session, [cleaner_id], target_date)
    slots = free_slots(
        time_to_minutes(schedule.start_time),
        time_to_minutes(schedule.end_time),
        duration_minutes,
        busy.get(cleaner_id, []),
        step_minutes or settings.slot_step_minutes,
    )
    return [minutes_to_time(slot) for slot in slots]
