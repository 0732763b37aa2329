import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.domain.availability import service as availability_service
from cleanbook.domain.bookings.db_models import ACTIVE_JOB_STATUSES, JOB_COMPLETED, Job, JobRating
from cleanbook.domain.cleaners.db_models import Cleaner, cleaner_zones
from cleanbook.domain.matching.schemas import CleanerMatchResponse
from cleanbook.infra.metrics import metrics
from cleanbook.settings import settings
from cleanbook.shared.rounding import round_half_away

logger = logging.getLogger(__name__)

AVAILABLE_POINTS = 50
PREFERRED_POINTS = 30
RATING_POINTS = 20
EXPERIENCE_CAP = 10
WORKLOAD_CAP = 10
PREFERRED_MIN_RATING = 4


@dataclass(frozen=True)
class MatchingCriteria:
    zone_id: str
    target_date: date
    start_time: str
    duration_minutes: int
    preferred_cleaner_id: str | None = None
    exclude_job_id: str | None = None
    as_of: date | None = None


@dataclass
class CleanerMatch:
    cleaner: Cleaner
    score: int
    is_available: bool
    is_preferred: bool
    upcoming_jobs: int
    score_parts: dict[str, float] = field(default_factory=dict)
    reasons: list[str] = field(default_factory=list)
    availability_reason: str | None = None

    @property
    def reason(self) -> str:
        return "; ".join(self.reasons)


def score_parts(
    *,
    is_available: bool,
    is_preferred: bool,
    rating_average: float,
    jobs_completed: int,
    upcoming_jobs: int,
) -> dict[str, float]:
    return {
        "available": AVAILABLE_POINTS if is_available else 0,
        "preferred": PREFERRED_POINTS if is_preferred else 0,
        "rating": (float(rating_average or 0) / 5) * RATING_POINTS,
        "experience": min((jobs_completed or 0) / 10, EXPERIENCE_CAP),
        "workload": -min(upcoming_jobs * 2, WORKLOAD_CAP),
    }


def score_cleaner(
    *,
    is_available: bool,
    is_preferred: bool,
    rating_average: float,
    jobs_completed: int,
    upcoming_jobs: int,
) -> tuple[int, dict[str, float]]:
    parts = score_parts(
        is_available=is_available,
        is_preferred=is_preferred,
        rating_average=rating_average,
        jobs_completed=jobs_completed,
        upcoming_jobs=upcoming_jobs,
    )
    return round_half_away(sum(parts.values())), parts


def match_reasons(cleaner: Cleaner, *, is_available: bool, is_preferred: bool) -> list[str]:
    if not is_available:
        return ["Not available"]
    reasons: list[str] = []
    if is_preferred:
        reasons.append("Customer preferred")
    rating = float(cleaner.rating_average or 0)
    if rating >= 4.5:
        reasons.append("Top rated")
    elif rating >= 4.0:
        reasons.append("Highly rated")
    if cleaner.jobs_completed >= 100:
        reasons.append("Very experienced")
    elif cleaner.jobs_completed >= 50:
        reasons.append("Experienced")
    return reasons or ["Available"]


def rank_matches(matches: list[CleanerMatch]) -> list[CleanerMatch]:
    return sorted(
        matches,
        key=lambda match: (-match.score, -float(match.cleaner.rating_average or 0), match.cleaner.cleaner_id),
    )


async def count_upcoming_jobs(
    session: AsyncSession, cleaner_ids: Iterable[str], as_of: date
) -> dict[str, int]:
    ids = list(cleaner_ids)
    if not ids:
        return {}
    stmt = (
        select(Job.cleaner_id, func.count(Job.job_id))
        .where(
            Job.cleaner_id.in_(ids),
            Job.status.in_(ACTIVE_JOB_STATUSES),
            Job.scheduled_date >= as_of,
        )
        .group_by(Job.cleaner_id)
    )
    return {cleaner_id: int(count) for cleaner_id, count in (await session.execute(stmt)).all()}


def _today() -> date:
    return datetime.now(timezone.utc).date()


async def find_best_cleaner(session: AsyncSession, criteria: MatchingCriteria) -> list[CleanerMatch]:
    """Score every cleaner serving the zone; unavailable cleaners stay in the ranking."""
    results = await availability_service.find_available_cleaners(
        session,
        criteria.zone_id,
        criteria.target_date,
        criteria.start_time,
        criteria.duration_minutes,
        exclude_job_id=criteria.exclude_job_id,
    )
    upcoming = await count_upcoming_jobs(
        session, [result.cleaner.cleaner_id for result in results], criteria.as_of or _today()
    )
    matches: list[CleanerMatch] = []
    for result in results:
        cleaner = result.cleaner
        is_preferred = criteria.preferred_cleaner_id == cleaner.cleaner_id
        upcoming_jobs = upcoming.get(cleaner.cleaner_id, 0)
        score, parts = score_cleaner(
            is_available=result.is_available,
            is_preferred=is_preferred,
            rating_average=cleaner.rating_average,
            jobs_completed=cleaner.jobs_completed,
            upcoming_jobs=upcoming_jobs,
        )
        matches.append(
            CleanerMatch(
                cleaner=cleaner,
                score=score,
                is_available=result.is_available,
                is_preferred=is_preferred,
                upcoming_jobs=upcoming_jobs,
                score_parts=parts,
                reasons=match_reasons(cleaner, is_available=result.is_available, is_preferred=is_preferred),
                availability_reason=result.reason,
            )
        )
    return rank_matches(matches)


async def get_best_match(session: AsyncSession, criteria: MatchingCriteria) -> CleanerMatch | None:
    matches = await find_best_cleaner(session, criteria)
    best = next((match for match in matches if match.is_available), None)
    metrics.record_matching("matched" if best else "no_cleaner")
    logger.info(
        "cleaner_matching",
        extra={
            "extra": {
                "zone_id": criteria.zone_id,
                "candidates": len(matches),
                "cleaner_id": best.cleaner.cleaner_id if best else None,
                "score": best.score if best else None,
            }
        },
    )
    return best


async def get_preferred_cleaner(session: AsyncSession, member_id: str, zone_id: str) -> str | None:
    """Cleaner from the member's latest well-rated completed job, if they still serve the zone."""
    stmt = (
        select(Job.cleaner_id)
        .join(JobRating, JobRating.job_id == Job.job_id)
        .where(
            Job.member_id == member_id,
            Job.status == JOB_COMPLETED,
            Job.cleaner_id.is_not(None),
            JobRating.rating >= PREFERRED_MIN_RATING,
        )
        .order_by(Job.completed_at.desc())
        .limit(1)
    )
    cleaner_id = await session.scalar(stmt)
    if cleaner_id is None:
        return None
    serves_zone = await session.scalar(
        select(cleaner_zones.c.cleaner_id).where(
            cleaner_zones.c.cleaner_id == cleaner_id, cleaner_zones.c.zone_id == zone_id
        )
    )
    return cleaner_id if serves_zone else None


async def get_cleaner_availability_summary(
    session: AsyncSession,
    cleaner_id: str,
    *,
    days: int = 7,
    duration_minutes: int | None = None,
    start_date: date | None = None,
) -> list[dict]:
    first_day = start_date or _today()
    duration = duration_minutes or settings.summary_job_minutes
    summary = []
    for offset in range(days):
        target = first_day + timedelta(days=offset)
        slots = await availability_service.get_available_time_slots(session, cleaner_id, target, duration)
        summary.append({"date": target, "available_slots": len(slots)})
    return summary


def match_to_response(match: CleanerMatch) -> CleanerMatchResponse:
    return CleanerMatchResponse(
        cleaner_id=match.cleaner.cleaner_id,
        cleaner_name=match.cleaner.full_name,
        score=match.score,
        is_available=match.is_available,
        is_preferred=match.is_preferred,
        upcoming_jobs=match.upcoming_jobs,
        rating_average=float(match.cleaner.rating_average or 0),
        jobs_completed=match.cleaner.jobs_completed,
        score_parts=match.score_parts,
        reasons=match.reasons,
        availability_reason=match.availability_reason,
    )
