import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.domain.availability import service as availability_service
from cleanbook.domain.bookings.db_models import (
    ACTIVE_JOB_STATUSES,
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_IN_PROGRESS,
    JOB_SCHEDULED,
    Job,
    JobNote,
    JobRating,
)
from cleanbook.domain.bookings.schemas import BookingRequest, JobResponse
from cleanbook.domain.checklists import service as checklist_service
from cleanbook.domain.checklists.db_models import Checklist
from cleanbook.domain.cleaners.db_models import ZONE_ACTIVE, Cleaner, Zone
from cleanbook.domain.effort import calculator as effort_calculator
from cleanbook.domain.effort.schemas import EffortResult
from cleanbook.domain.errors import ConflictError, NotFoundError, ValidationError
from cleanbook.domain.matching import service as matching_service
from cleanbook.domain.members.db_models import Member
from cleanbook.domain.pricing import engine as pricing_engine
from cleanbook.domain.pricing.config_loader import PricingConfig, load_pricing_config
from cleanbook.domain.pricing.models import EffortSummary, EstimateRequest, EstimateResponse, PricingBreakdown
from cleanbook.infra.metrics import metrics
from cleanbook.infra.notifications import BOOKING_CANCELLED, BOOKING_CREATED, NotificationAdapter, emit_event
from cleanbook.settings import settings
from cleanbook.shared.rounding import round_decimal

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

JOB_TRANSITIONS = {
    JOB_SCHEDULED: {JOB_IN_PROGRESS, JOB_CANCELLED},
    JOB_IN_PROGRESS: {JOB_COMPLETED, JOB_CANCELLED},
    JOB_COMPLETED: set(),
    JOB_CANCELLED: set(),
}

SLOT_CONSTRAINT_NAMES = {"uq_jobs_cleaner_active_slot", "jobs_cleaner_time_no_overlap"}
RATING_CONSTRAINT_NAMES = {"job_ratings_job_id_key", "uq_job_ratings_job_id"}


@dataclass
class BookingResult:
    job: Job
    checklist: Checklist
    pricing: PricingBreakdown
    effort: EffortResult
    match: matching_service.CleanerMatch


def assert_valid_job_transition(current: str, target: str) -> None:
    allowed = JOB_TRANSITIONS.get(current, set())
    if not allowed:
        raise ConflictError(f"Job is already in terminal status: {current}")
    if target not in allowed:
        raise ConflictError(f"Cannot transition job from {current} to {target}")


def _constraint_name(exc: IntegrityError) -> str | None:
    diag = getattr(exc.orig, "diag", None)
    return getattr(diag, "constraint_name", None)


def is_booking_overlap_integrity_error(exc: IntegrityError) -> bool:
    constraint = _constraint_name(exc)
    if constraint:
        return constraint in SLOT_CONSTRAINT_NAMES
    if getattr(exc.orig, "sqlstate", None) == "23P01":
        return True
    message = str(exc.orig)
    if any(name in message for name in SLOT_CONSTRAINT_NAMES):
        return True
    # SQLite reports the columns instead of the index name.
    return "jobs.cleaner_id, jobs.scheduled_date, jobs.scheduled_start_minute" in message


def is_duplicate_rating_integrity_error(exc: IntegrityError) -> bool:
    constraint = _constraint_name(exc)
    if constraint:
        return constraint in RATING_CONSTRAINT_NAMES
    message = str(exc.orig)
    return "job_ratings.job_id" in message or any(name in message for name in RATING_CONSTRAINT_NAMES)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def job_to_response(job: Job) -> JobResponse:
    return JobResponse(
        job_id=job.job_id,
        member_id=job.member_id,
        cleaner_id=job.cleaner_id,
        cleaner_name=job.cleaner.full_name if job.cleaner else None,
        zone_id=job.zone_id,
        status=job.status,
        scheduled_date=job.scheduled_date,
        scheduled_time=job.scheduled_time,
        estimated_duration_minutes=job.estimated_duration_minutes,
        task_count=job.task_count,
        subtotal_cents=job.subtotal_cents,
        modifiers_total_cents=job.modifiers_total_cents,
        discount_cents=job.discount_cents,
        platform_fee_cents=job.platform_fee_cents,
        total_cents=job.total_cents,
        cleaner_payout_cents=job.cleaner_payout_cents,
        payout_batch_id=job.payout_batch_id,
        rating=job.rating.rating if job.rating else None,
        started_at=job.started_at,
        completed_at=job.completed_at,
        cancelled_at=job.cancelled_at,
    )


async def add_audit_note(
    session: AsyncSession,
    entity_id: str,
    content: str,
    *,
    created_by: str | None = None,
    entity_type: str = "job",
) -> None:
    """Append an audit note in its own commit; failures are logged, never raised."""
    try:
        session.add(
            JobNote(
                entity_type=entity_type,
                entity_id=entity_id,
                content=content,
                created_by=created_by or SYSTEM_ACTOR,
            )
        )
        await session.commit()
    except Exception as exc:  # noqa: BLE001
        await session.rollback()
        logger.warning(
            "audit_note_failed",
            extra={"extra": {"entity_type": entity_type, "entity_id": entity_id, "error": type(exc).__name__}},
        )


async def list_audit_notes(session: AsyncSession, entity_id: str, entity_type: str = "job") -> list[JobNote]:
    result = await session.execute(
        select(JobNote)
        .where(JobNote.entity_type == entity_type, JobNote.entity_id == entity_id)
        .order_by(JobNote.created_at, JobNote.note_id)
    )
    return list(result.scalars())


async def get_job(session: AsyncSession, job_id: str) -> Job:
    job = await session.get(Job, job_id)
    if job is None:
        raise NotFoundError(f"Job not found: {job_id}")
    return job


async def _get_job_for_update(session: AsyncSession, job_id: str) -> Job:
    stmt = select(Job).where(Job.job_id == job_id).with_for_update().execution_options(populate_existing=True)
    job = await session.scalar(stmt)
    if job is None:
        raise NotFoundError(f"Job not found: {job_id}")
    return job


async def _lock_cleaner(session: AsyncSession, cleaner_id: str) -> Cleaner:
    stmt = (
        select(Cleaner)
        .where(Cleaner.cleaner_id == cleaner_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    cleaner = await session.scalar(stmt)
    if cleaner is None:
        raise NotFoundError(f"Cleaner not found: {cleaner_id}")
    return cleaner


def _slot_conflict(exc: IntegrityError, **context: Any) -> ConflictError:
    logger.info("booking_conflict", extra={"extra": context})
    metrics.record_booking("conflict")
    return ConflictError("Requested slot is no longer available for this cleaner")


async def estimate(
    session: AsyncSession, request: EstimateRequest, config: PricingConfig | None = None
) -> EstimateResponse:
    effort = await effort_calculator.calculate_effort_from_tasks(session, request.task_ids)
    if effort.modified_minutes <= 0:
        raise ValidationError("No valid tasks selected")
    config = config or await load_pricing_config(session)
    breakdown = pricing_engine.calculate_price(effort.modified_minutes, request.flags, request.member_tier, config)
    return EstimateResponse(
        effort=EffortSummary(
            base_minutes=effort.base_minutes,
            modified_minutes=effort.modified_minutes,
            hours=effort.hours,
        ),
        pricing=breakdown,
        total_display=pricing_engine.format_price(breakdown.total_cents),
        minimum_job_value_cents=pricing_engine.get_minimum_job_price(config),
        meets_minimum=pricing_engine.meets_minimum(breakdown, config),
    )


async def create_booking(
    session: AsyncSession,
    member_id: str,
    request: BookingRequest,
    *,
    created_by: str | None = None,
    notifier: NotificationAdapter | None = None,
    pricing_config: PricingConfig | None = None,
    as_of: date | None = None,
) -> BookingResult:
    """Effort, price, match, then write the job and its checklist in one transaction."""
    member = await session.get(Member, member_id)
    if member is None:
        raise NotFoundError("Member not found")
    zone = await session.get(Zone, request.zone_id)
    if zone is None:
        raise NotFoundError(f"Zone not found: {request.zone_id}")
    if zone.status != ZONE_ACTIVE:
        raise ValidationError(f"Zone {zone.name} is not accepting bookings")
    start_minute = availability_service.time_to_minutes(request.scheduled_time)

    effort = await effort_calculator.calculate_effort_from_tasks(
        session, request.task_ids, request.effort_modifiers
    )
    if effort.modified_minutes <= 0:
        raise ValidationError("No valid tasks selected")

    config = pricing_config or await load_pricing_config(session)
    breakdown = pricing_engine.calculate_price(effort.modified_minutes, request.flags, member.tier, config)
    if not pricing_engine.meets_minimum(breakdown, config):
        raise ValidationError(
            f"Job total {pricing_engine.format_price(breakdown.total_cents)} is below the minimum "
            f"{pricing_engine.format_price(config.min_job_value_cents)}"
        )

    preferred_cleaner_id = request.preferred_cleaner_id or await matching_service.get_preferred_cleaner(
        session, member_id, request.zone_id
    )
    criteria = matching_service.MatchingCriteria(
        zone_id=request.zone_id,
        target_date=request.scheduled_date,
        start_time=request.scheduled_time,
        duration_minutes=effort.modified_minutes,
        preferred_cleaner_id=preferred_cleaner_id,
        as_of=as_of,
    )
    match = await matching_service.get_best_match(session, criteria)
    if match is None:
        metrics.record_booking("no_cleaner")
        raise ConflictError("No cleaner available for the selected time")

    matched_cleaner_id = match.cleaner.cleaner_id
    try:
        cleaner = await _lock_cleaner(session, matched_cleaner_id)
        recheck = await availability_service.check_cleaner_availability(
            session, cleaner, request.scheduled_date, start_minute, effort.modified_minutes
        )
        if not recheck.is_available:
            raise ConflictError(f"Selected cleaner is no longer available: {recheck.reason}")

        job = Job(
            member_id=member.member_id,
            cleaner_id=cleaner.cleaner_id,
            zone_id=zone.zone_id,
            address=request.address,
            status=JOB_SCHEDULED,
            scheduled_date=request.scheduled_date,
            scheduled_start_minute=start_minute,
            estimated_duration_minutes=effort.modified_minutes,
            member_tier=member.tier,
            pricing_flags=request.flags.model_dump(),
            subtotal_cents=breakdown.subtotal_cents,
            modifiers_total_cents=breakdown.modifiers_total_cents,
            discount_cents=breakdown.tier_discount.amount_cents if breakdown.tier_discount else 0,
            platform_fee_cents=breakdown.platform_fee.amount_cents,
            total_cents=breakdown.total_cents,
            cleaner_payout_cents=breakdown.cleaner_payout_cents,
            pricing_config_hash=breakdown.pricing_config_hash,
            notes=request.notes,
        )
        session.add(job)
        await session.flush()
        checklist = await checklist_service.build_checklist(session, job.job_id, request.task_ids)
        job.task_count = checklist.total_tasks
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if is_booking_overlap_integrity_error(exc):
            raise _slot_conflict(
                exc, cleaner_id=matched_cleaner_id, scheduled_date=str(request.scheduled_date)
            ) from exc
        raise
    except Exception:
        await session.rollback()
        raise

    await session.refresh(job, attribute_names=["cleaner", "rating"])
    metrics.record_booking("created")
    logger.info(
        "booking_created",
        extra={
            "extra": {
                "job_id": job.job_id,
                "cleaner_id": job.cleaner_id,
                "zone_id": job.zone_id,
                "duration_minutes": job.estimated_duration_minutes,
                "total_cents": job.total_cents,
                "score": match.score,
            }
        },
    )
    await add_audit_note(
        session,
        job.job_id,
        f"Job created. Assigned to {cleaner.full_name}. {match.reason}",
        created_by=created_by,
    )
    await emit_event(
        notifier,
        BOOKING_CREATED,
        {"job_id": job.job_id, "member_id": job.member_id, "cleaner_id": job.cleaner_id},
    )
    return BookingResult(job=job, checklist=checklist, pricing=breakdown, effort=effort, match=match)


async def _transition(session: AsyncSession, job_id: str, target: str) -> Job:
    job = await _get_job_for_update(session, job_id)
    assert_valid_job_transition(job.status, target)
    job.status = target
    now = _now()
    if target == JOB_IN_PROGRESS:
        job.started_at = now
    elif target == JOB_COMPLETED:
        job.completed_at = now
        if job.cleaner_id:
            await session.execute(
                update(Cleaner)
                .where(Cleaner.cleaner_id == job.cleaner_id)
                .values(jobs_completed=Cleaner.jobs_completed + 1)
            )
    elif target == JOB_CANCELLED:
        job.cancelled_at = now
    await session.commit()
    await session.refresh(job)
    metrics.record_booking(target.lower())
    logger.info("job_status_changed", extra={"extra": {"job_id": job_id, "status": target}})
    return job


async def start_job(session: AsyncSession, job_id: str, *, actor_id: str | None = None) -> Job:
    job = await _transition(session, job_id, JOB_IN_PROGRESS)
    await add_audit_note(session, job_id, f"Status changed to {JOB_IN_PROGRESS}", created_by=actor_id)
    return job


async def complete_job(session: AsyncSession, job_id: str, *, actor_id: str | None = None) -> Job:
    job = await _transition(session, job_id, JOB_COMPLETED)
    await add_audit_note(session, job_id, f"Status changed to {JOB_COMPLETED}", created_by=actor_id)
    return job


async def cancel_booking(
    session: AsyncSession,
    job_id: str,
    *,
    reason: str | None = None,
    actor_id: str | None = None,
    notifier: NotificationAdapter | None = None,
) -> Job:
    job = await _get_job_for_update(session, job_id)
    assert_valid_job_transition(job.status, JOB_CANCELLED)
    job.status = JOB_CANCELLED
    job.cancelled_at = _now()
    job.cancellation_reason = reason
    await session.commit()
    await session.refresh(job)
    metrics.record_booking("cancelled")
    logger.info("booking_cancelled", extra={"extra": {"job_id": job_id, "actor_id": actor_id}})
    await add_audit_note(
        session, job_id, f"Booking cancelled. Reason: {reason or 'not provided'}", created_by=actor_id
    )
    await emit_event(
        notifier,
        BOOKING_CANCELLED,
        {"job_id": job.job_id, "member_id": job.member_id, "cleaner_id": job.cleaner_id},
    )
    return job


async def reschedule_booking(
    session: AsyncSession,
    job_id: str,
    new_date: date,
    new_time: str,
    *,
    actor_id: str | None = None,
) -> Job:
    """Move a scheduled job; the assigned cleaner must be free at the new slot."""
    start_minute = availability_service.time_to_minutes(new_time)
    job = await _get_job_for_update(session, job_id)
    if job.status != JOB_SCHEDULED:
        raise ConflictError(f"Only scheduled jobs can be rescheduled (status {job.status})")
    if job.cleaner_id is None:
        raise ConflictError("Job has no assigned cleaner")
    cleaner_id = job.cleaner_id

    try:
        cleaner = await _lock_cleaner(session, cleaner_id)
        check = await availability_service.check_cleaner_availability(
            session,
            cleaner,
            new_date,
            start_minute,
            job.estimated_duration_minutes,
            exclude_job_id=job.job_id,
        )
        if not check.is_available:
            raise ConflictError(f"Assigned cleaner cannot take the new slot: {check.reason}")
        job.scheduled_date = new_date
        job.scheduled_start_minute = start_minute
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if is_booking_overlap_integrity_error(exc):
            raise _slot_conflict(exc, job_id=job_id, cleaner_id=cleaner_id) from exc
        raise
    except Exception:
        await session.rollback()
        raise

    await session.refresh(job)
    metrics.record_booking("rescheduled")
    logger.info("booking_rescheduled", extra={"extra": {"job_id": job_id, "scheduled_date": str(new_date)}})
    await add_audit_note(
        session, job_id, f"Rescheduled to {new_date.isoformat()} at {job.scheduled_time}", created_by=actor_id
    )
    return job


async def reassign_cleaner(
    session: AsyncSession,
    job_id: str,
    *,
    actor_id: str | None = None,
    as_of: date | None = None,
) -> Job:
    """Rematch a scheduled job to the best available cleaner other than the current one."""
    job = await _get_job_for_update(session, job_id)
    if job.status != JOB_SCHEDULED:
        raise ConflictError(f"Only scheduled jobs can be reassigned (status {job.status})")
    previous_cleaner_id = job.cleaner_id
    matches = await matching_service.find_best_cleaner(
        session,
        matching_service.MatchingCriteria(
            zone_id=job.zone_id,
            target_date=job.scheduled_date,
            start_time=job.scheduled_time,
            duration_minutes=job.estimated_duration_minutes,
            exclude_job_id=job.job_id,
            as_of=as_of,
        ),
    )
    match = next(
        (m for m in matches if m.is_available and m.cleaner.cleaner_id != previous_cleaner_id),
        None,
    )
    if match is None:
        await session.rollback()
        raise ConflictError("No other cleaner available for this job")

    target_cleaner_id = match.cleaner.cleaner_id
    try:
        cleaner = await _lock_cleaner(session, target_cleaner_id)
        check = await availability_service.check_cleaner_availability(
            session,
            cleaner,
            job.scheduled_date,
            job.scheduled_start_minute,
            job.estimated_duration_minutes,
            exclude_job_id=job.job_id,
        )
        if not check.is_available:
            raise ConflictError(f"Selected cleaner is no longer available: {check.reason}")
        job.cleaner_id = cleaner.cleaner_id
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if is_booking_overlap_integrity_error(exc):
            raise _slot_conflict(exc, job_id=job_id, cleaner_id=target_cleaner_id) from exc
        raise
    except Exception:
        await session.rollback()
        raise

    await session.refresh(job, attribute_names=["cleaner"])
    metrics.record_booking("reassigned")
    logger.info(
        "booking_reassigned",
        extra={"extra": {"job_id": job_id, "from_cleaner_id": previous_cleaner_id, "to_cleaner_id": job.cleaner_id}},
    )
    await add_audit_note(
        session, job_id, f"Reassigned to {cleaner.full_name}. {match.reason}", created_by=actor_id
    )
    return job


async def rate_job(
    session: AsyncSession,
    job_id: str,
    rating: int,
    review: str | None = None,
    *,
    actor_id: str | None = None,
) -> tuple[JobRating, Cleaner]:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5")
    job = await _get_job_for_update(session, job_id)
    if job.status != JOB_COMPLETED:
        raise ConflictError("Only completed jobs can be rated")
    if job.cleaner_id is None:
        raise ConflictError("Job has no cleaner to rate")
    existing = await session.scalar(select(JobRating.rating_id).where(JobRating.job_id == job_id))
    if existing is not None:
        raise ConflictError("Job has already been rated")

    try:
        # Serialises running-average updates for this cleaner.
        cleaner = await _lock_cleaner(session, job.cleaner_id)
        job_rating = JobRating(
            job=job,
            cleaner_id=cleaner.cleaner_id,
            member_id=job.member_id,
            rating=rating,
            review=review,
        )
        session.add(job_rating)
        await session.flush()
        average, count = (
            await session.execute(
                select(func.avg(JobRating.rating), func.count(JobRating.rating_id)).where(
                    JobRating.cleaner_id == cleaner.cleaner_id
                )
            )
        ).one()
        cleaner.rating_average = round_decimal(float(average or 0), settings.rating_average_precision)
        cleaner.rating_count = int(count)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        if is_duplicate_rating_integrity_error(exc):
            raise ConflictError("Job has already been rated") from exc
        raise
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "job_rated",
        extra={"extra": {"job_id": job_id, "cleaner_id": cleaner.cleaner_id, "rating_count": cleaner.rating_count}},
    )
    await add_audit_note(session, job_id, f"Rated {rating}/5", created_by=actor_id)
    return job_rating, cleaner


async def get_upcoming_jobs(session: AsyncSession, member_id: str, *, as_of: date | None = None) -> list[Job]:
    today = as_of or _now().date()
    result = await session.execute(
        select(Job)
        .where(
            Job.member_id == member_id,
            Job.status.in_(ACTIVE_JOB_STATUSES),
            Job.scheduled_date >= today,
        )
        .order_by(Job.scheduled_date, Job.scheduled_start_minute)
    )
    return list(result.scalars())


async def get_past_jobs(session: AsyncSession, member_id: str, *, limit: int = 10) -> list[Job]:
    result = await session.execute(
        select(Job)
        .where(Job.member_id == member_id, Job.status.in_((JOB_COMPLETED, JOB_CANCELLED)))
        .order_by(Job.scheduled_date.desc(), Job.scheduled_start_minute.desc())
        .limit(limit)
    )
    return list(result.scalars())
