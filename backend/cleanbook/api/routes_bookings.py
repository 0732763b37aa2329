from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.dependencies import (
    ROLE_CLEANER,
    ROLE_MEMBER,
    Actor,
    get_actor,
    get_notifier,
    get_pricing_config,
)
from cleanbook.domain.bookings import schemas as booking_schemas
from cleanbook.domain.bookings import service as booking_service
from cleanbook.domain.bookings.db_models import Job
from cleanbook.domain.checklists import service as checklist_service
from cleanbook.domain.checklists.schemas import (
    ChecklistItemPatch,
    ChecklistItemResponse,
    ChecklistResponse,
    CompletionSummary,
)
from cleanbook.domain.errors import NotFoundError
from cleanbook.domain.pricing import engine as pricing_engine
from cleanbook.domain.pricing.config_loader import PricingConfig
from cleanbook.infra.db import get_db_session
from cleanbook.infra.notifications import NotificationAdapter

router = APIRouter()


def _authorize(actor: Actor, job: Job, *, allow_cleaner: bool = False) -> None:
    if actor.is_admin:
        return
    if actor.role == ROLE_MEMBER and job.member_id == actor.actor_id:
        return
    if allow_cleaner and actor.role == ROLE_CLEANER and job.cleaner_id == actor.actor_id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to access this job")


async def _load_job(session: AsyncSession, job_id: str, actor: Actor, *, allow_cleaner: bool = False) -> Job:
    job = await booking_service.get_job(session, job_id)
    _authorize(actor, job, allow_cleaner=allow_cleaner)
    return job


@router.post(
    "/v1/bookings",
    response_model=booking_schemas.BookingCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(
    request: booking_schemas.BookingRequest,
    member_id: str | None = Query(None, description="Admin only: book on behalf of a member"),
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
    pricing_config: PricingConfig = Depends(get_pricing_config),
    notifier: NotificationAdapter = Depends(get_notifier),
) -> booking_schemas.BookingCreatedResponse:
    if actor.is_admin:
        if not member_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="member_id is required")
        booking_member_id = member_id
    elif actor.role == ROLE_MEMBER:
        if member_id and member_id != actor.actor_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Members can only book for themselves")
        booking_member_id = actor.actor_id
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only members can create bookings")

    result = await booking_service.create_booking(
        session,
        booking_member_id,
        request,
        created_by=actor.actor_id,
        notifier=notifier,
        pricing_config=pricing_config,
    )
    return booking_schemas.BookingCreatedResponse(
        job=booking_service.job_to_response(result.job),
        checklist_id=result.checklist.checklist_id,
        pricing=booking_schemas.BookingPricingSummary(
            total_cents=result.pricing.total_cents,
            cleaner_payout_cents=result.pricing.cleaner_payout_cents,
            total_display=pricing_engine.format_price(result.pricing.total_cents),
        ),
        match_reason=result.match.reason,
    )


@router.get("/v1/bookings/{job_id}", response_model=booking_schemas.JobResponse)
async def get_booking(
    job_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.JobResponse:
    job = await _load_job(session, job_id, actor, allow_cleaner=True)
    return booking_service.job_to_response(job)


@router.post("/v1/bookings/{job_id}/cancel", response_model=booking_schemas.JobResponse)
async def cancel_booking(
    job_id: str,
    request: booking_schemas.CancelRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
    notifier: NotificationAdapter = Depends(get_notifier),
) -> booking_schemas.JobResponse:
    await _load_job(session, job_id, actor)
    job = await booking_service.cancel_booking(
        session, job_id, reason=request.reason, actor_id=actor.actor_id, notifier=notifier
    )
    return booking_service.job_to_response(job)


@router.post("/v1/bookings/{job_id}/reschedule", response_model=booking_schemas.JobResponse)
async def reschedule_booking(
    job_id: str,
    request: booking_schemas.RescheduleRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.JobResponse:
    await _load_job(session, job_id, actor)
    job = await booking_service.reschedule_booking(
        session, job_id, request.new_date, request.new_time, actor_id=actor.actor_id
    )
    return booking_service.job_to_response(job)


@router.post("/v1/bookings/{job_id}/rate", response_model=booking_schemas.RatingResponse)
async def rate_booking(
    job_id: str,
    request: booking_schemas.RateRequest,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.RatingResponse:
    await _load_job(session, job_id, actor)
    rating, cleaner = await booking_service.rate_job(
        session, job_id, request.rating, request.review, actor_id=actor.actor_id
    )
    return booking_schemas.RatingResponse(
        job_id=job_id,
        cleaner_id=cleaner.cleaner_id,
        rating=rating.rating,
        cleaner_rating_average=cleaner.rating_average,
        cleaner_rating_count=cleaner.rating_count,
    )


@router.post("/v1/bookings/{job_id}/start", response_model=booking_schemas.JobResponse)
async def start_booking(
    job_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.JobResponse:
    await _load_job(session, job_id, actor, allow_cleaner=True)
    job = await booking_service.start_job(session, job_id, actor_id=actor.actor_id)
    return booking_service.job_to_response(job)


@router.post("/v1/bookings/{job_id}/complete", response_model=booking_schemas.JobResponse)
async def complete_booking(
    job_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.JobResponse:
    await _load_job(session, job_id, actor, allow_cleaner=True)
    job = await booking_service.complete_job(session, job_id, actor_id=actor.actor_id)
    return booking_service.job_to_response(job)


@router.post("/v1/bookings/{job_id}/reassign", response_model=booking_schemas.JobResponse)
async def reassign_booking(
    job_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.JobResponse:
    if not actor.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    job = await booking_service.reassign_cleaner(session, job_id, actor_id=actor.actor_id)
    return booking_service.job_to_response(job)


async def _job_checklist(session: AsyncSession, job_id: str, actor: Actor):  # noqa: ANN202
    await _load_job(session, job_id, actor, allow_cleaner=True)
    checklist = await checklist_service.get_checklist_for_job(session, job_id)
    if checklist is None:
        raise NotFoundError("Checklist not found")
    return checklist


@router.get("/v1/bookings/{job_id}/checklist", response_model=ChecklistResponse)
async def get_booking_checklist(
    job_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> ChecklistResponse:
    checklist = await _job_checklist(session, job_id, actor)
    return checklist_service.to_response(checklist)


@router.get("/v1/bookings/{job_id}/checklist/summary", response_model=CompletionSummary)
async def get_booking_checklist_summary(
    job_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> CompletionSummary:
    checklist = await _job_checklist(session, job_id, actor)
    return checklist_service.completion_summary(checklist)


@router.patch("/v1/bookings/{job_id}/checklist/items/{item_id}", response_model=ChecklistItemResponse)
async def update_checklist_item(
    job_id: str,
    item_id: int,
    patch: ChecklistItemPatch,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> ChecklistItemResponse:
    checklist = await _job_checklist(session, job_id, actor)
    item = await checklist_service.mark_item_completed(
        session,
        checklist.checklist_id,
        item_id,
        is_completed=patch.is_completed,
        notes=patch.notes,
    )
    return ChecklistItemResponse.model_validate(item)


@router.get("/v1/members/{member_id}/jobs", response_model=booking_schemas.MemberJobsResponse)
async def list_member_jobs(
    member_id: str,
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> booking_schemas.MemberJobsResponse:
    if not actor.is_admin and not (actor.role == ROLE_MEMBER and actor.actor_id == member_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to view these jobs")
    upcoming = await booking_service.get_upcoming_jobs(session, member_id)
    past = await booking_service.get_past_jobs(session, member_id, limit=limit)
    return booking_schemas.MemberJobsResponse(
        upcoming=[booking_service.job_to_response(job) for job in upcoming],
        past=[booking_service.job_to_response(job) for job in past],
    )
