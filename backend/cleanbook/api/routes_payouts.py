from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.dependencies import ROLE_CLEANER, Actor, get_actor, get_notifier, get_pricing_config, require_admin
from cleanbook.domain.payouts import service as payout_service
from cleanbook.domain.payouts.schemas import (
    CleanerEarnings,
    CleanerPayout,
    MarkProcessedRequest,
    NextPayoutPeriod,
    PayoutBatchDetail,
    PayoutBatchResponse,
    PayoutPeriodRequest,
)
from cleanbook.domain.pricing.config_loader import PricingConfig
from cleanbook.infra.db import get_db_session
from cleanbook.infra.notifications import NotificationAdapter

router = APIRouter()


@router.post("/v1/admin/payouts/preview", response_model=list[CleanerPayout])
async def preview_payouts(
    request: PayoutPeriodRequest,
    session: AsyncSession = Depends(get_db_session),
    pricing_config: PricingConfig = Depends(get_pricing_config),
    _admin: Actor = Depends(require_admin),
) -> list[CleanerPayout]:
    return await payout_service.calculate_payouts(session, request.start, request.end, pricing_config)


@router.get("/v1/admin/payouts/next-period", response_model=NextPayoutPeriod)
async def next_period(_admin: Actor = Depends(require_admin)) -> NextPayoutPeriod:
    today = datetime.now(timezone.utc).date()
    start, end = payout_service.next_payout_period(today)
    return NextPayoutPeriod(start=start, end=end, next_payout_date=payout_service.next_payout_date(today))


@router.post(
    "/v1/admin/payouts/batches",
    response_model=PayoutBatchResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_batch(
    request: PayoutPeriodRequest,
    session: AsyncSession = Depends(get_db_session),
    pricing_config: PricingConfig = Depends(get_pricing_config),
    admin: Actor = Depends(require_admin),
) -> PayoutBatchResponse:
    batch = await payout_service.create_payout_batch(
        session,
        request.start,
        request.end,
        notes=request.notes,
        created_by=admin.actor_id,
        config=pricing_config,
    )
    return PayoutBatchResponse.model_validate(batch)


@router.get("/v1/admin/payouts/batches", response_model=list[PayoutBatchResponse])
async def list_batches(
    limit: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_db_session),
    _admin: Actor = Depends(require_admin),
) -> list[PayoutBatchResponse]:
    batches = await payout_service.list_batches(session, limit=limit)
    return [PayoutBatchResponse.model_validate(batch) for batch in batches]


@router.get("/v1/admin/payouts/batches/{batch_id}", response_model=PayoutBatchDetail)
async def get_batch(
    batch_id: str,
    session: AsyncSession = Depends(get_db_session),
    _admin: Actor = Depends(require_admin),
) -> PayoutBatchDetail:
    return await payout_service.get_payout_batch(session, batch_id)


@router.post("/v1/admin/payouts/batches/{batch_id}/process", response_model=PayoutBatchResponse)
async def process_batch(
    batch_id: str,
    request: MarkProcessedRequest,
    session: AsyncSession = Depends(get_db_session),
    admin: Actor = Depends(require_admin),
    notifier: NotificationAdapter = Depends(get_notifier),
) -> PayoutBatchResponse:
    batch = await payout_service.mark_batch_processed(
        session, batch_id, processed_by=admin.actor_id, notes=request.notes, notifier=notifier
    )
    return PayoutBatchResponse.model_validate(batch)


@router.get("/v1/cleaners/{cleaner_id}/earnings", response_model=CleanerEarnings)
async def cleaner_earnings(
    cleaner_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> CleanerEarnings:
    if not actor.is_admin and not (actor.role == ROLE_CLEANER and actor.actor_id == cleaner_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to view these earnings")
    pending = await payout_service.get_cleaner_pending_payout(session, cleaner_id)
    history = await payout_service.get_cleaner_payout_history(session, cleaner_id)
    return CleanerEarnings(
        pending=pending,
        history=history,
        next_payout_date=payout_service.next_payout_date(datetime.now(timezone.utc).date()),
    )
