import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.domain.bookings.db_models import JOB_COMPLETED, Job
from cleanbook.domain.bookings.service import add_audit_note
from cleanbook.domain.cleaners.db_models import Cleaner
from cleanbook.domain.errors import ConflictError, NotFoundError
from cleanbook.domain.payouts.db_models import BATCH_PENDING, BATCH_PROCESSED, PayoutBatch
from cleanbook.domain.payouts.schemas import (
    BatchCleanerPayout,
    CleanerPayout,
    PayoutBatchDetail,
    PayoutBatchResponse,
    PayoutHistoryEntry,
    PayoutJobLine,
    PendingPayout,
)
from cleanbook.domain.pricing.config_loader import PricingConfig, load_pricing_config
from cleanbook.infra.metrics import metrics
from cleanbook.infra.notifications import PAYOUT_PROCESSED, NotificationAdapter, emit_event
from cleanbook.shared.rounding import percent_of_cents

logger = logging.getLogger(__name__)

PAYOUT_WEEKDAY = 4  # Friday


def transfer_fee_cents(gross_cents: int, config: PricingConfig) -> int:
    """Processor fee for one transfer: percent of gross plus the fixed charge, once per cleaner."""
    return percent_of_cents(gross_cents, config.stripe_fee_percent) + config.stripe_fee_fixed_cents


def _job_line(job: Job) -> PayoutJobLine:
    return PayoutJobLine(job_id=job.job_id, completed_at=job.completed_at, payout_cents=job.cleaner_payout_cents)


async def _eligible_jobs(
    session: AsyncSession, start: datetime, end: datetime, *, lock: bool = False
) -> list[Job]:
    stmt = (
        select(Job)
        .where(
            Job.status == JOB_COMPLETED,
            Job.cleaner_id.is_not(None),
            Job.payout_batch_id.is_(None),
            Job.completed_at >= start,
            Job.completed_at <= end,
        )
        .order_by(Job.completed_at, Job.job_id)
    )
    if lock:
        stmt = stmt.with_for_update(of=Job).execution_options(populate_existing=True)
    result = await session.execute(stmt)
    return list(result.scalars())


def summarize_payouts(jobs: Sequence[Job], config: PricingConfig) -> list[CleanerPayout]:
    by_cleaner: dict[str, list[Job]] = defaultdict(list)
    for job in jobs:
        if job.cleaner_id is None:
            continue
        by_cleaner[job.cleaner_id].append(job)

    payouts = []
    for cleaner_id, cleaner_jobs in by_cleaner.items():
        gross = sum(job.cleaner_payout_cents for job in cleaner_jobs)
        fees = transfer_fee_cents(gross, config)
        cleaner = cleaner_jobs[0].cleaner
        payouts.append(
            CleanerPayout(
                cleaner_id=cleaner_id,
                cleaner_name=cleaner.full_name if cleaner else cleaner_id,
                job_count=len(cleaner_jobs),
                gross_payout_cents=gross,
                fees_cents=fees,
                net_payout_cents=gross - fees,
                jobs=[_job_line(job) for job in cleaner_jobs],
            )
        )
    payouts.sort(key=lambda payout: (-payout.gross_payout_cents, payout.cleaner_id))
    return payouts


async def calculate_payouts(
    session: AsyncSession, start: datetime, end: datetime, config: PricingConfig | None = None
) -> list[CleanerPayout]:
    config = config or await load_pricing_config(session)
    return summarize_payouts(await _eligible_jobs(session, start, end), config)


async def create_payout_batch(
    session: AsyncSession,
    start: datetime,
    end: datetime,
    *,
    notes: str | None = None,
    created_by: str | None = None,
    config: PricingConfig | None = None,
) -> PayoutBatch:
    """Create a batch and stamp every eligible job with it in a single guarded update."""
    config = config or await load_pricing_config(session)
    try:
        jobs = await _eligible_jobs(session, start, end, lock=True)
        payouts = summarize_payouts(jobs, config)
        if not payouts:
            raise ConflictError("No unpaid jobs found in the specified period")

        job_ids = [line.job_id for payout in payouts for line in payout.jobs]
        batch = PayoutBatch(
            period_start=start,
            period_end=end,
            status=BATCH_PENDING,
            total_cleaners=len(payouts),
            total_jobs=len(job_ids),
            total_gross_cents=sum(payout.gross_payout_cents for payout in payouts),
            total_fees_cents=sum(payout.fees_cents for payout in payouts),
            total_net_cents=sum(payout.net_payout_cents for payout in payouts),
            notes=notes,
            created_by=created_by or "system",
        )
        session.add(batch)
        await session.flush()

        result = await session.execute(
            update(Job)
            .where(Job.job_id.in_(job_ids), Job.payout_batch_id.is_(None))
            .values(payout_batch_id=batch.batch_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(job_ids):
            raise ConflictError("Some jobs were claimed by another payout batch; retry")
        await session.commit()
        await session.refresh(batch)
    except Exception:
        await session.rollback()
        raise

    metrics.record_payout_batch("created", job_count=batch.total_jobs)
    logger.info(
        "payout_batch_created",
        extra={
            "extra": {
                "batch_id": batch.batch_id,
                "total_jobs": batch.total_jobs,
                "total_cleaners": batch.total_cleaners,
                "total_net_cents": batch.total_net_cents,
            }
        },
    )
    return batch


async def _get_batch(session: AsyncSession, batch_id: str) -> PayoutBatch:
    batch = await session.get(PayoutBatch, batch_id)
    if batch is None:
        raise NotFoundError("Payout batch not found")
    return batch


async def get_payout_batch(session: AsyncSession, batch_id: str) -> PayoutBatchDetail:
    batch = await _get_batch(session, batch_id)
    result = await session.execute(
        select(Job).where(Job.payout_batch_id == batch_id).order_by(Job.completed_at, Job.job_id)
    )
    grouped: dict[str, BatchCleanerPayout] = {}
    for job in result.scalars():
        if job.cleaner_id is None:
            continue
        entry = grouped.get(job.cleaner_id)
        if entry is None:
            entry = BatchCleanerPayout(
                cleaner_id=job.cleaner_id,
                cleaner_name=job.cleaner.full_name,
                email=job.cleaner.email,
                job_count=0,
                total_cents=0,
            )
            grouped[job.cleaner_id] = entry
        entry.jobs.append(_job_line(job))
        entry.job_count += 1
        entry.total_cents += job.cleaner_payout_cents
    return PayoutBatchDetail(
        batch=PayoutBatchResponse.model_validate(batch),
        cleaner_payouts=list(grouped.values()),
    )


async def mark_batch_processed(
    session: AsyncSession,
    batch_id: str,
    *,
    processed_by: str | None = None,
    notes: str | None = None,
    notifier: NotificationAdapter | None = None,
) -> PayoutBatch:
    stmt = (
        select(PayoutBatch)
        .where(PayoutBatch.batch_id == batch_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    batch = await session.scalar(stmt)
    if batch is None:
        raise NotFoundError("Payout batch not found")
    if batch.status != BATCH_PENDING:
        await session.rollback()
        raise ConflictError(f"Payout batch is already {batch.status}")
    batch.status = BATCH_PROCESSED
    batch.processed_at = datetime.now(timezone.utc)
    if notes:
        batch.notes = notes
    await session.commit()

    metrics.record_payout_batch("processed")
    logger.info("payout_batch_processed", extra={"extra": {"batch_id": batch_id, "total_jobs": batch.total_jobs}})
    await add_audit_note(
        session,
        batch_id,
        "Batch processed and payouts sent",
        created_by=processed_by,
        entity_type="payout_batch",
    )
    await emit_event(
        notifier,
        PAYOUT_PROCESSED,
        {"batch_id": batch_id, "total_jobs": batch.total_jobs, "total_net_cents": batch.total_net_cents},
    )
    return batch


async def list_batches(session: AsyncSession, limit: int = 20) -> list[PayoutBatch]:
    result = await session.execute(
        select(PayoutBatch).order_by(PayoutBatch.created_at.desc(), PayoutBatch.batch_id).limit(limit)
    )
    return list(result.scalars())


async def get_cleaner_pending_payout(session: AsyncSession, cleaner_id: str) -> PendingPayout:
    if await session.get(Cleaner, cleaner_id) is None:
        raise NotFoundError(f"Cleaner not found: {cleaner_id}")
    result = await session.execute(
        select(Job)
        .where(Job.cleaner_id == cleaner_id, Job.status == JOB_COMPLETED, Job.payout_batch_id.is_(None))
        .order_by(Job.completed_at, Job.job_id)
    )
    jobs = list(result.scalars())
    return PendingPayout(
        cleaner_id=cleaner_id,
        job_count=len(jobs),
        total_pending_cents=sum(job.cleaner_payout_cents for job in jobs),
        oldest_job_completed_at=jobs[0].completed_at if jobs else None,
        jobs=[_job_line(job) for job in jobs],
    )


async def get_cleaner_payout_history(
    session: AsyncSession, cleaner_id: str, limit: int = 12
) -> list[PayoutHistoryEntry]:
    batches = (
        await session.execute(
            select(PayoutBatch)
            .where(
                PayoutBatch.status == BATCH_PROCESSED,
                PayoutBatch.batch_id.in_(
                    select(Job.payout_batch_id).where(Job.cleaner_id == cleaner_id, Job.payout_batch_id.is_not(None))
                ),
            )
            .order_by(PayoutBatch.processed_at.desc())
            .limit(limit)
        )
    ).scalars().all()
    if not batches:
        return []

    amounts: dict[str, list[int]] = defaultdict(list)
    rows = await session.execute(
        select(Job.payout_batch_id, Job.cleaner_payout_cents).where(
            Job.cleaner_id == cleaner_id, Job.payout_batch_id.in_([batch.batch_id for batch in batches])
        )
    )
    for batch_id, payout_cents in rows:
        amounts[batch_id].append(payout_cents)
    return [
        PayoutHistoryEntry(
            batch=PayoutBatchResponse.model_validate(batch),
            job_count=len(amounts[batch.batch_id]),
            amount_cents=sum(amounts[batch.batch_id]),
        )
        for batch in batches
    ]


def next_payout_date(today: date) -> date:
    """Next Friday strictly after ``today``."""
    days_ahead = (PAYOUT_WEEKDAY - today.weekday()) % 7 or 7
    return today + timedelta(days=days_ahead)


def next_payout_period(today: date) -> tuple[datetime, datetime]:
    """Most recent Friday (inclusive) 00:00 through the following Thursday end of day, UTC."""
    last_friday = today - timedelta(days=(today.weekday() - PAYOUT_WEEKDAY) % 7)
    start = datetime.combine(last_friday, time.min, tzinfo=timezone.utc)
    end = datetime.combine(last_friday + timedelta(days=6), time.max, tzinfo=timezone.utc)
    return start, end
