import asyncio
from datetime import date, datetime, time, timezone

import pytest

from cleanbook.domain.bookings.db_models import JOB_CANCELLED, JOB_COMPLETED, Job
from cleanbook.domain.bookings.service import list_audit_notes
from cleanbook.domain.errors import ConflictError, NotFoundError
from cleanbook.domain.payouts import service as payout_service
from cleanbook.domain.payouts.db_models import BATCH_PENDING, BATCH_PROCESSED
from cleanbook.domain.pricing.config_loader import load_pricing_config
from cleanbook.infra.notifications import PAYOUT_PROCESSED

PERIOD_START = datetime(2030, 6, 7, tzinfo=timezone.utc)
PERIOD_END = datetime.combine(date(2030, 6, 13), time.max, tzinfo=timezone.utc)


def _completed_job(cleaner_id: str, completed_at: datetime, *, status: str = JOB_COMPLETED, start: int = 600) -> Job:
    return Job(
        member_id="member-free",
        cleaner_id=cleaner_id,
        zone_id="zone-north",
        address="1 Main St",
        status=status,
        scheduled_date=completed_at.date(),
        scheduled_start_minute=start,
        estimated_duration_minutes=60,
        subtotal_cents=5500,
        platform_fee_cents=825,
        total_cents=6325,
        cleaner_payout_cents=4675,
        completed_at=completed_at if status == JOB_COMPLETED else None,
    )


async def _seed_jobs(session, marketplace) -> dict[str, str]:
    jobs = {
        "alice_1": _completed_job(marketplace.alice_id, datetime(2030, 6, 7, 0, 0, tzinfo=timezone.utc)),
        "alice_2": _completed_job(marketplace.alice_id, datetime(2030, 6, 9, 15, 30, tzinfo=timezone.utc)),
        "bob_1": _completed_job(marketplace.bob_id, datetime(2030, 6, 13, 23, 59, 59, tzinfo=timezone.utc)),
        "bob_late": _completed_job(marketplace.bob_id, datetime(2030, 6, 14, 0, 0, 1, tzinfo=timezone.utc)),
        "alice_cancelled": _completed_job(
            marketplace.alice_id, datetime(2030, 6, 10, tzinfo=timezone.utc), status=JOB_CANCELLED, start=900
        ),
    }
    session.add_all(jobs.values())
    await session.commit()
    return {name: job.job_id for name, job in jobs.items()}


def test_preview_groups_per_cleaner_with_one_fee_each(async_session_maker, marketplace):
    async def _run():
        async with async_session_maker() as session:
            await _seed_jobs(session, marketplace)
            return await payout_service.calculate_payouts(session, PERIOD_START, PERIOD_END)

    payouts = asyncio.run(_run())

    assert [(p.cleaner_id, p.job_count, p.gross_payout_cents) for p in payouts] == [
        (marketplace.alice_id, 2, 9350),
        (marketplace.bob_id, 1, 4675),
    ]
    # 2.9% + 30 per transfer
    assert payouts[0].fees_cents == 271 + 30
    assert payouts[0].net_payout_cents == 9350 - 301
    assert payouts[1].fees_cents == 136 + 30
    assert payouts[0].cleaner_name == "Alice Archer"


def test_batch_claims_every_eligible_job_exactly_once(async_session_maker, marketplace):
    async def _run():
        async with async_session_maker() as session:
            ids = await _seed_jobs(session, marketplace)
            batch = await payout_service.create_payout_batch(
                session, PERIOD_START, PERIOD_END, notes="week 23", created_by="admin-1"
            )
            with pytest.raises(ConflictError, match="No unpaid jobs"):
                await payout_service.create_payout_batch(session, PERIOD_START, PERIOD_END)
            rerun = await payout_service.calculate_payouts(session, PERIOD_START, PERIOD_END)
            detail = await payout_service.get_payout_batch(session, batch.batch_id)
            pending = await payout_service.get_cleaner_pending_payout(session, marketplace.bob_id)
            return ids, batch, rerun, detail, pending

    ids, batch, rerun, detail, pending = asyncio.run(_run())

    assert batch.status == BATCH_PENDING
    assert batch.total_jobs == 3
    assert batch.total_cleaners == 2
    assert batch.total_gross_cents == 14025
    assert batch.total_fees_cents == 301 + 166
    assert batch.total_net_cents == 14025 - 467
    assert batch.created_by == "admin-1"
    assert rerun == []

    by_cleaner = {entry.cleaner_id: entry for entry in detail.cleaner_payouts}
    assert {line.job_id for line in by_cleaner[marketplace.alice_id].jobs} == {ids["alice_1"], ids["alice_2"]}
    assert by_cleaner[marketplace.alice_id].total_cents == 9350
    assert by_cleaner[marketplace.alice_id].email == "alice@example.com"

    assert pending.job_count == 1
    assert pending.jobs[0].job_id == ids["bob_late"]
    assert pending.total_pending_cents == 4675


def test_process_batch_once(async_session_maker, marketplace, notifier):
    async def _run():
        async with async_session_maker() as session:
            await _seed_jobs(session, marketplace)
            batch = await payout_service.create_payout_batch(session, PERIOD_START, PERIOD_END)
            processed = await payout_service.mark_batch_processed(
                session, batch.batch_id, processed_by="admin-1", notes="sent", notifier=notifier
            )
            with pytest.raises(ConflictError, match="already processed"):
                await payout_service.mark_batch_processed(session, batch.batch_id)
            with pytest.raises(NotFoundError):
                await payout_service.mark_batch_processed(session, "missing-batch")
            notes = await list_audit_notes(session, batch.batch_id, entity_type="payout_batch")
            history = await payout_service.get_cleaner_payout_history(session, marketplace.alice_id)
            batches = await payout_service.list_batches(session)
            return processed, notes, history, batches

    processed, notes, history, batches = asyncio.run(_run())

    assert processed.status == BATCH_PROCESSED
    assert processed.processed_at is not None
    assert processed.notes == "sent"
    assert [note.created_by for note in notes] == ["admin-1"]
    assert notifier.events[0][0] == PAYOUT_PROCESSED
    assert notifier.events[0][1]["total_jobs"] == 3
    assert len(history) == 1
    assert history[0].job_count == 2
    assert history[0].amount_cents == 9350
    assert [batch.batch_id for batch in batches] == [processed.batch_id]


def test_pending_batch_not_in_history(async_session_maker, marketplace):
    async def _run():
        async with async_session_maker() as session:
            await _seed_jobs(session, marketplace)
            await payout_service.create_payout_batch(session, PERIOD_START, PERIOD_END)
            return await payout_service.get_cleaner_payout_history(session, marketplace.alice_id)

    assert asyncio.run(_run()) == []


def test_unknown_cleaner_pending_payout(async_session_maker, marketplace):
    async def _run():
        async with async_session_maker() as session:
            await payout_service.get_cleaner_pending_payout(session, "cleaner-ghost")

    with pytest.raises(NotFoundError):
        asyncio.run(_run())


def test_transfer_fee_rounding(async_session_maker):
    async def _run():
        async with async_session_maker() as session:
            return await load_pricing_config(session)

    config = asyncio.run(_run())

    assert payout_service.transfer_fee_cents(0, config) == 30
    assert payout_service.transfer_fee_cents(10000, config) == 290 + 30


@pytest.mark.parametrize(
    ("today", "expected"),
    [
        (date(2030, 6, 3), date(2030, 6, 7)),
        (date(2030, 6, 6), date(2030, 6, 7)),
        (date(2030, 6, 7), date(2030, 6, 14)),
        (date(2030, 6, 9), date(2030, 6, 14)),
    ],
)
def test_next_payout_date_is_next_friday(today, expected):
    assert payout_service.next_payout_date(today) == expected


def test_next_payout_period_runs_friday_to_thursday():
    start, end = payout_service.next_payout_period(date(2030, 6, 12))

    assert start == PERIOD_START
    assert end == PERIOD_END

    start, _ = payout_service.next_payout_period(date(2030, 6, 7))
    assert start.date() == date(2030, 6, 7)
