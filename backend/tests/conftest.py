import asyncio
import sys
from dataclasses import dataclass, field
from datetime import date, time
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def ensure_event_loop() -> asyncio.AbstractEventLoop:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    if loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop


ensure_event_loop()

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cleanbook.domain.bookings import db_models as booking_db_models  # noqa: F401
from cleanbook.domain.checklists import db_models as checklist_db_models  # noqa: F401
from cleanbook.domain.cleaners.db_models import Cleaner, CleanerSchedule, Zone, ZONE_WAITLIST
from cleanbook.domain.members.db_models import Member
from cleanbook.domain.payouts import db_models as payout_db_models  # noqa: F401
from cleanbook.domain.settings_store.service import ensure_default_settings
from cleanbook.domain.tasks.db_models import Task
from cleanbook.infra.db import Base, get_db_session
from cleanbook.main import app
from cleanbook.settings import settings

# 2030-06-03 is a Monday.
MONDAY = date(2030, 6, 3)
AS_OF = date(2030, 6, 1)


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    async def notify(self, event: str, payload: dict) -> bool:
        self.events.append((event, payload))
        return True


@dataclass
class Marketplace:
    zone_id: str = "zone-north"
    closed_zone_id: str = "zone-closed"
    alice_id: str = "cleaner-alice"
    bob_id: str = "cleaner-bob"
    carol_id: str = "cleaner-carol"
    gold_member_id: str = "member-gold"
    free_member_id: str = "member-free"
    task_ids: dict[str, str] = field(
        default_factory=lambda: {
            "kitchen_counters": "task-kitchen-counters",
            "kitchen_floor": "task-kitchen-floor",
            "bath_tub": "task-bath-tub",
            "living_dust": "task-living-dust",
            "retired": "task-retired",
        }
    )


def _weekly_schedule(start: time, end: time) -> list[CleanerSchedule]:
    return [CleanerSchedule(day_of_week=day, start_time=start, end_time=end) for day in range(7)]


async def seed_marketplace(session_factory) -> Marketplace:
    data = Marketplace()
    async with session_factory() as session:
        north = Zone(zone_id=data.zone_id, name="North", zip_codes=["10001"])
        closed = Zone(zone_id=data.closed_zone_id, name="Closed", status=ZONE_WAITLIST, zip_codes=["20002"])
        session.add_all([north, closed])
        session.add_all(
            [
                Cleaner(
                    cleaner_id=data.alice_id,
                    first_name="Alice",
                    last_name="Archer",
                    email="alice@example.com",
                    rating_average=4.8,
                    rating_count=40,
                    jobs_completed=120,
                    zones=[north],
                    schedules=_weekly_schedule(time(8, 0), time(18, 0)),
                ),
                Cleaner(
                    cleaner_id=data.bob_id,
                    first_name="Bob",
                    last_name="Baker",
                    email="bob@example.com",
                    rating_average=4.2,
                    rating_count=10,
                    jobs_completed=60,
                    zones=[north],
                    schedules=_weekly_schedule(time(8, 0), time(18, 0)),
                ),
                Cleaner(
                    cleaner_id=data.carol_id,
                    first_name="Carol",
                    last_name="Cole",
                    status="inactive",
                    rating_average=5.0,
                    jobs_completed=300,
                    zones=[north],
                    schedules=_weekly_schedule(time(8, 0), time(18, 0)),
                ),
                Member(member_id=data.gold_member_id, email="gold@example.com", tier="gold"),
                Member(member_id=data.free_member_id, email="free@example.com", tier="free"),
                Task(
                    task_id=data.task_ids["kitchen_counters"],
                    name="Wipe counters",
                    room_type="kitchen",
                    effort_minutes=30,
                    default_order=1,
                    is_priority=True,
                ),
                Task(
                    task_id=data.task_ids["kitchen_floor"],
                    name="Mop floor",
                    room_type="kitchen",
                    effort_minutes=20,
                    default_order=2,
                ),
                Task(
                    task_id=data.task_ids["bath_tub"],
                    name="Scrub tub",
                    room_type="bathroom",
                    effort_minutes=25,
                    default_order=1,
                ),
                Task(
                    task_id=data.task_ids["living_dust"],
                    name="Dust shelves",
                    room_type="living_room",
                    effort_minutes=15,
                    default_order=1,
                ),
                Task(
                    task_id=data.task_ids["retired"],
                    name="Polish silver",
                    room_type="kitchen",
                    effort_minutes=10,
                    is_active=False,
                ),
            ]
        )
        await session.commit()
    return data


@pytest.fixture(scope="session")
def test_engine():
    db_path = Path("test.db")
    if db_path.exists():
        db_path.unlink()
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test.db",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def restore_settings():
    original_precision = settings.rating_average_precision
    original_step = settings.slot_step_minutes
    yield
    settings.rating_average_precision = original_precision
    settings.slot_step_minutes = original_step


@pytest.fixture(autouse=True)
def clean_database(test_engine, async_session_maker):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

        async with async_session_maker() as session:
            await ensure_default_settings(session)

    asyncio.run(truncate_tables())
    yield


@pytest.fixture()
def marketplace(async_session_maker) -> Marketplace:
    return asyncio.run(seed_marketplace(async_session_maker))


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def client(async_session_maker, notifier):
    ensure_event_loop()

    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    app.state.db_session_factory = async_session_maker
    app.state.notifier = notifier
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
