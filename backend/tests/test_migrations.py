from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect

from cleanbook.settings import settings

pytestmark = pytest.mark.migrations

ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"


def test_alembic_has_single_head():
    script_directory = ScriptDirectory.from_config(Config(str(ALEMBIC_INI)))

    heads = script_directory.get_heads()

    assert len(heads) == 1, f"Expected 1 Alembic head, found {heads}"


def test_alembic_upgrade_and_downgrade(tmp_path):
    db_path = tmp_path / "migrations.db"
    config = Config(str(ALEMBIC_INI))
    original_database_url = settings.database_url
    try:
        settings.database_url = f"sqlite+aiosqlite:///{db_path}"
        command.upgrade(config, "head")

        engine = create_engine(f"sqlite:///{db_path}")
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        assert {
            "settings",
            "tasks",
            "zones",
            "cleaners",
            "cleaner_zones",
            "members",
            "jobs",
            "job_ratings",
            "checklists",
            "checklist_items",
            "payout_batches",
        } <= tables
        job_indexes = {index["name"] for index in inspector.get_indexes("jobs")}
        assert "uq_jobs_cleaner_active_slot" in job_indexes
        engine.dispose()

        command.downgrade(config, "base")
        engine = create_engine(f"sqlite:///{db_path}")
        assert "jobs" not in inspect(engine).get_table_names()
        engine.dispose()
    finally:
        settings.database_url = original_database_url
