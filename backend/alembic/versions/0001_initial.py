"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-01 00:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_SLOT_WHERE = "status IN ('SCHEDULED', 'IN_PROGRESS') AND cleaner_id IS NOT NULL"


def upgrade() -> None:
    op.create_table(
        "settings",
        sa.Column("key", sa.String(length=100), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("value_type", sa.String(length=16), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("description", sa.String(length=255)),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "tasks",
        sa.Column("task_id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("room_type", sa.String(length=64), nullable=False),
        sa.Column("effort_minutes", sa.Integer(), nullable=False),
        sa.Column("default_order", sa.Integer(), nullable=False),
        sa.Column("is_priority", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("effort_minutes > 0", name="ck_tasks_effort_positive"),
    )
    op.create_index("ix_tasks_room_type", "tasks", ["room_type"])

    op.create_table(
        "zones",
        sa.Column("zone_id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("zip_codes", sa.JSON(), nullable=False),
    )
    op.create_table(
        "cleaners",
        sa.Column("cleaner_id", sa.String(length=36), primary_key=True),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255)),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("rating_average", sa.Float(), nullable=False),
        sa.Column("rating_count", sa.Integer(), nullable=False),
        sa.Column("jobs_completed", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "cleaner_zones",
        sa.Column(
            "cleaner_id",
            sa.String(length=36),
            sa.ForeignKey("cleaners.cleaner_id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("zone_id", sa.String(length=36), sa.ForeignKey("zones.zone_id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "cleaner_schedules",
        sa.Column("schedule_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "cleaner_id",
            sa.String(length=36),
            sa.ForeignKey("cleaners.cleaner_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False),
        sa.UniqueConstraint("cleaner_id", "day_of_week", name="uq_cleaner_schedule_day"),
    )
    op.create_index("ix_cleaner_schedules_cleaner_id", "cleaner_schedules", ["cleaner_id"])
    op.create_table(
        "cleaner_blocked_dates",
        sa.Column("blocked_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "cleaner_id",
            sa.String(length=36),
            sa.ForeignKey("cleaners.cleaner_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("blocked_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(length=255)),
        sa.UniqueConstraint("cleaner_id", "blocked_date", name="uq_cleaner_blocked_date"),
    )
    op.create_index("ix_cleaner_blocked_dates_cleaner_id", "cleaner_blocked_dates", ["cleaner_id"])

    op.create_table(
        "members",
        sa.Column("member_id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(length=100)),
        sa.Column("last_name", sa.String(length=100)),
        sa.Column("tier", sa.String(length=16), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "payout_batches",
        sa.Column("batch_id", sa.String(length=36), primary_key=True),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("total_cleaners", sa.Integer(), nullable=False),
        sa.Column("total_jobs", sa.Integer(), nullable=False),
        sa.Column("total_gross_cents", sa.Integer(), nullable=False),
        sa.Column("total_fees_cents", sa.Integer(), nullable=False),
        sa.Column("total_net_cents", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
    )

    op.create_table(
        "jobs",
        sa.Column("job_id", sa.String(length=36), primary_key=True),
        sa.Column("member_id", sa.String(length=36), sa.ForeignKey("members.member_id"), nullable=False),
        sa.Column("cleaner_id", sa.String(length=36), sa.ForeignKey("cleaners.cleaner_id")),
        sa.Column("zone_id", sa.String(length=36), sa.ForeignKey("zones.zone_id"), nullable=False),
        sa.Column("address", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("scheduled_start_minute", sa.Integer(), nullable=False),
        sa.Column("estimated_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("task_count", sa.Integer(), nullable=False),
        sa.Column("member_tier", sa.String(length=16), nullable=False),
        sa.Column("pricing_flags", sa.JSON(), nullable=False),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("modifiers_total_cents", sa.Integer(), nullable=False),
        sa.Column("discount_cents", sa.Integer(), nullable=False),
        sa.Column("platform_fee_cents", sa.Integer(), nullable=False),
        sa.Column("total_cents", sa.Integer(), nullable=False),
        sa.Column("cleaner_payout_cents", sa.Integer(), nullable=False),
        sa.Column("pricing_config_hash", sa.String(length=80)),
        sa.Column("payout_batch_id", sa.String(length=36), sa.ForeignKey("payout_batches.batch_id")),
        sa.Column("notes", sa.Text()),
        sa.Column("cancellation_reason", sa.Text()),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("estimated_duration_minutes >= 0", name="ck_jobs_duration_non_negative"),
        sa.CheckConstraint(
            "scheduled_start_minute >= 0 AND scheduled_start_minute < 1440", name="ck_jobs_start_minute_range"
        ),
    )
    op.create_index("ix_jobs_member_id", "jobs", ["member_id"])
    op.create_index("ix_jobs_cleaner_id", "jobs", ["cleaner_id"])
    op.create_index("ix_jobs_payout_batch_id", "jobs", ["payout_batch_id"])
    op.create_index("ix_jobs_cleaner_date_status", "jobs", ["cleaner_id", "scheduled_date", "status"])
    op.create_index("ix_jobs_status_completed_at", "jobs", ["status", "completed_at"])
    op.create_index(
        "uq_jobs_cleaner_active_slot",
        "jobs",
        ["cleaner_id", "scheduled_date", "scheduled_start_minute"],
        unique=True,
        sqlite_where=sa.text(ACTIVE_SLOT_WHERE),
        postgresql_where=sa.text(ACTIVE_SLOT_WHERE),
    )

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            "ALTER TABLE jobs ADD CONSTRAINT jobs_cleaner_time_no_overlap EXCLUDE USING gist ("
            "cleaner_id WITH =, "
            "scheduled_date WITH =, "
            "int4range(scheduled_start_minute, scheduled_start_minute + estimated_duration_minutes) WITH &&"
            f") WHERE ({ACTIVE_SLOT_WHERE})"
        )

    op.create_table(
        "job_ratings",
        sa.Column("rating_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("job_id", sa.String(length=36), sa.ForeignKey("jobs.job_id"), nullable=False),
        sa.Column("cleaner_id", sa.String(length=36), sa.ForeignKey("cleaners.cleaner_id"), nullable=False),
        sa.Column("member_id", sa.String(length=36), sa.ForeignKey("members.member_id"), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("review", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("job_id", name="job_ratings_job_id_key"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_job_ratings_range"),
    )
    op.create_index("ix_job_ratings_cleaner_id", "job_ratings", ["cleaner_id"])
    op.create_table(
        "job_notes",
        sa.Column("note_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_by", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_job_notes_entity", "job_notes", ["entity_type", "entity_id"])

    op.create_table(
        "checklists",
        sa.Column("checklist_id", sa.String(length=36), primary_key=True),
        sa.Column("job_id", sa.String(length=36), sa.ForeignKey("jobs.job_id"), nullable=False, unique=True),
        sa.Column("total_tasks", sa.Integer(), nullable=False),
        sa.Column("total_minutes", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "checklist_items",
        sa.Column("item_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "checklist_id",
            sa.String(length=36),
            sa.ForeignKey("checklists.checklist_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("source_task_id", sa.String(length=36)),
        sa.Column("room", sa.String(length=64), nullable=False),
        sa.Column("task_name", sa.String(length=255), nullable=False),
        sa.Column("minutes", sa.Integer(), nullable=False),
        sa.Column("is_priority", sa.Boolean(), nullable=False),
        sa.Column("is_completed", sa.Boolean(), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("notes", sa.Text()),
    )
    op.create_index("ix_checklist_items_checklist_id", "checklist_items", ["checklist_id"])


def downgrade() -> None:
    op.drop_index("ix_checklist_items_checklist_id", table_name="checklist_items")
    op.drop_table("checklist_items")
    op.drop_table("checklists")
    op.drop_index("ix_job_notes_entity", table_name="job_notes")
    op.drop_table("job_notes")
    op.drop_index("ix_job_ratings_cleaner_id", table_name="job_ratings")
    op.drop_table("job_ratings")
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.execute("ALTER TABLE jobs DROP CONSTRAINT IF EXISTS jobs_cleaner_time_no_overlap")
    op.drop_index("uq_jobs_cleaner_active_slot", table_name="jobs")
    op.drop_index("ix_jobs_status_completed_at", table_name="jobs")
    op.drop_index("ix_jobs_cleaner_date_status", table_name="jobs")
    op.drop_index("ix_jobs_payout_batch_id", table_name="jobs")
    op.drop_index("ix_jobs_cleaner_id", table_name="jobs")
    op.drop_index("ix_jobs_member_id", table_name="jobs")
    op.drop_table("jobs")
    op.drop_table("payout_batches")
    op.drop_table("members")
    op.drop_index("ix_cleaner_blocked_dates_cleaner_id", table_name="cleaner_blocked_dates")
    op.drop_table("cleaner_blocked_dates")
    op.drop_index("ix_cleaner_schedules_cleaner_id", table_name="cleaner_schedules")
    op.drop_table("cleaner_schedules")
    op.drop_table("cleaner_zones")
    op.drop_table("cleaners")
    op.drop_table("zones")
    op.drop_index("ix_tasks_room_type", table_name="tasks")
    op.drop_table("tasks")
    op.drop_table("settings")
