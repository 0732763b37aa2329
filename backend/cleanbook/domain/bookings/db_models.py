import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cleanbook.domain.cleaners.db_models import Cleaner
from cleanbook.infra.db import Base

JOB_SCHEDULED = "SCHEDULED"
JOB_IN_PROGRESS = "IN_PROGRESS"
JOB_COMPLETED = "COMPLETED"
JOB_CANCELLED = "CANCELLED"
ACTIVE_JOB_STATUSES = (JOB_SCHEDULED, JOB_IN_PROGRESS)

_ACTIVE_SLOT_WHERE = text("status IN ('SCHEDULED', 'IN_PROGRESS') AND cleaner_id IS NOT NULL")


class Job(Base):
    __tablename__ = "jobs"

    job_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    member_id: Mapped[str] = mapped_column(ForeignKey("members.member_id"), nullable=False, index=True)
    cleaner_id: Mapped[str | None] = mapped_column(ForeignKey("cleaners.cleaner_id"), nullable=True, index=True)
    zone_id: Mapped[str] = mapped_column(ForeignKey("zones.zone_id"), nullable=False)
    address: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=JOB_SCHEDULED)
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    scheduled_start_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    estimated_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    task_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    member_tier: Mapped[str] = mapped_column(String(16), nullable=False, default="free")
    pricing_flags: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    modifiers_total_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    discount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    platform_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    cleaner_payout_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    pricing_config_hash: Mapped[str | None] = mapped_column(String(80), nullable=True)
    payout_batch_id: Mapped[str | None] = mapped_column(
        ForeignKey("payout_batches.batch_id"), nullable=True, index=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    cleaner: Mapped[Cleaner | None] = relationship(Cleaner, lazy="selectin")
    rating: Mapped[Optional["JobRating"]] = relationship(
        "JobRating", back_populates="job", uselist=False, lazy="selectin"
    )

    __table_args__ = (
        Index(
            "uq_jobs_cleaner_active_slot",
            "cleaner_id",
            "scheduled_date",
            "scheduled_start_minute",
            unique=True,
            sqlite_where=_ACTIVE_SLOT_WHERE,
            postgresql_where=_ACTIVE_SLOT_WHERE,
        ),
        Index("ix_jobs_cleaner_date_status", "cleaner_id", "scheduled_date", "status"),
        Index("ix_jobs_status_completed_at", "status", "completed_at"),
        CheckConstraint("estimated_duration_minutes >= 0", name="ck_jobs_duration_non_negative"),
        CheckConstraint(
            "scheduled_start_minute >= 0 AND scheduled_start_minute < 1440", name="ck_jobs_start_minute_range"
        ),
    )

    @property
    def scheduled_time(self) -> str:
        hours, minutes = divmod(self.scheduled_start_minute, 60)
        return f"{hours:02d}:{minutes:02d}"

    @property
    def scheduled_end_minute(self) -> int:
        return self.scheduled_start_minute + self.estimated_duration_minutes


class JobRating(Base):
    __tablename__ = "job_ratings"

    rating_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(ForeignKey("jobs.job_id"), nullable=False, unique=True)
    cleaner_id: Mapped[str] = mapped_column(ForeignKey("cleaners.cleaner_id"), nullable=False, index=True)
    member_id: Mapped[str] = mapped_column(ForeignKey("members.member_id"), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    review: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    job: Mapped[Job] = relationship(Job, back_populates="rating")

    __table_args__ = (CheckConstraint("rating >= 1 AND rating <= 5", name="ck_job_ratings_range"),)


class JobNote(Base):
    __tablename__ = "job_notes"

    note_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("ix_job_notes_entity", "entity_type", "entity_id"),)
