import uuid
from datetime import date, datetime, time

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Time,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cleanbook.infra.db import Base

CLEANER_ACTIVE = "active"
CLEANER_INACTIVE = "inactive"
CLEANER_SUSPENDED = "suspended"

ZONE_ACTIVE = "active"
ZONE_WAITLIST = "waitlist"
ZONE_INACTIVE = "inactive"

cleaner_zones = Table(
    "cleaner_zones",
    Base.metadata,
    Column("cleaner_id", String(36), ForeignKey("cleaners.cleaner_id", ondelete="CASCADE"), primary_key=True),
    Column("zone_id", String(36), ForeignKey("zones.zone_id", ondelete="CASCADE"), primary_key=True),
)


class Zone(Base):
    __tablename__ = "zones"

    zone_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ZONE_ACTIVE)
    zip_codes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)


class Cleaner(Base):
    __tablename__ = "cleaners"

    cleaner_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=CLEANER_ACTIVE)
    rating_average: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    jobs_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    zones: Mapped[list[Zone]] = relationship(Zone, secondary=cleaner_zones, lazy="selectin")
    schedules: Mapped[list["CleanerSchedule"]] = relationship(
        "CleanerSchedule",
        back_populates="cleaner",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="CleanerSchedule.day_of_week",
    )
    blocked_dates: Mapped[list["CleanerBlockedDate"]] = relationship(
        "CleanerBlockedDate",
        back_populates="cleaner",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def serves_zone(self, zone_id: str) -> bool:
        return any(zone.zone_id == zone_id for zone in self.zones)


class CleanerSchedule(Base):
    __tablename__ = "cleaner_schedules"

    schedule_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cleaner_id: Mapped[str] = mapped_column(
        ForeignKey("cleaners.cleaner_id", ondelete="CASCADE"), nullable=False, index=True
    )
    # 0 = Monday, matching date.weekday()
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    cleaner: Mapped[Cleaner] = relationship(Cleaner, back_populates="schedules")

    __table_args__ = (UniqueConstraint("cleaner_id", "day_of_week", name="uq_cleaner_schedule_day"),)


class CleanerBlockedDate(Base):
    __tablename__ = "cleaner_blocked_dates"

    blocked_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cleaner_id: Mapped[str] = mapped_column(
        ForeignKey("cleaners.cleaner_id", ondelete="CASCADE"), nullable=False, index=True
    )
    blocked_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    cleaner: Mapped[Cleaner] = relationship(Cleaner, back_populates="blocked_dates")

    __table_args__ = (UniqueConstraint("cleaner_id", "blocked_date", name="uq_cleaner_blocked_date"),)
