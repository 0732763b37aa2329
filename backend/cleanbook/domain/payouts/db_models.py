import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from cleanbook.infra.db import Base

BATCH_PENDING = "pending"
BATCH_PROCESSED = "processed"


class PayoutBatch(Base):
    __tablename__ = "payout_batches"

    batch_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=BATCH_PENDING)
    total_cleaners: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_fees_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_net_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
