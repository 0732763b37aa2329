from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PayoutPeriodRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: datetime
    end: datetime
    notes: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def validate_period(self) -> "PayoutPeriodRequest":
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self


class MarkProcessedRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    notes: Optional[str] = Field(None, max_length=2000)


class PayoutJobLine(BaseModel):
    job_id: str
    completed_at: Optional[datetime]
    payout_cents: int


class CleanerPayout(BaseModel):
    cleaner_id: str
    cleaner_name: str
    job_count: int
    gross_payout_cents: int
    fees_cents: int
    net_payout_cents: int
    jobs: List[PayoutJobLine] = Field(default_factory=list)


class PayoutBatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    batch_id: str
    period_start: datetime
    period_end: datetime
    status: str
    total_cleaners: int
    total_jobs: int
    total_gross_cents: int
    total_fees_cents: int
    total_net_cents: int
    notes: Optional[str] = None
    created_by: str
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class BatchCleanerPayout(BaseModel):
    cleaner_id: str
    cleaner_name: str
    email: Optional[str] = None
    job_count: int
    total_cents: int
    jobs: List[PayoutJobLine] = Field(default_factory=list)


class PayoutBatchDetail(BaseModel):
    batch: PayoutBatchResponse
    cleaner_payouts: List[BatchCleanerPayout]


class PendingPayout(BaseModel):
    cleaner_id: str
    job_count: int
    total_pending_cents: int
    oldest_job_completed_at: Optional[datetime] = None
    jobs: List[PayoutJobLine] = Field(default_factory=list)


class PayoutHistoryEntry(BaseModel):
    batch: PayoutBatchResponse
    job_count: int
    amount_cents: int


class CleanerEarnings(BaseModel):
    pending: PendingPayout
    history: List[PayoutHistoryEntry]
    next_payout_date: date


class NextPayoutPeriod(BaseModel):
    start: datetime
    end: datetime
    next_payout_date: date
