from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cleanbook.domain.effort.schemas import EffortModifier
from cleanbook.domain.pricing.models import PricingFlags

TIME_PATTERN = r"^\d{1,2}:\d{2}$"


class BookingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    zone_id: str = Field(min_length=1)
    address: str = Field(min_length=1, max_length=500)
    scheduled_date: date
    scheduled_time: str = Field(pattern=TIME_PATTERN)
    task_ids: List[str] = Field(min_length=1)
    notes: Optional[str] = Field(None, max_length=2000)
    flags: PricingFlags = Field(default_factory=PricingFlags)
    preferred_cleaner_id: Optional[str] = None
    effort_modifiers: List[EffortModifier] = Field(default_factory=list)


class CancelRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: Optional[str] = Field(None, max_length=500)


class RescheduleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    new_date: date
    new_time: str = Field(pattern=TIME_PATTERN)


class RateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rating: int
    review: Optional[str] = Field(None, max_length=2000)


class RatingResponse(BaseModel):
    job_id: str
    cleaner_id: str
    rating: int
    cleaner_rating_average: float
    cleaner_rating_count: int


class JobResponse(BaseModel):
    job_id: str
    member_id: str
    cleaner_id: Optional[str]
    cleaner_name: Optional[str] = None
    zone_id: str
    status: str
    scheduled_date: date
    scheduled_time: str
    estimated_duration_minutes: int
    task_count: int
    subtotal_cents: int
    modifiers_total_cents: int
    discount_cents: int
    platform_fee_cents: int
    total_cents: int
    cleaner_payout_cents: int
    payout_batch_id: Optional[str] = None
    rating: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class BookingPricingSummary(BaseModel):
    total_cents: int
    cleaner_payout_cents: int
    total_display: str


class BookingCreatedResponse(BaseModel):
    job: JobResponse
    checklist_id: str
    pricing: BookingPricingSummary
    match_reason: str


class MemberJobsResponse(BaseModel):
    upcoming: List[JobResponse]
    past: List[JobResponse]
