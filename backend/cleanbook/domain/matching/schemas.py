from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from cleanbook.domain.bookings.schemas import TIME_PATTERN


class MatchingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    zone_id: str = Field(min_length=1)
    scheduled_date: date
    scheduled_time: str = Field(pattern=TIME_PATTERN)
    duration_minutes: int = Field(gt=0, le=24 * 60)
    preferred_cleaner_id: Optional[str] = None


class CleanerMatchResponse(BaseModel):
    cleaner_id: str
    cleaner_name: str
    score: int
    is_available: bool
    is_preferred: bool
    upcoming_jobs: int
    rating_average: float
    jobs_completed: int
    score_parts: Dict[str, float]
    reasons: List[str]
    availability_reason: Optional[str] = None


class MatchingResponse(BaseModel):
    best_cleaner_id: Optional[str]
    candidates: List[CleanerMatchResponse]


class DailyAvailability(BaseModel):
    day: date
    available_slots: int
