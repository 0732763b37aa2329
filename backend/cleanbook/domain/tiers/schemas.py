from typing import List

from pydantic import BaseModel, ConfigDict, Field

from cleanbook.domain.pricing.models import MemberTier


class TierFeatures(BaseModel):
    tier: MemberTier
    monthly_price_cents: int
    discount_percent: float
    features: List[str] = Field(default_factory=list)
    is_recommended: bool = False


class TierSavings(BaseModel):
    tier: MemberTier
    period_months: int
    job_count: int
    total_spent_cents: int
    total_saved_cents: int
    subscription_cost_cents: int
    net_savings_cents: int


class TierRecommendation(BaseModel):
    current_tier: MemberTier
    recommended_tier: MemberTier
    reason: str
    potential_savings_cents: int


class MemberTierResponse(BaseModel):
    member_id: str
    tier: MemberTier
    features: TierFeatures
    recommendation: TierRecommendation
    savings: TierSavings


class TierUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tier: MemberTier
