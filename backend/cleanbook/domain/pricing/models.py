from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MemberTier(str, Enum):
    free = "free"
    silver = "silver"
    gold = "gold"
    diamond = "diamond"


class JobType(str, Enum):
    standard = "standard"
    deep = "deep"
    move_out = "move_out"


class PricingFlags(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_weekend: bool = False
    is_rush: bool = False
    is_eco_friendly: bool = False
    is_pet_friendly: bool = False


class ModifierAmount(BaseModel):
    type: str
    label: str
    percent: float
    amount_cents: int


class TierDiscount(BaseModel):
    tier: MemberTier
    percent: float
    amount_cents: int


class PlatformFee(BaseModel):
    percent: float
    amount_cents: int


class ProcessorFeeEstimate(BaseModel):
    percent: float
    fixed_cents: int
    estimated_cents: int


class PricingBreakdown(BaseModel):
    base_fee_cents: int
    effort_minutes: int
    per_minute_cents: int
    effort_cost_cents: int
    subtotal_cents: int
    modifiers: List[ModifierAmount] = Field(default_factory=list)
    modifiers_total_cents: int
    subtotal_with_modifiers_cents: int
    tier_discount: Optional[TierDiscount] = None
    subtotal_after_discount_cents: int
    platform_fee: PlatformFee
    total_cents: int
    cleaner_payout_cents: int
    processor_fee: ProcessorFeeEstimate
    pricing_config_hash: str


class EstimateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_ids: List[str] = Field(min_length=1)
    flags: PricingFlags = Field(default_factory=PricingFlags)
    member_tier: MemberTier = MemberTier.free


class EffortSummary(BaseModel):
    base_minutes: int
    modified_minutes: int
    hours: float


class EstimateResponse(BaseModel):
    effort: EffortSummary
    pricing: PricingBreakdown
    total_display: str
    minimum_job_value_cents: int
    meets_minimum: bool


class JobTypeEstimateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_type: JobType
    member_tier: MemberTier = MemberTier.free
    flags: PricingFlags = Field(default_factory=PricingFlags)
