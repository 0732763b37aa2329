from cleanbook.domain.errors import ValidationError
from cleanbook.domain.pricing.config_loader import PricingConfig
from cleanbook.domain.pricing.models import (
    JobType,
    MemberTier,
    ModifierAmount,
    PlatformFee,
    PricingBreakdown,
    PricingFlags,
    ProcessorFeeEstimate,
    TierDiscount,
)
from cleanbook.shared.rounding import percent_of_cents

# flag attribute, modifier key, display label; applied in this order
MODIFIER_FLAGS = (
    ("is_weekend", "weekend", "Weekend"),
    ("is_rush", "rush", "Rush"),
    ("is_eco_friendly", "eco_friendly", "Eco-Friendly"),
    ("is_pet_friendly", "pet_friendly", "Pet-Friendly"),
)

JOB_TYPE_EFFORT_MINUTES = {
    JobType.standard: 120,
    JobType.deep: 240,
    JobType.move_out: 360,
}


def calculate_price(
    effort_minutes: int,
    flags: PricingFlags | None,
    member_tier: MemberTier | str | None,
    config: PricingConfig,
) -> PricingBreakdown:
    if effort_minutes < 0:
        raise ValidationError("effort_minutes must not be negative")
    flags = flags or PricingFlags()
    tier = MemberTier(member_tier) if member_tier else MemberTier.free

    effort_cost = effort_minutes * config.per_minute_cents
    subtotal = config.base_fee_cents + effort_cost

    # Every surcharge is taken against the same pre-modifier subtotal.
    modifiers: list[ModifierAmount] = []
    for attribute, key, label in MODIFIER_FLAGS:
        if not getattr(flags, attribute):
            continue
        percent = config.modifier_percents[key]
        modifiers.append(
            ModifierAmount(type=key, label=label, percent=percent, amount_cents=percent_of_cents(subtotal, percent))
        )
    modifiers_total = sum(modifier.amount_cents for modifier in modifiers)
    subtotal_with_modifiers = subtotal + modifiers_total

    tier_discount = None
    subtotal_after_discount = subtotal_with_modifiers
    if tier != MemberTier.free:
        discount_percent = config.tier_discount_percent(tier.value)
        if discount_percent > 0:
            discount = percent_of_cents(subtotal_with_modifiers, discount_percent)
            tier_discount = TierDiscount(tier=tier, percent=discount_percent, amount_cents=discount)
            subtotal_after_discount = subtotal_with_modifiers - discount

    platform_fee = percent_of_cents(subtotal_after_discount, config.platform_fee_percent)
    total = subtotal_after_discount + platform_fee
    cleaner_payout = subtotal_after_discount - platform_fee

    processor_estimate = estimate_processor_fee(total, config)

    return PricingBreakdown(
        base_fee_cents=config.base_fee_cents,
        effort_minutes=effort_minutes,
        per_minute_cents=config.per_minute_cents,
        effort_cost_cents=effort_cost,
        subtotal_cents=subtotal,
        modifiers=modifiers,
        modifiers_total_cents=modifiers_total,
        subtotal_with_modifiers_cents=subtotal_with_modifiers,
        tier_discount=tier_discount,
        subtotal_after_discount_cents=subtotal_after_discount,
        platform_fee=PlatformFee(percent=config.platform_fee_percent, amount_cents=platform_fee),
        total_cents=total,
        cleaner_payout_cents=cleaner_payout,
        processor_fee=ProcessorFeeEstimate(
            percent=config.stripe_fee_percent,
            fixed_cents=config.stripe_fee_fixed_cents,
            estimated_cents=processor_estimate,
        ),
        pricing_config_hash=config.config_hash,
    )


def get_minimum_job_price(config: PricingConfig) -> int:
    return config.min_job_value_cents


def meets_minimum(breakdown: PricingBreakdown, config: PricingConfig) -> bool:
    return breakdown.total_cents >= config.min_job_value_cents


def estimate_price_by_job_type(
    job_type: JobType | str,
    member_tier: MemberTier | str | None,
    config: PricingConfig,
    flags: PricingFlags | None = None,
) -> PricingBreakdown:
    minutes = JOB_TYPE_EFFORT_MINUTES[JobType(job_type)]
    return calculate_price(minutes, flags, member_tier, config)


def format_price(cents: int) -> str:
    return f"${cents / 100:.2f}"


def estimate_processor_fee(amount_cents: int, config: PricingConfig) -> int:
    return percent_of_cents(amount_cents, config.stripe_fee_percent) + config.stripe_fee_fixed_cents


def calculate_cleaner_take_home(payout_cents: int, config: PricingConfig) -> int:
    """Payout left after the estimated processor fee on transferring it."""
    return payout_cents - estimate_processor_fee(payout_cents, config)
