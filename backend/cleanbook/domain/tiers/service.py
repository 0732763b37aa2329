import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.domain.bookings.db_models import JOB_COMPLETED, JOB_SCHEDULED, Job
from cleanbook.domain.bookings.service import add_audit_note
from cleanbook.domain.errors import ConfigurationError, NotFoundError
from cleanbook.domain.members.db_models import Member
from cleanbook.domain.pricing.models import MemberTier
from cleanbook.domain.settings_store import service as settings_service
from cleanbook.domain.tiers.schemas import TierFeatures, TierRecommendation, TierSavings
from cleanbook.shared.rounding import round_half_away

logger = logging.getLogger(__name__)

TIER_ORDER = (MemberTier.free, MemberTier.silver, MemberTier.gold, MemberTier.diamond)
PAID_TIERS = TIER_ORDER[1:]
RECOMMENDED_TIER = MemberTier.gold

# feature key -> lowest tier that unlocks it
FEATURE_REQUIREMENTS: dict[str, MemberTier] = {
    "pay_per_clean": MemberTier.free,
    "standard_scheduling": MemberTier.free,
    "basic_support": MemberTier.free,
    "online_booking": MemberTier.free,
    "priority_scheduling": MemberTier.silver,
    "email_support": MemberTier.silver,
    "flexible_cancellation": MemberTier.silver,
    "preferred_cleaner": MemberTier.gold,
    "phone_support": MemberTier.gold,
    "same_day_cancellation": MemberTier.gold,
    "monthly_deep_clean": MemberTier.gold,
    "top_priority": MemberTier.diamond,
    "dedicated_cleaner": MemberTier.diamond,
    "concierge_support": MemberTier.diamond,
    "anytime_cancellation": MemberTier.diamond,
    "eco_products_included": MemberTier.diamond,
    "special_occasion": MemberTier.diamond,
}

TIER_PERKS: dict[MemberTier, list[str]] = {
    MemberTier.free: ["Pay per clean", "Standard scheduling", "Basic support", "Online booking"],
    MemberTier.silver: ["Priority scheduling", "Email support", "Flexible cancellation", "Online booking"],
    MemberTier.gold: [
        "Priority scheduling",
        "Preferred cleaner matching",
        "Phone & email support",
        "Same-day cancellation",
        "Monthly deep clean included",
    ],
    MemberTier.diamond: [
        "Top priority scheduling",
        "Dedicated cleaner",
        "24/7 concierge support",
        "Anytime cancellation",
        "2 monthly deep cleans included",
        "Eco-friendly products included",
        "Special occasion setup",
    ],
}

# bookings per month at which each paid tier starts to pay for itself
UPGRADE_THRESHOLDS = (
    (MemberTier.silver, 1, "You could save on monthly cleanings"),
    (MemberTier.gold, 2, "You could save significantly with bi-weekly cleanings"),
    (MemberTier.diamond, 4, "Maximum savings for weekly cleanings"),
)

RECOMMENDATION_WINDOW = timedelta(days=90)
DEFAULT_AVERAGE_JOB_CENTS = 5000


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def get_all_tier_features(session: AsyncSession) -> dict[MemberTier, TierFeatures]:
    values = await settings_service.get_category(session, "tier")
    errors = []
    for tier in PAID_TIERS:
        for key in (f"tier_{tier.value}_monthly_cents", f"tier_{tier.value}_discount_percent"):
            if key not in values:
                errors.append({"field": key, "message": "missing"})
    if errors:
        logger.error("tier_config_invalid", extra={"extra": {"fields": [e["field"] for e in errors]}})
        raise ConfigurationError("Tier configuration is incomplete", errors=errors)

    features = {
        MemberTier.free: TierFeatures(
            tier=MemberTier.free, monthly_price_cents=0, discount_percent=0, features=TIER_PERKS[MemberTier.free]
        )
    }
    for tier in PAID_TIERS:
        discount = values[f"tier_{tier.value}_discount_percent"]
        features[tier] = TierFeatures(
            tier=tier,
            monthly_price_cents=int(values[f"tier_{tier.value}_monthly_cents"]),
            discount_percent=discount,
            features=[f"{discount:g}% off all cleanings", *TIER_PERKS[tier]],
            is_recommended=tier == RECOMMENDED_TIER,
        )
    return features


async def get_tier_features(session: AsyncSession, tier: MemberTier | str) -> TierFeatures:
    return (await get_all_tier_features(session))[MemberTier(tier)]


def can_access_feature(member_tier: MemberTier | str, feature: str) -> bool:
    required = FEATURE_REQUIREMENTS.get(feature)
    if required is None:
        return False
    return TIER_ORDER.index(MemberTier(member_tier)) >= TIER_ORDER.index(required)


async def _get_member(session: AsyncSession, member_id: str) -> Member:
    member = await session.get(Member, member_id)
    if member is None:
        raise NotFoundError("Member not found")
    return member


async def get_member_tier(session: AsyncSession, member_id: str) -> MemberTier:
    return MemberTier((await _get_member(session, member_id)).tier)


async def update_member_tier(
    session: AsyncSession, member_id: str, tier: MemberTier | str, *, actor_id: str | None = None
) -> Member:
    member = await _get_member(session, member_id)
    previous = member.tier
    member.tier = MemberTier(tier).value
    await session.commit()
    logger.info(
        "member_tier_changed",
        extra={"extra": {"member_id": member_id, "from_tier": previous, "to_tier": member.tier}},
    )
    await add_audit_note(
        session, member_id, f"Tier changed to {member.tier}", created_by=actor_id, entity_type="member"
    )
    return member


async def calculate_tier_savings(
    session: AsyncSession, member_id: str, *, period_months: int = 12, as_of: datetime | None = None
) -> TierSavings:
    """What the member's tier saved them on completed jobs, net of the subscription."""
    tier = await get_member_tier(session, member_id)
    features = await get_tier_features(session, tier)
    since = (as_of or _now()) - timedelta(days=30 * period_months)
    job_count, spent, saved = (
        await session.execute(
            select(
                func.count(Job.job_id),
                func.coalesce(func.sum(Job.total_cents), 0),
                func.coalesce(func.sum(Job.discount_cents), 0),
            ).where(Job.member_id == member_id, Job.status == JOB_COMPLETED, Job.completed_at >= since)
        )
    ).one()
    subscription = features.monthly_price_cents * period_months
    return TierSavings(
        tier=tier,
        period_months=period_months,
        job_count=job_count,
        total_spent_cents=spent,
        total_saved_cents=saved,
        subscription_cost_cents=subscription,
        net_savings_cents=saved - subscription,
    )


async def recommend_tier(
    session: AsyncSession, member_id: str, *, as_of: datetime | None = None
) -> TierRecommendation:
    current = await get_member_tier(session, member_id)
    since = (as_of or _now()) - RECOMMENDATION_WINDOW

    recent_jobs = await session.scalar(
        select(func.count(Job.job_id)).where(
            Job.member_id == member_id,
            Job.status.in_((JOB_COMPLETED, JOB_SCHEDULED)),
            Job.created_at >= since,
        )
    )
    average_price = await session.scalar(
        select(func.avg(Job.total_cents)).where(
            Job.member_id == member_id, Job.status == JOB_COMPLETED, Job.completed_at >= since
        )
    )
    jobs_per_month = (recent_jobs or 0) / 3
    average_cents = float(average_price) if average_price is not None else DEFAULT_AVERAGE_JOB_CENTS
    tiers = await get_all_tier_features(session)

    recommended, reason, potential = current, "Current tier is optimal for your usage", 0
    # Later thresholds win, so a weekly booker is pointed at the top tier.
    for tier, min_jobs_per_month, tier_reason in UPGRADE_THRESHOLDS:
        if TIER_ORDER.index(current) >= TIER_ORDER.index(tier) or jobs_per_month < min_jobs_per_month:
            continue
        savings = (
            average_cents * jobs_per_month * tiers[tier].discount_percent / 100 - tiers[tier].monthly_price_cents
        )
        if savings > 0:
            recommended, reason, potential = tier, tier_reason, round_half_away(savings)

    return TierRecommendation(
        current_tier=current,
        recommended_tier=recommended,
        reason=reason,
        potential_savings_cents=potential,
    )
