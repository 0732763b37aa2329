import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.domain.errors import ConfigurationError
from cleanbook.domain.settings_store import service as settings_service

logger = logging.getLogger(__name__)

CENTS_KEYS = ("base_fee_cents", "per_minute_cents", "stripe_fee_fixed_cents", "min_job_value_cents")
PERCENT_KEYS = (
    "platform_fee_percent",
    "stripe_fee_percent",
    "modifier_weekend_percent",
    "modifier_rush_percent",
    "modifier_eco_percent",
    "modifier_pet_friendly_percent",
    "tier_silver_discount_percent",
    "tier_gold_discount_percent",
    "tier_diamond_discount_percent",
)
REQUIRED_KEYS = CENTS_KEYS + PERCENT_KEYS


@dataclass(frozen=True)
class PricingConfig:
    base_fee_cents: int
    per_minute_cents: int
    platform_fee_percent: float
    stripe_fee_percent: float
    stripe_fee_fixed_cents: int
    min_job_value_cents: int
    modifier_percents: Mapping[str, float]
    tier_discount_percents: Mapping[str, float]
    config_hash: str = field(default="")

    def tier_discount_percent(self, tier: str) -> float:
        return self.tier_discount_percents.get(tier, 0.0)


def _canonical_json(data: Mapping[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def build_pricing_config(values: Mapping[str, Any]) -> PricingConfig:
    """Validate raw numeric values and freeze them into a PricingConfig.

    Every problem is collected so a broken deployment reports all bad keys at once.
    """
    errors: list[dict[str, str]] = []
    resolved: dict[str, Any] = {}
    for key in REQUIRED_KEYS:
        raw = values.get(key)
        if raw is None:
            errors.append({"field": key, "message": "missing"})
            continue
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            errors.append({"field": key, "message": "must be a number"})
            continue
        if raw < 0:
            errors.append({"field": key, "message": "must not be negative"})
            continue
        if key in CENTS_KEYS:
            if float(raw) != int(raw):
                errors.append({"field": key, "message": "must be a whole number of cents"})
                continue
            resolved[key] = int(raw)
        else:
            resolved[key] = float(raw)
    if errors:
        logger.error("pricing_config_invalid", extra={"extra": {"errors": errors}})
        raise ConfigurationError(
            "Pricing configuration is incomplete or malformed",
            errors=errors,
        )

    config_hash = hashlib.sha256(_canonical_json(resolved).encode("utf-8")).hexdigest()
    return PricingConfig(
        base_fee_cents=resolved["base_fee_cents"],
        per_minute_cents=resolved["per_minute_cents"],
        platform_fee_percent=resolved["platform_fee_percent"],
        stripe_fee_percent=resolved["stripe_fee_percent"],
        stripe_fee_fixed_cents=resolved["stripe_fee_fixed_cents"],
        min_job_value_cents=resolved["min_job_value_cents"],
        modifier_percents={
            "weekend": resolved["modifier_weekend_percent"],
            "rush": resolved["modifier_rush_percent"],
            "eco_friendly": resolved["modifier_eco_percent"],
            "pet_friendly": resolved["modifier_pet_friendly_percent"],
        },
        tier_discount_percents={
            "silver": resolved["tier_silver_discount_percent"],
            "gold": resolved["tier_gold_discount_percent"],
            "diamond": resolved["tier_diamond_discount_percent"],
        },
        config_hash=f"sha256:{config_hash}",
    )


async def load_pricing_config(session: AsyncSession) -> PricingConfig:
    stored = await settings_service.get_values(session, list(REQUIRED_KEYS))
    values: dict[str, Any] = {}
    errors: list[dict[str, str]] = []
    for key, setting in stored.items():
        if setting.value_type != "number":
            errors.append({"field": key, "message": f"declared as {setting.value_type}, expected number"})
            continue
        try:
            values[key] = settings_service.parse_value(setting.value, setting.value_type)
        except ValueError:
            errors.append({"field": key, "message": "not a valid number"})
    if errors:
        logger.error("pricing_config_invalid", extra={"extra": {"errors": errors}})
        raise ConfigurationError("Pricing configuration is incomplete or malformed", errors=errors)
    return build_pricing_config(values)
