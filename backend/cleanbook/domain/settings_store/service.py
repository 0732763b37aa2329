import json
import logging
import math
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.domain.errors import ConfigurationError, ConflictError, NotFoundError, ValidationError
from cleanbook.domain.settings_store.db_models import Setting
from cleanbook.domain.settings_store.schemas import SettingResponse, SettingValueType

logger = logging.getLogger(__name__)

PRICING_CATEGORIES = ("pricing", "tier")

# key -> (value, value_type, category, description)
DEFAULT_SETTINGS: dict[str, tuple[str, str, str, str]] = {
    "base_fee_cents": ("2500", "number", "pricing", "Flat base fee per job"),
    "per_minute_cents": ("50", "number", "pricing", "Labor rate per effort minute"),
    "platform_fee_percent": ("15", "number", "pricing", "Platform fee charged on top of the job price"),
    "stripe_fee_percent": ("2.9", "number", "pricing", "Estimated processor fee percent"),
    "stripe_fee_fixed_cents": ("30", "number", "pricing", "Estimated processor fixed fee"),
    "modifier_weekend_percent": ("20", "number", "pricing", "Weekend surcharge"),
    "modifier_rush_percent": ("30", "number", "pricing", "Rush surcharge"),
    "modifier_eco_percent": ("10", "number", "pricing", "Eco-friendly products surcharge"),
    "modifier_pet_friendly_percent": ("10", "number", "pricing", "Pet-friendly surcharge"),
    "tier_silver_discount_percent": ("5", "number", "tier", "Silver member discount"),
    "tier_gold_discount_percent": ("15", "number", "tier", "Gold member discount"),
    "tier_diamond_discount_percent": ("20", "number", "tier", "Diamond member discount"),
    "tier_silver_monthly_cents": ("2900", "number", "tier", "Silver membership monthly price"),
    "tier_gold_monthly_cents": ("4900", "number", "tier", "Gold membership monthly price"),
    "tier_diamond_monthly_cents": ("9900", "number", "tier", "Diamond membership monthly price"),
    "min_job_value_cents": ("5000", "number", "pricing", "Smallest job total accepted for booking"),
}


def parse_value(raw: str, value_type: str) -> Any:
    """Convert a stored string into its declared type.

    Raises ValueError when the stored value does not parse; callers decide how that surfaces.
    """
    if value_type == SettingValueType.NUMBER:
        number = float(raw)
        if not math.isfinite(number):
            raise ValueError(f"{raw!r} is not a finite number")
        return number
    if value_type == SettingValueType.BOOLEAN:
        return raw == "true"
    if value_type == SettingValueType.JSON:
        return json.loads(raw)
    return raw


def validate_value(raw: str, value_type: str) -> None:
    if value_type == SettingValueType.NUMBER:
        try:
            parse_value(raw, value_type)
        except ValueError as exc:
            raise ValidationError(f"Value must be a valid number, got {raw!r}") from exc
    elif value_type == SettingValueType.BOOLEAN:
        if raw not in {"true", "false"}:
            raise ValidationError(f"Value must be 'true' or 'false', got {raw!r}")
    elif value_type == SettingValueType.JSON:
        try:
            json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError("Value must be valid JSON") from exc


def _typed(setting: Setting) -> Any:
    try:
        return parse_value(setting.value, setting.value_type)
    except ValueError as exc:
        logger.error(
            "setting_malformed",
            extra={"extra": {"key": setting.key, "value_type": setting.value_type}},
        )
        raise ConfigurationError(
            f"Setting {setting.key} is not a valid {setting.value_type}",
            errors=[{"field": setting.key, "message": str(exc)}],
        ) from exc


def to_response(setting: Setting) -> SettingResponse:
    return SettingResponse(
        key=setting.key,
        value=_typed(setting),
        value_type=setting.value_type,
        category=setting.category,
        description=setting.description,
    )


async def _require(session: AsyncSession, key: str) -> Setting:
    setting = await session.get(Setting, key)
    if setting is None:
        raise NotFoundError(f"Setting not found: {key}")
    return setting


async def get_setting(session: AsyncSession, key: str) -> Any:
    return _typed(await _require(session, key))


async def get_category(session: AsyncSession, category: str) -> dict[str, Any]:
    result = await session.execute(
        select(Setting).where(Setting.category == category).order_by(Setting.key)
    )
    return {setting.key: _typed(setting) for setting in result.scalars()}


async def get_all(session: AsyncSession) -> list[Setting]:
    result = await session.execute(select(Setting).order_by(Setting.category, Setting.key))
    return list(result.scalars())


async def get_values(session: AsyncSession, keys: list[str]) -> dict[str, Setting]:
    result = await session.execute(select(Setting).where(Setting.key.in_(keys)))
    return {setting.key: setting for setting in result.scalars()}


async def update_setting(session: AsyncSession, key: str, value: str) -> Setting:
    setting = await _require(session, key)
    validate_value(value, setting.value_type)
    numeric = setting.value_type == SettingValueType.NUMBER
    if numeric and setting.category in PRICING_CATEGORIES and parse_value(value, setting.value_type) < 0:
        raise ValidationError(f"{key} must not be negative")
    setting.value = value
    await session.commit()
    await session.refresh(setting)
    logger.info("setting_updated", extra={"extra": {"key": key, "category": setting.category}})
    return setting


async def create_setting(
    session: AsyncSession,
    key: str,
    value: str,
    *,
    value_type: str = SettingValueType.STRING,
    category: str = "general",
    description: str | None = None,
) -> Setting:
    try:
        resolved_type = SettingValueType(value_type)
    except ValueError as exc:
        raise ValidationError(f"Unknown setting type: {value_type}") from exc
    validate_value(value, resolved_type)
    setting = Setting(
        key=key,
        value=value,
        value_type=resolved_type.value,
        category=category,
        description=description,
    )
    session.add(setting)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError(f"Setting already exists: {key}") from exc
    await session.refresh(setting)
    return setting


async def ensure_default_settings(session: AsyncSession) -> int:
    """Insert any missing default settings; existing values are left untouched."""
    existing = await get_values(session, list(DEFAULT_SETTINGS))
    created = 0
    for key, (value, value_type, category, description) in DEFAULT_SETTINGS.items():
        if key in existing:
            continue
        session.add(
            Setting(key=key, value=value, value_type=value_type, category=category, description=description)
        )
        created += 1
    if created:
        await session.commit()
    return created
