import asyncio

import pytest

from cleanbook.domain.errors import ConfigurationError, ValidationError
from cleanbook.domain.pricing import engine
from cleanbook.domain.pricing.config_loader import build_pricing_config, load_pricing_config
from cleanbook.domain.pricing.models import JobType, MemberTier, PricingFlags
from cleanbook.domain.settings_store import service as settings_service
from cleanbook.domain.settings_store.db_models import Setting
from cleanbook.domain.settings_store.service import DEFAULT_SETTINGS
from cleanbook.shared.rounding import percent_of_cents


def _config(**overrides):
    values = {key: float(value) for key, (value, *_rest) in DEFAULT_SETTINGS.items()}
    values.update(overrides)
    return build_pricing_config(values)


def test_round_numbers_without_flags_or_tier():
    breakdown = engine.calculate_price(60, None, MemberTier.free, _config())

    assert breakdown.subtotal_cents == 5500
    assert breakdown.modifiers == []
    assert breakdown.tier_discount is None
    assert breakdown.platform_fee.amount_cents == 825
    assert breakdown.total_cents == 6325
    assert breakdown.cleaner_payout_cents == 4675


def test_zero_effort_still_charges_base_fee():
    breakdown = engine.calculate_price(0, None, "free", _config())

    assert breakdown.subtotal_cents == 2500
    assert breakdown.total_cents == 2500 + 375


def test_negative_effort_is_rejected():
    with pytest.raises(ValidationError):
        engine.calculate_price(-1, None, "free", _config())


def test_weekend_rush_gold_end_to_end_numbers():
    flags = PricingFlags(is_weekend=True, is_rush=True)
    breakdown = engine.calculate_price(120, flags, MemberTier.gold, _config())

    assert breakdown.subtotal_cents == 8500
    assert [(m.type, m.amount_cents) for m in breakdown.modifiers] == [("weekend", 1700), ("rush", 2550)]
    assert breakdown.modifiers_total_cents == 4250
    assert breakdown.subtotal_with_modifiers_cents == 12750
    assert breakdown.tier_discount.amount_cents == 1913
    assert breakdown.subtotal_after_discount_cents == 10837
    assert breakdown.platform_fee.amount_cents == 1626
    assert breakdown.total_cents == 12463
    assert breakdown.cleaner_payout_cents == 9211


def test_half_cents_round_away_from_zero():
    breakdown = engine.calculate_price(1, None, "free", _config())

    # 15% of 2550 is 382.5
    assert breakdown.subtotal_cents == 2550
    assert breakdown.platform_fee.amount_cents == 383
    assert breakdown.total_cents == 2933
    assert breakdown.cleaner_payout_cents == 2167


@pytest.mark.parametrize(
    ("cents", "percent", "expected"),
    [(12750, 15, 1913), (2550, 15, 383), (4675, 2.9, 136), (6325, 2.9, 183), (9350, 2.9, 271), (0, 15, 0)],
)
def test_percent_of_cents(cents, percent, expected):
    assert percent_of_cents(cents, percent) == expected


def test_modifiers_apply_to_pre_modifier_subtotal():
    flags = PricingFlags(is_weekend=True, is_rush=True, is_eco_friendly=True, is_pet_friendly=True)
    breakdown = engine.calculate_price(60, flags, "free", _config())

    # 20 + 30 + 10 + 10 percent of 5500, never compounded.
    assert breakdown.modifiers_total_cents == 1100 + 1650 + 550 + 550


def test_total_is_fee_plus_payout_identity():
    config = _config()
    for minutes in (0, 15, 47, 90, 333):
        for tier in MemberTier:
            breakdown = engine.calculate_price(minutes, PricingFlags(is_rush=True), tier, config)
            after = breakdown.subtotal_after_discount_cents
            assert breakdown.total_cents == after + breakdown.platform_fee.amount_cents
            assert breakdown.cleaner_payout_cents == after - breakdown.platform_fee.amount_cents


def test_zero_percent_tier_yields_no_discount_entry():
    breakdown = engine.calculate_price(60, None, "silver", _config(tier_silver_discount_percent=0))

    assert breakdown.tier_discount is None
    assert breakdown.subtotal_after_discount_cents == breakdown.subtotal_with_modifiers_cents


def test_processor_fee_is_estimate_only():
    breakdown = engine.calculate_price(60, None, "free", _config())

    assert breakdown.processor_fee.estimated_cents == 183 + 30
    assert breakdown.cleaner_payout_cents == 4675
    # 2.9% of 4675 is 135.575
    assert engine.calculate_cleaner_take_home(4675, _config()) == 4675 - 136 - 30


def test_job_type_estimates_use_fixed_minutes():
    config = _config()
    standard = engine.estimate_price_by_job_type(JobType.standard, None, config)
    deep = engine.estimate_price_by_job_type("deep", "free", config)

    assert standard.effort_minutes == 120
    assert deep.effort_minutes == 240
    assert engine.estimate_price_by_job_type("move_out", None, config).effort_minutes == 360


def test_minimum_and_formatting():
    config = _config()
    small = engine.calculate_price(0, None, "free", config)

    assert engine.get_minimum_job_price(config) == 5000
    assert not engine.meets_minimum(small, config)
    assert engine.format_price(12464) == "$124.64"
    assert engine.format_price(5) == "$0.05"


def test_config_hash_changes_with_values():
    assert _config().config_hash.startswith("sha256:")
    assert _config().config_hash == _config().config_hash
    assert _config(base_fee_cents=3000).config_hash != _config().config_hash


def test_build_config_reports_every_bad_key():
    values = {key: float(value) for key, (value, *_rest) in DEFAULT_SETTINGS.items()}
    values.pop("base_fee_cents")
    values["platform_fee_percent"] = -1
    values["per_minute_cents"] = 12.5

    with pytest.raises(ConfigurationError) as exc_info:
        build_pricing_config(values)

    fields = {error["field"] for error in exc_info.value.errors}
    assert fields == {"base_fee_cents", "platform_fee_percent", "per_minute_cents"}


def test_load_pricing_config_reads_settings_store(async_session_maker):
    async def _load():
        async with async_session_maker() as session:
            await settings_service.update_setting(session, "base_fee_cents", "3000")
            return await load_pricing_config(session)

    config = asyncio.run(_load())

    assert config.base_fee_cents == 3000
    assert config.modifier_percents["weekend"] == 20.0
    assert config.tier_discount_percent("gold") == 15.0
    assert config.tier_discount_percent("free") == 0.0


def test_load_pricing_config_rejects_malformed_row(async_session_maker):
    async def _load():
        async with async_session_maker() as session:
            setting = await session.get(Setting, "per_minute_cents")
            setting.value = "fifty"
            await session.commit()
            return await load_pricing_config(session)

    with pytest.raises(ConfigurationError) as exc_info:
        asyncio.run(_load())

    assert exc_info.value.errors[0]["field"] == "per_minute_cents"
