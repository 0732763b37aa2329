import asyncio

import pytest

from cleanbook.domain.errors import ConfigurationError, ConflictError, NotFoundError, ValidationError
from cleanbook.domain.settings_store import service as settings_service
from cleanbook.domain.settings_store.db_models import Setting


@pytest.mark.parametrize(
    ("raw", "value_type", "expected"),
    [
        ("2.5", "number", 2.5),
        ("true", "boolean", True),
        ("false", "boolean", False),
        ('{"a": [1, 2]}', "json", {"a": [1, 2]}),
        ("hello", "string", "hello"),
    ],
)
def test_parse_value(raw, value_type, expected):
    assert settings_service.parse_value(raw, value_type) == expected


@pytest.mark.parametrize(
    ("raw", "value_type"),
    [("abc", "number"), ("nan", "number"), ("inf", "number"), ("yes", "boolean"), ("{", "json")],
)
def test_validate_value_rejects(raw, value_type):
    with pytest.raises(ValidationError):
        settings_service.validate_value(raw, value_type)


def test_defaults_are_seeded_once(async_session_maker):
    async def _run():
        async with async_session_maker() as session:
            again = await settings_service.ensure_default_settings(session)
            pricing = await settings_service.get_category(session, "pricing")
            return again, pricing

    again, pricing = asyncio.run(_run())

    assert again == 0
    assert pricing["base_fee_cents"] == 2500.0
    assert pricing["platform_fee_percent"] == 15.0


def test_update_setting_validates_type_and_sign(async_session_maker):
    async def _run():
        async with async_session_maker() as session:
            updated = await settings_service.update_setting(session, "base_fee_cents", "3000")
            with pytest.raises(ValidationError):
                await settings_service.update_setting(session, "base_fee_cents", "thirty")
            with pytest.raises(ValidationError):
                await settings_service.update_setting(session, "platform_fee_percent", "-1")
            with pytest.raises(NotFoundError):
                await settings_service.update_setting(session, "no_such_key", "1")
            return updated, await settings_service.get_setting(session, "base_fee_cents")

    updated, value = asyncio.run(_run())

    assert updated.value == "3000"
    assert value == 3000.0


def test_create_setting_conflict(async_session_maker):
    async def _run():
        async with async_session_maker() as session:
            created = await settings_service.create_setting(
                session, "support_email", "help@example.com", category="general"
            )
            with pytest.raises(ConflictError):
                await settings_service.create_setting(session, "support_email", "other@example.com")
            with pytest.raises(ValidationError):
                await settings_service.create_setting(session, "odd", "1", value_type="decimal")
            return created

    created = asyncio.run(_run())

    assert settings_service.to_response(created).value == "help@example.com"


def test_malformed_stored_value_raises_configuration_error(async_session_maker):
    async def _run():
        async with async_session_maker() as session:
            session.add(Setting(key="broken_number", value="oops", value_type="number", category="general"))
            await session.commit()
            await settings_service.get_setting(session, "broken_number")

    with pytest.raises(ConfigurationError) as excinfo:
        asyncio.run(_run())

    assert excinfo.value.errors[0]["field"] == "broken_number"
