from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.dependencies import Actor, require_admin
from cleanbook.domain.availability import service as availability_service
from cleanbook.domain.matching import service as matching_service
from cleanbook.domain.matching.schemas import DailyAvailability, MatchingRequest, MatchingResponse
from cleanbook.domain.settings_store import service as settings_service
from cleanbook.domain.settings_store.schemas import SettingResponse, SettingUpdateRequest
from cleanbook.infra.db import get_db_session

router = APIRouter(prefix="/v1/admin")


@router.get("/settings", response_model=list[SettingResponse])
async def list_settings(
    category: str | None = Query(None, min_length=1),
    session: AsyncSession = Depends(get_db_session),
    _admin: Actor = Depends(require_admin),
) -> list[SettingResponse]:
    settings_rows = await settings_service.get_all(session)
    return [
        settings_service.to_response(setting)
        for setting in settings_rows
        if category is None or setting.category == category
    ]


@router.put("/settings/{key}", response_model=SettingResponse)
async def update_setting(
    key: str,
    request: SettingUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    _admin: Actor = Depends(require_admin),
) -> SettingResponse:
    setting = await settings_service.update_setting(session, key, request.value)
    return settings_service.to_response(setting)


@router.post("/matching", response_model=MatchingResponse)
async def rank_cleaners(
    request: MatchingRequest,
    session: AsyncSession = Depends(get_db_session),
    _admin: Actor = Depends(require_admin),
) -> MatchingResponse:
    criteria = matching_service.MatchingCriteria(
        zone_id=request.zone_id,
        target_date=request.scheduled_date,
        start_time=request.scheduled_time,
        duration_minutes=request.duration_minutes,
        preferred_cleaner_id=request.preferred_cleaner_id,
    )
    matches = await matching_service.find_best_cleaner(session, criteria)
    best = next((match for match in matches if match.is_available), None)
    return MatchingResponse(
        best_cleaner_id=best.cleaner.cleaner_id if best else None,
        candidates=[matching_service.match_to_response(match) for match in matches],
    )


@router.get("/cleaners/{cleaner_id}/slots", response_model=list[str])
async def cleaner_slots(
    cleaner_id: str,
    target_date: date = Query(..., alias="date"),
    duration_minutes: int = Query(120, gt=0, le=24 * 60),
    session: AsyncSession = Depends(get_db_session),
    _admin: Actor = Depends(require_admin),
) -> list[str]:
    return await availability_service.get_available_time_slots(session, cleaner_id, target_date, duration_minutes)


@router.get("/cleaners/{cleaner_id}/availability", response_model=list[DailyAvailability])
async def cleaner_availability_summary(
    cleaner_id: str,
    days: int = Query(7, ge=1, le=31),
    duration_minutes: int | None = Query(None, gt=0, le=24 * 60),
    session: AsyncSession = Depends(get_db_session),
    _admin: Actor = Depends(require_admin),
) -> list[DailyAvailability]:
    summary = await matching_service.get_cleaner_availability_summary(
        session, cleaner_id, days=days, duration_minutes=duration_minutes
    )
    return [DailyAvailability(day=entry["date"], available_slots=entry["available_slots"]) for entry in summary]
