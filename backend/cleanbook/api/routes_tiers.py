from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.dependencies import ROLE_MEMBER, Actor, get_actor, require_admin
from cleanbook.domain.pricing.models import MemberTier
from cleanbook.domain.tiers import service as tier_service
from cleanbook.domain.tiers.schemas import MemberTierResponse, TierFeatures, TierUpdateRequest
from cleanbook.infra.db import get_db_session

router = APIRouter()


@router.get("/v1/tiers", response_model=dict[MemberTier, TierFeatures])
async def list_tiers(session: AsyncSession = Depends(get_db_session)) -> dict[MemberTier, TierFeatures]:
    return await tier_service.get_all_tier_features(session)


@router.get("/v1/members/{member_id}/tier", response_model=MemberTierResponse)
async def get_member_tier(
    member_id: str,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_actor),
) -> MemberTierResponse:
    if not actor.is_admin and not (actor.role == ROLE_MEMBER and actor.actor_id == member_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed to view this member")
    tier = await tier_service.get_member_tier(session, member_id)
    return MemberTierResponse(
        member_id=member_id,
        tier=tier,
        features=await tier_service.get_tier_features(session, tier),
        recommendation=await tier_service.recommend_tier(session, member_id),
        savings=await tier_service.calculate_tier_savings(session, member_id),
    )


@router.put("/v1/admin/members/{member_id}/tier", response_model=TierFeatures)
async def change_member_tier(
    member_id: str,
    request: TierUpdateRequest,
    session: AsyncSession = Depends(get_db_session),
    admin: Actor = Depends(require_admin),
) -> TierFeatures:
    member = await tier_service.update_member_tier(session, member_id, request.tier, actor_id=admin.actor_id)
    return await tier_service.get_tier_features(session, member.tier)
