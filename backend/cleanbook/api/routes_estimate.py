from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from cleanbook.dependencies import get_pricing_config
from cleanbook.domain.bookings import service as booking_service
from cleanbook.domain.pricing import engine as pricing_engine
from cleanbook.domain.pricing.config_loader import PricingConfig
from cleanbook.domain.pricing.models import (
    EstimateRequest,
    EstimateResponse,
    JobTypeEstimateRequest,
    PricingBreakdown,
)
from cleanbook.infra.db import get_db_session

router = APIRouter()


@router.post("/v1/estimate", response_model=EstimateResponse)
async def create_estimate(
    request: EstimateRequest,
    session: AsyncSession = Depends(get_db_session),
    pricing_config: PricingConfig = Depends(get_pricing_config),
) -> EstimateResponse:
    return await booking_service.estimate(session, request, pricing_config)


@router.post("/v1/estimate/job-type", response_model=PricingBreakdown)
async def estimate_job_type(
    request: JobTypeEstimateRequest,
    pricing_config: PricingConfig = Depends(get_pricing_config),
) -> PricingBreakdown:
    return pricing_engine.estimate_price_by_job_type(
        request.job_type, request.member_tier, pricing_config, request.flags
    )
