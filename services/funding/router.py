"""
services/funding/router.py
Sponsor funding endpoints.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.funding import service as funding_service
from shared.middleware.auth import require_sponsor
from shared.models.models import User
from shared.schemas.schemas import ContributionRequest, ContributionResultResponse, SponsorStatsResponse

router = APIRouter(prefix="/sponsors", tags=["Sponsors"])


@router.post(
    "/contributions",
    response_model=ContributionResultResponse,
    status_code=status.HTTP_201_CREATED,
)
async def contribute(
    data: ContributionRequest,
    current_user: User = Depends(require_sponsor),
    db: AsyncSession = Depends(get_db),
):
    """
    Contribute toward a case. The case total is incremented atomically and
    the case becomes `funded` once the goal is met.
    """
    return await funding_service.contribute(db, current_user, data.case_id, data.amount)


@router.get("/me/stats", response_model=SponsorStatsResponse)
async def my_stats(
    current_user: User = Depends(require_sponsor),
    db: AsyncSession = Depends(get_db),
):
    """Lifetime totals plus the ten most recent contributions."""
    return await funding_service.get_sponsor_stats(db, current_user)
