"""
services/user/router.py
Profile management for the signed-in user.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.user import service as profile_service
from shared.middleware.auth import get_current_user
from shared.models.models import User
from shared.schemas.schemas import ProfileResponse, ProfileUpdateRequest

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me/profile", response_model=ProfileResponse)
async def get_my_profile(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Return the role-specific profile of the current user."""
    return await profile_service.get_profile(db, current_user)


@router.put("/me/profile", response_model=ProfileResponse)
async def update_my_profile(
    data: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Update demographic/contact fields. Only fields present in the body change;
    HTML is stripped from free text.
    """
    return await profile_service.update_profile(db, current_user, data)
