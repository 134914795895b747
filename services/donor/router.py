"""
services/donor/router.py
Donor self-service (consent, registration, organs, emergency contacts) and
the hospital-facing organ availability list.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.donor import service as donor_service
from shared.middleware.auth import require_donor, require_hospital_or_admin
from shared.models.models import Organ, User
from shared.schemas.schemas import (
    AvailableOrganResponse,
    ConsentRequest,
    DeceasedDonorRegistrationRequest,
    DonorOrganResponse,
    DonorProfileResponse,
    EmergencyContactCreate,
    EmergencyContactResponse,
    LivingDonorRegistrationRequest,
    MessageResponse,
    OrganSelectionRequest,
    RegistrationResultResponse,
    RegistrationStatusResponse,
)

router = APIRouter(prefix="/donors", tags=["Donors"])


@router.get("/me", response_model=DonorProfileResponse)
async def get_my_donor_profile(
    current_user: User = Depends(require_donor),
    db: AsyncSession = Depends(get_db),
):
    return await donor_service.get_donor_profile(db, current_user)


@router.put("/me/consent", response_model=DonorProfileResponse)
async def set_consent(
    data: ConsentRequest,
    current_user: User = Depends(require_donor),
    db: AsyncSession = Depends(get_db),
):
    """
    Give consent (requires donor type and its registration data) or withdraw
    it. Withdrawing twice is not an error.
    """
    return await donor_service.set_consent(db, current_user, data)


@router.post(
    "/me/register/living",
    response_model=RegistrationResultResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_living(
    data: LivingDonorRegistrationRequest,
    current_user: User = Depends(require_donor),
    db: AsyncSession = Depends(get_db),
):
    return await donor_service.register_living_donor(db, current_user, data)


@router.post(
    "/me/register/deceased",
    response_model=RegistrationResultResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register_deceased(
    data: DeceasedDonorRegistrationRequest,
    current_user: User = Depends(require_donor),
    db: AsyncSession = Depends(get_db),
):
    return await donor_service.register_deceased_donor(db, current_user, data)


@router.get("/me/registration", response_model=RegistrationStatusResponse)
async def registration_status(
    current_user: User = Depends(require_donor),
    db: AsyncSession = Depends(get_db),
):
    return await donor_service.get_registration_status(db, current_user)


@router.put("/me/organs", response_model=List[DonorOrganResponse])
async def replace_organs(
    data: OrganSelectionRequest,
    current_user: User = Depends(require_donor),
    db: AsyncSession = Depends(get_db),
):
    """Replace the whole organ selection; previous rows are removed."""
    return await donor_service.update_organs(db, current_user, data)


# ── Emergency contacts ─────────────────────────────────────────

@router.get("/me/emergency-contacts", response_model=List[EmergencyContactResponse])
async def list_emergency_contacts(
    current_user: User = Depends(require_donor),
    db: AsyncSession = Depends(get_db),
):
    return await donor_service.list_emergency_contacts(db, current_user)


@router.post(
    "/me/emergency-contacts",
    response_model=EmergencyContactResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_emergency_contact(
    data: EmergencyContactCreate,
    current_user: User = Depends(require_donor),
    db: AsyncSession = Depends(get_db),
):
    return await donor_service.add_emergency_contact(db, current_user, data)


@router.delete("/me/emergency-contacts/{contact_id}", response_model=MessageResponse)
async def delete_emergency_contact(
    contact_id: UUID,
    current_user: User = Depends(require_donor),
    db: AsyncSession = Depends(get_db),
):
    await donor_service.delete_emergency_contact(db, current_user, contact_id)
    return MessageResponse(message="Emergency contact removed")


# ── Hospital view ──────────────────────────────────────────────

@router.get("/organs/available", response_model=List[AvailableOrganResponse])
async def available_organs(
    organ: Optional[Organ] = Query(None),
    current_user: User = Depends(require_hospital_or_admin),
    db: AsyncSession = Depends(get_db),
):
    """Organs offered by consenting donors. No medical information is included."""
    return await donor_service.list_available_organs(db, current_user, organ)
