"""
services/case/router.py
Transplant case endpoints.
States: WAITING → MATCHED → FUNDED → TRANSPLANTED (WAITING → FUNDED also allowed)
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.case import service as case_service
from services.funding import service as funding_service
from shared.middleware.auth import get_approved_user, require_patient
from shared.models.models import CaseStatus, UrgencyLevel, User
from shared.schemas.schemas import (
    CaseCreateRequest,
    CaseFilesAttachRequest,
    CaseResponse,
    CaseUpdateRequest,
    ContributionResponse,
    UploadSlotRequest,
    UploadSlotResponse,
)

router = APIRouter(prefix="/cases", tags=["Cases"])


@router.post("", response_model=CaseResponse, status_code=status.HTTP_201_CREATED)
async def create_case(
    data: CaseCreateRequest,
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    """Open a new case. Starts in `waiting` with no funding."""
    return await case_service.create_case(db, current_user, data)


@router.get("", response_model=List[CaseResponse])
async def list_cases(
    status_filter: Optional[CaseStatus] = Query(None, alias="status"),
    urgency_level: Optional[UrgencyLevel] = Query(None, alias="urgencyLevel"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_approved_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Cases visible to the caller:
    patients see their own, hospitals see unassigned and their own,
    donors/sponsors/admins see all (donors without patient identity).
    """
    return await case_service.list_cases(
        db, current_user, status_filter, urgency_level, limit=limit, offset=offset
    )


@router.get("/{case_id}", response_model=CaseResponse)
async def get_case(
    case_id: UUID,
    current_user: User = Depends(get_approved_user),
    db: AsyncSession = Depends(get_db),
):
    return await case_service.get_case(db, current_user, case_id)


@router.patch("/{case_id}", response_model=CaseResponse)
async def update_case(
    case_id: UUID,
    data: CaseUpdateRequest,
    current_user: User = Depends(get_approved_user),
    db: AsyncSession = Depends(get_db),
):
    """Partial update; the allowed fields depend on the caller's role."""
    return await case_service.update_case(db, current_user, case_id, data)


@router.post("/{case_id}/files", response_model=CaseResponse)
async def attach_case_files(
    case_id: UUID,
    data: CaseFilesAttachRequest,
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    """Link already-uploaded file references to the case."""
    return await case_service.attach_case_files(db, current_user, case_id, data)


@router.post("/{case_id}/files/upload-slot", response_model=UploadSlotResponse)
async def reserve_upload_slot(
    case_id: UUID,
    data: UploadSlotRequest,
    current_user: User = Depends(require_patient),
    db: AsyncSession = Depends(get_db),
):
    return await case_service.reserve_upload_slot(db, current_user, case_id, data)


@router.get("/{case_id}/contributions", response_model=List[ContributionResponse])
async def list_case_contributions(
    case_id: UUID,
    current_user: User = Depends(get_approved_user),
    db: AsyncSession = Depends(get_db),
):
    """Funding history of a case, filtered to what the caller may see."""
    return await funding_service.list_case_contributions(db, current_user, case_id)
