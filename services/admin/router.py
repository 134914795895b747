"""
services/admin/router.py
Admin-only endpoints: hospital/sponsor approval queue, platform statistics,
and the read-only audit log.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.admin import service as admin_service
from shared.middleware.auth import require_admin
from shared.models.models import User
from shared.schemas.schemas import AuditLogResponse, SystemStatsResponse, UserResponse

router = APIRouter(prefix="/admin", tags=["Admin"])


# ── Approval Queue ─────────────────────────────────────────────

@router.get("/approvals/pending", response_model=List[UserResponse])
async def get_pending_approvals(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Hospitals and sponsors awaiting approval, newest first."""
    return await admin_service.get_pending_approvals(db, current_user)


@router.post("/users/{user_id}/approve", response_model=UserResponse)
async def approve_user(
    user_id: UUID,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Approve a hospital or sponsor. Approving twice is harmless."""
    return await admin_service.approve_user(db, current_user, user_id)


# ── Analytics ──────────────────────────────────────────────────

@router.get("/stats", response_model=SystemStatsResponse)
async def get_stats(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Users by role, cases by status, consenting donors, total funding."""
    return await admin_service.get_system_stats(db, current_user)


# ── Audit Log ──────────────────────────────────────────────────

@router.get("/audit-logs", response_model=List[AuditLogResponse])
async def get_audit_logs(
    limit: int = Query(100, ge=1, le=500),
    action: Optional[str] = Query(None, description="Filter by action tag e.g. CASE_FUNDED"),
    user_id: Optional[UUID] = Query(None, alias="userId"),
    case_id: Optional[UUID] = Query(None, alias="caseId"),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Append-only audit trail, newest first."""
    return await admin_service.get_audit_logs(
        db, current_user, limit=limit, action=action, user_id=user_id, case_id=case_id
    )
