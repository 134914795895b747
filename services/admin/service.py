"""
services/admin/service.py
Admin operations: approval queue, approvals, audit log reads, system stats.
"""

import logging
import uuid
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from services.audit.service import AuditAction, record
from shared.exceptions import ForbiddenError, NotFoundError
from shared.models.models import (
    APPROVAL_REQUIRED_ROLES,
    AuditLog,
    Case,
    CaseStatus,
    DonorProfile,
    FundingContribution,
    User,
    UserRole,
)
from shared.policies.visibility import authorize
from shared.schemas.schemas import AuditLogResponse, SystemStatsResponse, UserResponse

logger = logging.getLogger(__name__)


def _require_admin(actor: User) -> None:
    if actor.role != UserRole.ADMIN:
        raise ForbiddenError("Admin access required")


async def get_pending_approvals(db: AsyncSession, actor: User) -> List[UserResponse]:
    """Hospitals and sponsors waiting for approval, newest first."""
    _require_admin(actor)
    result = await db.execute(
        select(User)
        .where(User.role.in_(list(APPROVAL_REQUIRED_ROLES)), User.approved.is_(False))
        .order_by(User.created_at.desc())
    )
    return [UserResponse.model_validate(u) for u in result.scalars().all()]


async def approve_user(db: AsyncSession, actor: User, user_id: uuid.UUID) -> UserResponse:
    """Idempotent: approving an approved user returns it unchanged and logs nothing."""
    _require_admin(actor)
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    authorize("user", "write", actor, user)

    if not user.approved:
        user.approved = True
        await db.flush()
        await record(
            db,
            actor,
            AuditAction.USER_APPROVED,
            target_user_id=user.id,
            metadata={"approved_role": user.role.value, "email": user.email},
        )
        logger.info(f"Admin {actor.id} approved {user.role.value} {user.id}")
    return UserResponse.model_validate(user)


async def get_audit_logs(
    db: AsyncSession,
    actor: User,
    limit: Optional[int] = None,
    action: Optional[str] = None,
    user_id: Optional[uuid.UUID] = None,
    case_id: Optional[uuid.UUID] = None,
) -> List[AuditLogResponse]:
    """Newest entries first, joined with the acting user's name, email and role."""
    authorize("audit_log", "read", actor)
    query = (
        select(AuditLog, User.name, User.email)
        .outerjoin(User, User.id == AuditLog.user_id)
        .order_by(AuditLog.created_at.desc())
        .limit(limit or settings.AUDIT_LOG_DEFAULT_LIMIT)
    )
    if action:
        query = query.where(AuditLog.action == action.upper())
    if user_id:
        query = query.where(AuditLog.user_id == user_id)
    if case_id:
        query = query.where(AuditLog.case_id == case_id)

    result = await db.execute(query)
    return [
        AuditLogResponse(
            id=entry.id,
            user_id=entry.user_id,
            user_name=name,
            user_email=email,
            action=entry.action,
            role=entry.role,
            case_id=entry.case_id,
            target_user_id=entry.target_user_id,
            amount=entry.amount,
            donor_type=entry.donor_type,
            metadata=entry.audit_metadata,
            created_at=entry.created_at,
        )
        for entry, name, email in result.all()
    ]


async def get_system_stats(db: AsyncSession, actor: User) -> SystemStatsResponse:
    _require_admin(actor)

    users_by_role = {role.value: 0 for role in UserRole}
    for role, count in (await db.execute(select(User.role, func.count(User.id)).group_by(User.role))).all():
        users_by_role[UserRole(role).value] = count

    cases_by_status = {s.value: 0 for s in CaseStatus}
    for case_status, count in (
        await db.execute(select(Case.status, func.count(Case.id)).group_by(Case.status))
    ).all():
        cases_by_status[CaseStatus(case_status).value] = count

    donors_with_consent = await db.scalar(
        select(func.count(DonorProfile.user_id)).where(DonorProfile.consent_given.is_(True))
    )
    total_funding = await db.scalar(select(func.sum(FundingContribution.amount)))

    return SystemStatsResponse(
        total_users=sum(users_by_role.values()),
        users_by_role=users_by_role,
        total_cases=sum(cases_by_status.values()),
        cases_by_status=cases_by_status,
        donors_with_consent=donors_with_consent or 0,
        total_funding=Decimal(str(total_funding or 0)),
    )
