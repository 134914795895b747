"""
services/funding/service.py
Funding ledger. Contributions are append-only; each one bumps the case's
funding_amount with a single UPDATE (no read-modify-write in Python) and
flips a waiting/matched case to funded once the goal is reached.
"""

import logging
import uuid
from decimal import Decimal, InvalidOperation
from typing import List

from sqlalchemy import and_, case as sql_case, func, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.audit.service import AuditAction, record
from services.case.service import load_case, serialize_case
from services.case.state_machine import FUNDABLE_STATUSES
from shared.exceptions import ForbiddenError, NotFoundError, ValidationError
from shared.models.models import Case, CaseStatus, FundingContribution, SponsorProfile, User, UserRole
from shared.policies.visibility import authorize, case_decision, contribution_decision, ensure_approved
from shared.schemas.schemas import (
    ContributionResponse,
    ContributionResultResponse,
    SponsorContributionItem,
    SponsorStatsResponse,
)

logger = logging.getLogger(__name__)

RECENT_CONTRIBUTIONS = 10


def _validate_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Amount must be a number", errors={"amount": "must be a number"})
    if not value.is_finite() or value <= 0:
        raise ValidationError("Amount must be greater than 0", errors={"amount": "must be greater than 0"})
    return value


def _funding_update(case_id: uuid.UUID, amount: Decimal):
    """
    UPDATE cases SET funding_amount = funding_amount + :amount,
                     status = CASE WHEN <goal reached> THEN 'funded' ELSE status END
    Column references on the right-hand side see the pre-update row.
    """
    new_total = Case.funding_amount + amount
    reaches_goal = and_(
        Case.funding_goal > 0,
        new_total >= Case.funding_goal,
        Case.status.in_(list(FUNDABLE_STATUSES)),
    )
    funded = literal(CaseStatus.FUNDED, type_=Case.__table__.c.status.type)
    return (
        update(Case)
        .where(Case.id == case_id)
        .values(
            funding_amount=new_total,
            status=sql_case((reaches_goal, funded), else_=Case.status),
            updated_at=func.now(),
        )
        .returning(Case.funding_amount, Case.status)
        .execution_options(synchronize_session=False)
    )


async def contribute(
    db: AsyncSession,
    actor: User,
    case_id: uuid.UUID,
    amount,
) -> ContributionResultResponse:
    """
    Record a sponsor contribution.

    Runs inside the caller's transaction: the case increment, the ledger row,
    the sponsor totals and the audit entry commit together or not at all.
    """
    amount = _validate_amount(amount)
    if actor.role != UserRole.SPONSOR:
        raise ForbiddenError("Only sponsors can contribute funding")
    ensure_approved(actor)

    # Row lock (no-op on SQLite, where BEGIN IMMEDIATE already serializes writers)
    prior = (
        await db.execute(
            select(Case.status).where(Case.id == case_id).with_for_update()
        )
    ).one_or_none()
    if prior is None:
        raise NotFoundError("Case not found", errors={"caseId": "unknown case"})
    prior_status = CaseStatus(prior.status)

    new_amount, new_status = (await db.execute(_funding_update(case_id, amount))).one()
    new_status = CaseStatus(new_status)

    contribution = FundingContribution(case_id=case_id, sponsor_id=actor.id, amount=amount)
    db.add(contribution)

    sponsor_update = await db.execute(
        update(SponsorProfile)
        .where(SponsorProfile.user_id == actor.id)
        .values(
            total_funded=SponsorProfile.total_funded + amount,
            funded_count=SponsorProfile.funded_count + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if sponsor_update.rowcount == 0:
        db.add(SponsorProfile(user_id=actor.id, total_funded=amount, funded_count=1))
    await db.flush()
    await db.refresh(contribution)

    became_funded = prior_status != CaseStatus.FUNDED and new_status == CaseStatus.FUNDED
    await record(
        db,
        actor,
        AuditAction.CASE_FUNDED,
        case_id=case_id,
        amount=amount,
        metadata={
            "funding_amount": str(new_amount),
            "status": new_status.value,
            "goal_reached": became_funded,
        },
    )
    if became_funded:
        logger.info(f"Case {case_id} reached its funding goal")

    case = await db.get(Case, case_id, populate_existing=True)
    patient_name = await db.scalar(select(User.name).where(User.id == case.patient_id))
    return ContributionResultResponse(
        contribution=ContributionResponse.model_validate(contribution),
        case=serialize_case(case, patient_name, case_decision(actor, case)),
    )


async def list_case_contributions(
    db: AsyncSession,
    actor: User,
    case_id: uuid.UUID,
) -> List[ContributionResponse]:
    """Owner patient, hospitals with access and admins see all; sponsors see their own."""
    case = await load_case(db, case_id)
    if actor.role == UserRole.DONOR:
        raise ForbiddenError("Donors cannot view case funding")
    authorize("case", "read", actor, case)

    result = await db.execute(
        select(FundingContribution)
        .where(FundingContribution.case_id == case_id)
        .order_by(FundingContribution.created_at.desc())
    )
    return [
        ContributionResponse.model_validate(c)
        for c in result.scalars().all()
        if contribution_decision(actor, c, case).can_read
    ]


async def get_sponsor_stats(db: AsyncSession, actor: User) -> SponsorStatsResponse:
    if actor.role != UserRole.SPONSOR:
        raise ForbiddenError("Only sponsors have funding statistics")
    ensure_approved(actor)

    profile = await db.get(SponsorProfile, actor.id)
    result = await db.execute(
        select(FundingContribution, Case.organ_needed, Case.status)
        .join(Case, Case.id == FundingContribution.case_id)
        .where(FundingContribution.sponsor_id == actor.id)
        .order_by(FundingContribution.created_at.desc())
        .limit(RECENT_CONTRIBUTIONS)
    )
    recent = [
        SponsorContributionItem(
            id=c.id,
            case_id=c.case_id,
            organ_needed=organ_needed,
            case_status=case_status,
            amount=c.amount,
            created_at=c.created_at,
        )
        for c, organ_needed, case_status in result.all()
    ]
    return SponsorStatsResponse(
        total_funded=profile.total_funded if profile else Decimal("0"),
        funded_count=profile.funded_count if profile else 0,
        recent_contributions=recent,
    )
