"""
services/audit/service.py
Append-only audit trail. Writes are best-effort: a failed insert is logged
and reported through AuditOutcome, never raised into the business operation.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AuditLog, DonorType

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    USER_SIGNUP = "USER_SIGNUP"
    USER_SIGNIN = "USER_SIGNIN"
    USER_SIGNOUT = "USER_SIGNOUT"
    USER_APPROVED = "USER_APPROVED"
    PROFILE_UPDATED = "PROFILE_UPDATED"
    CASE_CREATED = "CASE_CREATED"
    CASE_UPDATED = "CASE_UPDATED"
    CASE_STATUS_CHANGED = "CASE_STATUS_CHANGED"
    CASE_FILES_ATTACHED = "CASE_FILES_ATTACHED"
    CASE_FUNDED = "CASE_FUNDED"
    CONSENT_GIVEN = "CONSENT_GIVEN"
    CONSENT_WITHDRAWN = "CONSENT_WITHDRAWN"
    DONOR_REGISTERED = "DONOR_REGISTERED"
    DONOR_ORGANS_UPDATED = "DONOR_ORGANS_UPDATED"
    EMERGENCY_CONTACT_ADDED = "EMERGENCY_CONTACT_ADDED"
    EMERGENCY_CONTACT_REMOVED = "EMERGENCY_CONTACT_REMOVED"


@dataclass(frozen=True)
class AuditOutcome:
    written: bool
    entry_id: Optional[uuid.UUID] = None
    error: Optional[str] = None


def _jsonable(metadata: Optional[Dict[str, Any]]) -> Optional[dict]:
    if not metadata:
        return None
    return json.loads(json.dumps(metadata, default=str))


def _build_entry(
    actor,
    action: AuditAction,
    case_id=None,
    target_user_id=None,
    amount: Optional[Decimal] = None,
    donor_type: Optional[DonorType] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    return AuditLog(
        user_id=actor.id if actor is not None else None,
        role=actor.role if actor is not None else None,
        action=AuditAction(action).value,
        case_id=case_id,
        target_user_id=target_user_id,
        amount=amount,
        donor_type=donor_type,
        audit_metadata=_jsonable(metadata),
    )


async def record(
    db: AsyncSession,
    actor,
    action: AuditAction,
    *,
    case_id=None,
    target_user_id=None,
    amount: Optional[Decimal] = None,
    donor_type: Optional[DonorType] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditOutcome:
    """
    Append an audit entry inside a SAVEPOINT on the caller's transaction.

    The entry commits or rolls back with the business change it describes.
    If the insert itself fails only the savepoint is rolled back.
    """
    try:
        async with db.begin_nested():
            entry = _build_entry(
                actor,
                action,
                case_id=case_id,
                target_user_id=target_user_id,
                amount=amount,
                donor_type=donor_type,
                metadata=metadata,
            )
            db.add(entry)
        return AuditOutcome(written=True, entry_id=entry.id)
    except Exception as e:
        logger.exception(
            f"Audit write failed: action={getattr(action, 'value', action)} "
            f"user={getattr(actor, 'id', None)}"
        )
        return AuditOutcome(written=False, error=str(e))
