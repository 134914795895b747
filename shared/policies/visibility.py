"""
shared/policies/visibility.py
Row-level authorization: who may read or write which rows, and which fields
are redacted for them.

Every rule is a plain function of (actor, row) so it can be tested without a
database. Services call `authorize()` for single rows and `case_list_filter()`
to push the case rule into SQL for list queries.

Actors and rows only need the attributes the rules read (id, role, approved;
patient_id, assigned_hospital_id, ...), so ORM objects and simple namespaces
both work.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, FrozenSet, Optional

from sqlalchemy import or_, true

from shared.exceptions import ForbiddenError
from shared.models.models import APPROVAL_REQUIRED_ROLES, Case, UserRole

CASE_FILE_FIELDS = frozenset({"lab_results_files", "medical_info_files"})


class Access(IntEnum):
    NONE = 0
    READ = 1
    WRITE = 2


@dataclass(frozen=True)
class Decision:
    access: Access
    redacted: FrozenSet[str] = field(default_factory=frozenset)
    reason: Optional[str] = None

    @property
    def can_read(self) -> bool:
        return self.access >= Access.READ

    @property
    def can_write(self) -> bool:
        return self.access >= Access.WRITE


DENY = Decision(Access.NONE)
READ_ALL = Decision(Access.READ)
WRITE_ALL = Decision(Access.WRITE)


def _same(a, b) -> bool:
    return a is not None and b is not None and str(a) == str(b)


def is_pending_approval(actor) -> bool:
    return actor.role in APPROVAL_REQUIRED_ROLES and not actor.approved


def ensure_approved(actor) -> None:
    """Hospitals and sponsors can do nothing until an admin approves them."""
    if is_pending_approval(actor):
        raise ForbiddenError(
            "Your account is pending admin approval",
            needs_approval=True,
        )


# ── Per-entity rules ──────────────────────────────────────────

def case_decision(actor, case) -> Decision:
    if is_pending_approval(actor):
        return Decision(Access.NONE, reason="pending approval")

    role = actor.role
    if role == UserRole.ADMIN:
        return WRITE_ALL

    if role == UserRole.PATIENT:
        if _same(case.patient_id, actor.id):
            return WRITE_ALL
        return Decision(Access.NONE, reason="not your case")

    if role == UserRole.HOSPITAL:
        if case.assigned_hospital_id is None:
            # Unassigned cases are open to every approved hospital, minus files
            return Decision(Access.WRITE, redacted=CASE_FILE_FIELDS)
        if _same(case.assigned_hospital_id, actor.id):
            return WRITE_ALL
        return Decision(Access.NONE, reason="case assigned to another hospital")

    if role == UserRole.DONOR:
        redacted = {"patient_id", "patient_name", "contributions"} | CASE_FILE_FIELDS
        if not _same(case.matched_donor_id, actor.id):
            redacted.add("matched_donor_id")
        return Decision(Access.READ, redacted=frozenset(redacted))

    if role == UserRole.SPONSOR:
        # Patient name stays visible to sponsors; donor identity never does.
        return Decision(
            Access.READ,
            redacted=frozenset({"matched_donor_id"} | CASE_FILE_FIELDS),
        )

    return DENY


def donor_record_decision(actor, record, entity: str = "donor_profile") -> Decision:
    """DonorProfile, DonorOrgan and EmergencyContact rows, keyed by donor_id/user_id."""
    owner_id = getattr(record, "donor_id", None) or getattr(record, "user_id", None)
    if actor.role == UserRole.DONOR and _same(owner_id, actor.id):
        return WRITE_ALL
    if actor.role == UserRole.ADMIN:
        return READ_ALL
    if (
        entity == "donor_organ"
        and actor.role == UserRole.HOSPITAL
        and not is_pending_approval(actor)
    ):
        return Decision(Access.READ, redacted=frozenset({"notes"}))
    return DENY


def donor_medical_info_decision(actor, record) -> Decision:
    """Raw medical info: the donor and admins only. Hospitals never see it."""
    if actor.role == UserRole.DONOR and _same(record.donor_id, actor.id):
        return WRITE_ALL
    if actor.role == UserRole.ADMIN:
        return READ_ALL
    return DENY


def contribution_decision(actor, contribution, case=None) -> Decision:
    if actor.role == UserRole.ADMIN:
        return READ_ALL
    if actor.role == UserRole.SPONSOR:
        if is_pending_approval(actor):
            return DENY
        return READ_ALL if _same(contribution.sponsor_id, actor.id) else DENY
    if case is not None and actor.role in (UserRole.PATIENT, UserRole.HOSPITAL):
        if case_decision(actor, case).can_read:
            return READ_ALL
    return DENY


def audit_log_decision(actor, entry=None) -> Decision:
    return READ_ALL if actor.role == UserRole.ADMIN else DENY


def user_decision(actor, user) -> Decision:
    """Self may edit profile fields; admins may read anyone and flip approval."""
    if actor.role == UserRole.ADMIN:
        return Decision(Access.WRITE, redacted=frozenset({"password_hash"}))
    if _same(user.id, actor.id):
        return Decision(Access.WRITE, redacted=frozenset({"password_hash"}))
    return DENY


POLICIES: Dict[str, Callable[..., Decision]] = {
    "case": case_decision,
    "donor_profile": lambda actor, row: donor_record_decision(actor, row, "donor_profile"),
    "donor_organ": lambda actor, row: donor_record_decision(actor, row, "donor_organ"),
    "emergency_contact": lambda actor, row: donor_record_decision(actor, row, "emergency_contact"),
    "donor_medical_info": donor_medical_info_decision,
    "funding_contribution": contribution_decision,
    "audit_log": audit_log_decision,
    "user": user_decision,
}


def decide(entity: str, actor, row=None, **context) -> Decision:
    """Evaluate the rule registered for `entity`. Unknown entities raise KeyError."""
    return POLICIES[entity](actor, row, **context)


def authorize(entity: str, action: str, actor, row=None, **context) -> Decision:
    """
    Like decide(), but raises ForbiddenError when `action` ("read"/"write")
    is not allowed. Pending hospitals/sponsors get the needs_approval flag.
    """
    if entity != "user":
        ensure_approved(actor)
    decision = decide(entity, actor, row, **context)
    allowed = decision.can_write if action == "write" else decision.can_read
    if not allowed:
        raise ForbiddenError(
            f"You do not have permission to {action} this {entity.replace('_', ' ')}"
        )
    return decision


# ── Query-level filter ────────────────────────────────────────

def case_list_filter(actor):
    """
    WHERE clause matching exactly the cases `case_decision` lets the actor read.
    Caller must ensure_approved() first.
    """
    if actor.role == UserRole.PATIENT:
        return Case.patient_id == actor.id
    if actor.role == UserRole.HOSPITAL:
        return or_(Case.assigned_hospital_id.is_(None), Case.assigned_hospital_id == actor.id)
    return true()


# ── Redaction ─────────────────────────────────────────────────

def redact(data: Dict[str, Any], decision: Decision) -> Dict[str, Any]:
    """Return a copy of `data` with the decision's redacted fields blanked."""
    if not decision.redacted:
        return dict(data)
    out = dict(data)
    for key in decision.redacted:
        if key not in out:
            continue
        if key in CASE_FILE_FIELDS or key == "contributions":
            out[key] = []
        else:
            out[key] = None
    return out
