"""
services/case/state_machine.py
Case status lifecycle: waiting → matched → funded → transplanted.

waiting → funded is also legal: a case can be fully sponsored before a donor
is matched. There are no backward transitions and no cancellation state.
"""

from decimal import Decimal
from typing import Dict, FrozenSet, Optional

from shared.exceptions import ConflictError, ForbiddenError
from shared.models.models import CaseStatus, UserRole

TRANSITIONS: Dict[CaseStatus, FrozenSet[CaseStatus]] = {
    CaseStatus.WAITING: frozenset({CaseStatus.MATCHED, CaseStatus.FUNDED}),
    CaseStatus.MATCHED: frozenset({CaseStatus.FUNDED, CaseStatus.TRANSPLANTED}),
    CaseStatus.FUNDED: frozenset({CaseStatus.TRANSPLANTED}),
    CaseStatus.TRANSPLANTED: frozenset(),
}

STATUS_CHANGER_ROLES = frozenset({UserRole.HOSPITAL, UserRole.ADMIN})

# Statuses the funding trigger may flip to funded
FUNDABLE_STATUSES = frozenset({CaseStatus.WAITING, CaseStatus.MATCHED})


def can_transition(current: CaseStatus, target: CaseStatus) -> bool:
    return CaseStatus(target) in TRANSITIONS[CaseStatus(current)]


def validate_transition(current: CaseStatus, target: CaseStatus, role: UserRole) -> bool:
    """
    Check a manual status change.
    Returns False for a no-op (same status), True for a legal change;
    raises ForbiddenError for roles that may not change status and
    ConflictError for illegal transitions.
    """
    current, target = CaseStatus(current), CaseStatus(target)
    if role not in STATUS_CHANGER_ROLES:
        raise ForbiddenError("Only hospitals and admins can change case status")
    if current == target:
        return False
    if not can_transition(current, target):
        raise ConflictError(
            f"Cannot move case from {current.value} to {target.value}",
            errors={"status": f"allowed from {current.value}: "
                    + (", ".join(sorted(s.value for s in TRANSITIONS[current])) or "none")},
        )
    return True


def status_after_match(current: CaseStatus) -> CaseStatus:
    """Assigning a matched donor moves a waiting case to matched; later states stay."""
    current = CaseStatus(current)
    return CaseStatus.MATCHED if current == CaseStatus.WAITING else current


def reaches_goal(funding_amount: Decimal, funding_goal: Decimal) -> bool:
    return funding_goal > 0 and funding_amount >= funding_goal


def status_after_funding(current: CaseStatus, funding_amount: Decimal, funding_goal: Decimal) -> CaseStatus:
    """Python mirror of the SQL CASE expression the funding ledger runs."""
    current = CaseStatus(current)
    if current in FUNDABLE_STATUSES and reaches_goal(funding_amount, funding_goal):
        return CaseStatus.FUNDED
    return current


def funding_shortfall(funding_amount: Decimal, funding_goal: Decimal) -> Optional[Decimal]:
    """Amount still missing when a case is marked funded by hand; None if met."""
    if reaches_goal(funding_amount, funding_goal):
        return None
    return max(Decimal("0"), Decimal(funding_goal) - Decimal(funding_amount))
