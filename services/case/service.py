"""
services/case/service.py
Case operations: create, list, get, role-dependent update and file linkage.
Every read goes through the visibility rules and comes back redacted for
the viewer; every write validates the status lifecycle centrally.
"""

import logging
import uuid
from typing import Dict, List, Optional

from pydantic.alias_generators import to_camel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from services.audit.service import AuditAction, record
from services.case.state_machine import (
    funding_shortfall,
    status_after_funding,
    status_after_match,
    validate_transition,
)
from shared.exceptions import ForbiddenError, NotFoundError, ValidationError
from shared.models.models import Case, CaseStatus, UrgencyLevel, User, UserRole
from shared.policies.visibility import Decision, authorize, case_decision, case_list_filter, ensure_approved, redact
from shared.schemas.schemas import (
    CaseCreateRequest,
    CaseFilesAttachRequest,
    CaseResponse,
    CaseUpdateRequest,
    FileReference,
    UploadSlotRequest,
    UploadSlotResponse,
)
from shared.utils.storage import FileCategory, upload_slot, validate_file_reference
from shared.utils.text import sanitize_text

logger = logging.getLogger(__name__)

PATIENT_FIELDS = frozenset({
    "organ_needed",
    "urgency_level",
    "notes",
    "blood_type",
    "patient_age",
    "latest_lab_results",
    "chronic_illnesses",
    "additional_medical_info",
})

EDITABLE_FIELDS: Dict[UserRole, frozenset] = {
    UserRole.PATIENT: PATIENT_FIELDS,
    UserRole.HOSPITAL: frozenset({"status", "assigned_hospital_id", "matched_donor_id"}),
    UserRole.ADMIN: frozenset({"status", "assigned_hospital_id", "matched_donor_id", "funding_goal"}),
}

_TEXT_FIELDS = {"organ_needed", "notes", "latest_lab_results", "chronic_illnesses", "additional_medical_info"}

_CASE_COLUMNS = (
    "id",
    "patient_id",
    "organ_needed",
    "urgency_level",
    "notes",
    "status",
    "assigned_hospital_id",
    "matched_donor_id",
    "funding_goal",
    "funding_amount",
    "blood_type",
    "patient_age",
    "latest_lab_results",
    "chronic_illnesses",
    "additional_medical_info",
    "lab_results_files",
    "medical_info_files",
    "created_at",
    "updated_at",
)


# ── Helpers ───────────────────────────────────────────────────

def serialize_case(case: Case, patient_name: Optional[str], decision: Decision) -> CaseResponse:
    """Build the viewer-specific representation of a case."""
    data = {col: getattr(case, col) for col in _CASE_COLUMNS}
    data["patient_name"] = patient_name
    data["lab_results_files"] = list(case.lab_results_files or [])
    data["medical_info_files"] = list(case.medical_info_files or [])
    return CaseResponse.model_validate(redact(data, decision))


async def load_case(db: AsyncSession, case_id: uuid.UUID) -> Case:
    case = await db.get(Case, case_id)
    if case is None:
        raise NotFoundError("Case not found")
    return case


async def _patient_name(db: AsyncSession, case: Case) -> Optional[str]:
    return await db.scalar(select(User.name).where(User.id == case.patient_id))


def _file_dicts(
    files: List[FileReference],
    owner_id,
    case_id=None,
    category: Optional[FileCategory] = None,
    field: str = "files",
) -> List[dict]:
    errors = {}
    out = []
    for i, ref in enumerate(files):
        item = ref.model_dump()
        for key, msg in validate_file_reference(item, owner_id, case_id, category).items():
            errors[f"{field}[{i}].{key}"] = msg
        out.append(item)
    if errors:
        raise ValidationError("Invalid file reference", errors=errors)
    return out


async def _require_user_with_role(db: AsyncSession, user_id: uuid.UUID, role: UserRole, field: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError(f"{role.value.capitalize()} not found", errors={field: "unknown user"})
    if user.role != role:
        raise ValidationError(
            f"Referenced user is not a {role.value}",
            errors={field: f"must reference a {role.value}"},
        )
    return user


# ── Operations ────────────────────────────────────────────────

async def create_case(db: AsyncSession, actor: User, data: CaseCreateRequest) -> CaseResponse:
    """
    Patients open cases for themselves. The case row and any file references
    are written in the same transaction.
    """
    if actor.role != UserRole.PATIENT:
        raise ForbiddenError("Only patients can create cases")

    organ_needed = sanitize_text(data.organ_needed)
    if not organ_needed:
        raise ValidationError("Organ needed is required", errors={"organNeeded": "required"})

    lab_files = _file_dicts(data.lab_results_files, actor.id, field="labResultsFiles")
    medical_files = _file_dicts(data.medical_info_files, actor.id, field="medicalInfoFiles")

    case = Case(
        id=uuid.uuid4(),
        patient_id=actor.id,
        organ_needed=organ_needed,
        urgency_level=UrgencyLevel(data.urgency_level),
        notes=sanitize_text(data.notes),
        status=CaseStatus.WAITING,
        blood_type=data.blood_type,
        patient_age=data.patient_age,
        latest_lab_results=sanitize_text(data.latest_lab_results),
        chronic_illnesses=sanitize_text(data.chronic_illnesses),
        additional_medical_info=sanitize_text(data.additional_medical_info),
        lab_results_files=lab_files,
        medical_info_files=medical_files,
    )
    db.add(case)
    await db.flush()
    await db.refresh(case)

    await record(
        db,
        actor,
        AuditAction.CASE_CREATED,
        case_id=case.id,
        metadata={
            "organ_needed": case.organ_needed,
            "urgency_level": case.urgency_level.value,
            "files": len(lab_files) + len(medical_files),
        },
    )
    logger.info(f"Case {case.id} created by patient {actor.id}")
    return serialize_case(case, actor.name, case_decision(actor, case))


async def list_cases(
    db: AsyncSession,
    actor: User,
    status: Optional[CaseStatus] = None,
    urgency_level: Optional[UrgencyLevel] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[CaseResponse]:
    """Cases visible to the actor, newest first, redacted per row."""
    ensure_approved(actor)
    query = (
        select(Case, User.name)
        .join(User, User.id == Case.patient_id)
        .where(case_list_filter(actor))
        .order_by(Case.created_at.desc(), Case.id)
        .limit(limit)
        .offset(offset)
    )
    if status:
        query = query.where(Case.status == CaseStatus(status))
    if urgency_level:
        query = query.where(Case.urgency_level == UrgencyLevel(urgency_level))

    result = await db.execute(query)
    responses = []
    for case, patient_name in result.all():
        decision = case_decision(actor, case)
        if decision.can_read:
            responses.append(serialize_case(case, patient_name, decision))
    return responses


async def get_case(db: AsyncSession, actor: User, case_id: uuid.UUID) -> CaseResponse:
    case = await load_case(db, case_id)
    decision = authorize("case", "read", actor, case)
    return serialize_case(case, await _patient_name(db, case), decision)


async def update_case(
    db: AsyncSession,
    actor: User,
    case_id: uuid.UUID,
    data: CaseUpdateRequest,
) -> CaseResponse:
    """
    Apply a role-dependent partial update.

    patient  - medical fields and notes on their own case
    hospital - assign itself, set the matched donor, advance status
    admin    - status, assignment, matched donor, funding goal

    Sending a field the role may not set is Forbidden; nothing is applied.
    """
    case = await load_case(db, case_id)
    authorize("case", "write", actor, case)

    updates = data.model_dump(exclude_unset=True)
    allowed = EDITABLE_FIELDS.get(actor.role, frozenset())
    denied = sorted(set(updates) - allowed)
    if denied:
        raise ForbiddenError(
            f"{actor.role.value.capitalize()} cannot update: {', '.join(denied)}",
            errors={to_camel(f): "not editable by your role" for f in denied},
        )

    original_status = case.status
    new_status = original_status
    changed = {}

    for field in PATIENT_FIELDS & set(updates):
        value = updates[field]
        if field in _TEXT_FIELDS:
            value = sanitize_text(value)
        if field == "organ_needed" and not value:
            raise ValidationError("Organ needed is required", errors={"organNeeded": "required"})
        if field == "urgency_level" and value is None:
            raise ValidationError("Urgency level is required", errors={"urgencyLevel": "required"})
        setattr(case, field, value)
        changed[field] = value

    if "assigned_hospital_id" in updates:
        hospital_id = updates["assigned_hospital_id"]
        if actor.role == UserRole.HOSPITAL and hospital_id not in (None, actor.id):
            raise ForbiddenError(
                "Hospitals can only assign cases to themselves",
                errors={"assignedHospitalId": "must be your own id"},
            )
        if hospital_id is not None and not (actor.role == UserRole.HOSPITAL and hospital_id == actor.id):
            hospital = await _require_user_with_role(db, hospital_id, UserRole.HOSPITAL, "assignedHospitalId")
            if not hospital.approved:
                raise ValidationError(
                    "Hospital is not approved",
                    errors={"assignedHospitalId": "hospital pending approval"},
                )
        case.assigned_hospital_id = hospital_id
        changed["assigned_hospital_id"] = hospital_id

    if "matched_donor_id" in updates:
        donor_id = updates["matched_donor_id"]
        if donor_id is not None:
            await _require_user_with_role(db, donor_id, UserRole.DONOR, "matchedDonorId")
            new_status = status_after_match(original_status)
        case.matched_donor_id = donor_id
        changed["matched_donor_id"] = donor_id

    if "funding_goal" in updates:
        goal = updates["funding_goal"]
        if goal is None:
            raise ValidationError("Funding goal cannot be empty", errors={"fundingGoal": "required"})
        case.funding_goal = goal
        changed["funding_goal"] = goal
        new_status = status_after_funding(new_status, case.funding_amount, goal)

    shortfall = None
    requested = updates.get("status")
    if requested is not None and CaseStatus(requested) != original_status:
        requested = CaseStatus(requested)
        validate_transition(original_status, requested, actor.role)
        new_status = requested
        if requested == CaseStatus.FUNDED:
            shortfall = funding_shortfall(case.funding_amount, case.funding_goal)
            if shortfall is not None:
                logger.warning(
                    f"Case {case.id} marked funded by {actor.role.value} {actor.id} "
                    f"with {shortfall} still outstanding"
                )

    if new_status != original_status:
        case.status = new_status
        changed["status"] = new_status.value

    await db.flush()
    await db.refresh(case)

    if changed:
        await record(
            db,
            actor,
            AuditAction.CASE_UPDATED,
            case_id=case.id,
            metadata={"fields": sorted(changed)},
        )
    if new_status != original_status:
        meta = {"from": original_status.value, "to": new_status.value}
        if shortfall is not None:
            meta["funding_shortfall"] = str(shortfall)
        await record(db, actor, AuditAction.CASE_STATUS_CHANGED, case_id=case.id, metadata=meta)
        logger.info(f"Case {case.id} status {original_status.value} -> {new_status.value}")

    return serialize_case(case, await _patient_name(db, case), case_decision(actor, case))


async def attach_case_files(
    db: AsyncSession,
    actor: User,
    case_id: uuid.UUID,
    data: CaseFilesAttachRequest,
) -> CaseResponse:
    """Append uploaded file references to one of the case's file lists. Owner only."""
    case = await load_case(db, case_id)
    authorize("case", "write", actor, case)
    if actor.role != UserRole.PATIENT:
        raise ForbiddenError("Only the patient who owns the case can attach files")

    category = FileCategory(data.category)
    new_files = _file_dicts(data.files, case.patient_id, case.id, category)
    column = category.column
    setattr(case, column, [*(getattr(case, column) or []), *new_files])
    await db.flush()
    await db.refresh(case)

    await record(
        db,
        actor,
        AuditAction.CASE_FILES_ATTACHED,
        case_id=case.id,
        metadata={"category": category.value, "files": [f["name"] for f in new_files]},
    )
    return serialize_case(case, actor.name, case_decision(actor, case))


async def reserve_upload_slot(
    db: AsyncSession,
    actor: User,
    case_id: uuid.UUID,
    data: UploadSlotRequest,
) -> UploadSlotResponse:
    """Object key for a new upload; the reference is linked later via attach_case_files."""
    case = await load_case(db, case_id)
    authorize("case", "write", actor, case)
    if actor.role != UserRole.PATIENT:
        raise ForbiddenError("Only the patient who owns the case can upload files")
    return UploadSlotResponse(**upload_slot(case.patient_id, case.id, data.category, data.filename))
