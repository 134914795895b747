"""
services/donor/service.py
Donor registration subsystem: consent state, medical info, organ offers and
emergency contacts. Organ selection is always full-replace.

Consent: no_consent ⇄ consent_given(donor_type). Giving consent requires the
type-specific data (see validation.consent_requirements); withdrawing is
unconditional while can_withdraw holds and keeps the medical data.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from services.audit.service import AuditAction, record
from services.donor.validation import (
    consent_requirements,
    medical_history_advisory,
    parse_organs,
    validate_deceased_registration,
    validate_living_registration,
)
from shared.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from shared.models.models import (
    BloodType,
    ContactType,
    DonorMedicalInfo,
    DonorOrgan,
    DonorProfile,
    DonorType,
    EmergencyContact,
    Gender,
    Organ,
    OrganStatus,
    User,
    UserRole,
)
from shared.policies.visibility import authorize, ensure_approved
from shared.schemas.schemas import (
    AvailableOrganResponse,
    ConsentRequest,
    DeceasedDonorRegistrationRequest,
    DonorOrganResponse,
    DonorProfileResponse,
    EmergencyContactCreate,
    EmergencyContactResponse,
    LivingDonorRegistrationRequest,
    OrganSelectionRequest,
    RegistrationResultResponse,
    RegistrationStatusResponse,
)
from shared.utils.text import sanitize_text

logger = logging.getLogger(__name__)


# ── Loaders ───────────────────────────────────────────────────

async def get_or_create_profile(db: AsyncSession, actor: User) -> DonorProfile:
    if actor.role != UserRole.DONOR:
        raise ForbiddenError("Only donors have a donor profile")
    profile = await db.get(DonorProfile, actor.id)
    if profile is None:
        profile = DonorProfile(user_id=actor.id, full_name=actor.name, email=actor.email)
        db.add(profile)
        await db.flush()
        await db.refresh(profile)
    authorize("donor_profile", "write", actor, profile)
    return profile


async def _medical_info(db: AsyncSession, donor_id: uuid.UUID) -> Optional[DonorMedicalInfo]:
    result = await db.execute(select(DonorMedicalInfo).where(DonorMedicalInfo.donor_id == donor_id))
    return result.scalar_one_or_none()


async def _organs(db: AsyncSession, donor_id: uuid.UUID) -> List[DonorOrgan]:
    result = await db.execute(
        select(DonorOrgan).where(DonorOrgan.donor_id == donor_id).order_by(DonorOrgan.organ_name)
    )
    return list(result.scalars().all())


async def _primary_contact(db: AsyncSession, donor_id: uuid.UUID) -> Optional[EmergencyContact]:
    result = await db.execute(
        select(EmergencyContact)
        .where(EmergencyContact.donor_id == donor_id, EmergencyContact.is_primary.is_(True))
        .order_by(EmergencyContact.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def _profile_response(profile: DonorProfile) -> DonorProfileResponse:
    return DonorProfileResponse.model_validate(profile)


# ── Consent ───────────────────────────────────────────────────

async def get_donor_profile(db: AsyncSession, actor: User) -> DonorProfileResponse:
    return _profile_response(await get_or_create_profile(db, actor))


def _ensure_type_change_allowed(profile: DonorProfile, donor_type: DonorType) -> None:
    if profile.consent_given and profile.donor_type not in (None, donor_type):
        raise ConflictError(
            "Withdraw consent before changing donor type",
            errors={"donorType": "consent already given as " + profile.donor_type.value},
        )


async def _give_consent(db: AsyncSession, actor: User, profile: DonorProfile) -> None:
    if profile.consent_given:
        return
    profile.consent_given = True
    profile.consent_date = datetime.now(timezone.utc)
    await db.flush()
    await record(
        db,
        actor,
        AuditAction.CONSENT_GIVEN,
        target_user_id=actor.id,
        donor_type=profile.donor_type,
    )


async def withdraw_consent(db: AsyncSession, actor: User) -> DonorProfileResponse:
    """Idempotent: withdrawing when no consent is recorded is a no-op."""
    profile = await get_or_create_profile(db, actor)
    if not profile.consent_given:
        return _profile_response(profile)
    if not profile.can_withdraw:
        raise ConflictError("Consent can no longer be withdrawn for this donor")

    profile.consent_given = False
    profile.consent_date = None
    await db.flush()
    await record(
        db,
        actor,
        AuditAction.CONSENT_WITHDRAWN,
        target_user_id=actor.id,
        donor_type=profile.donor_type,
    )
    logger.info(f"Donor {actor.id} withdrew consent")
    return _profile_response(profile)


async def set_consent(db: AsyncSession, actor: User, data: ConsentRequest) -> DonorProfileResponse:
    """Give or withdraw consent, optionally setting donor_type in the same call."""
    profile = await get_or_create_profile(db, actor)

    if not data.consent_given:
        return await withdraw_consent(db, actor)

    if data.donor_type is not None:
        donor_type = DonorType(data.donor_type)
        _ensure_type_change_allowed(profile, donor_type)
        profile.donor_type = donor_type

    medical = await _medical_info(db, actor.id)
    organs = [o.organ_name for o in await _organs(db, actor.id)]
    primary = await _primary_contact(db, actor.id)
    errors = consent_requirements(profile.donor_type, medical, organs, primary)
    if errors:
        raise ValidationError("Consent requirements are not met", errors=errors)

    if profile.donor_type == DonorType.LIVING and medical is not None:
        advisory = medical_history_advisory(medical.medical_history)
        if advisory:
            logger.info(f"Donor {actor.id}: {advisory}")

    await _give_consent(db, actor, profile)
    return _profile_response(profile)


# ── Registration ──────────────────────────────────────────────

async def _replace_organs(
    db: AsyncSession,
    donor_id: uuid.UUID,
    organs: List[Organ],
    living: bool,
) -> List[DonorOrgan]:
    """Delete every organ row for the donor, then insert the new selection."""
    await db.execute(delete(DonorOrgan).where(DonorOrgan.donor_id == donor_id))
    rows = [
        DonorOrgan(
            donor_id=donor_id,
            organ_name=organ,
            is_living_donation=living,
            status=OrganStatus.AVAILABLE,
        )
        for organ in organs
    ]
    db.add_all(rows)
    try:
        await db.flush()
    except IntegrityError as e:
        raise ValidationError(
            "Organ selection violates donation rules",
            errors={"organs": "invalid organ selection"},
        ) from e
    return rows


async def _upsert_medical_info(db: AsyncSession, donor_id: uuid.UUID, **fields) -> DonorMedicalInfo:
    info = await _medical_info(db, donor_id)
    if info is None:
        info = DonorMedicalInfo(donor_id=donor_id)
        db.add(info)
    for key, value in fields.items():
        setattr(info, key, value)
    await db.flush()
    return info


async def _registration_result(db: AsyncSession, profile: DonorProfile) -> RegistrationResultResponse:
    organs = await _organs(db, profile.user_id)
    return RegistrationResultResponse(
        profile=_profile_response(profile),
        organs=[DonorOrganResponse.model_validate(o) for o in organs],
    )


async def register_living_donor(
    db: AsyncSession,
    actor: User,
    data: LivingDonorRegistrationRequest,
) -> RegistrationResultResponse:
    errors = validate_living_registration(data)
    if errors:
        raise ValidationError("Please correct the registration form", errors=errors)

    profile = await get_or_create_profile(db, actor)
    organs, _ = parse_organs(data.organs, living=True)

    _ensure_type_change_allowed(profile, DonorType.LIVING)
    profile.donor_type = DonorType.LIVING
    await _upsert_medical_info(
        db,
        actor.id,
        blood_type=BloodType(data.blood_type),
        age=data.age,
        gender=Gender(data.gender),
        allergies=sanitize_text(data.allergies),
        medical_conditions=sanitize_text(data.medical_conditions),
        medical_history=sanitize_text(data.medical_history),
        has_recent_tests=data.has_recent_tests,
        recent_tests_description=sanitize_text(data.recent_tests_description),
    )
    await _replace_organs(db, actor.id, organs, living=True)

    advisory = medical_history_advisory(data.medical_history)
    if advisory:
        logger.info(f"Donor {actor.id}: {advisory}")

    await record(
        db,
        actor,
        AuditAction.DONOR_REGISTERED,
        target_user_id=actor.id,
        donor_type=DonorType.LIVING,
        metadata={"organs": [o.value for o in organs]},
    )
    await _give_consent(db, actor, profile)
    return await _registration_result(db, profile)


async def register_deceased_donor(
    db: AsyncSession,
    actor: User,
    data: DeceasedDonorRegistrationRequest,
) -> RegistrationResultResponse:
    errors = validate_deceased_registration(data)
    if errors:
        raise ValidationError("Please correct the registration form", errors=errors)

    profile = await get_or_create_profile(db, actor)
    organs, _ = parse_organs(data.organs, living=False)

    _ensure_type_change_allowed(profile, DonorType.DECEASED)
    profile.donor_type = DonorType.DECEASED
    conditions = sanitize_text(data.medical_conditions)
    await _upsert_medical_info(
        db,
        actor.id,
        blood_type=BloodType(data.blood_type),
        medical_conditions=conditions,
        medical_history=conditions,
        allergies=sanitize_text(data.allergies),
    )
    await _replace_organs(db, actor.id, organs, living=False)

    # The registration form's contact becomes the single primary contact
    await db.execute(
        delete(EmergencyContact).where(
            EmergencyContact.donor_id == actor.id,
            EmergencyContact.is_primary.is_(True),
        )
    )
    db.add(
        EmergencyContact(
            donor_id=actor.id,
            contact_type=ContactType.NEXT_OF_KIN,
            full_name=sanitize_text(data.emergency_contact_name),
            relationship=sanitize_text(data.emergency_contact_relationship),
            phone=sanitize_text(data.emergency_contact_phone),
            email=str(data.emergency_contact_email).lower() if data.emergency_contact_email else None,
            is_primary=True,
        )
    )
    await db.flush()

    await record(
        db,
        actor,
        AuditAction.DONOR_REGISTERED,
        target_user_id=actor.id,
        donor_type=DonorType.DECEASED,
        metadata={"organs": [o.value for o in organs]},
    )
    await _give_consent(db, actor, profile)
    return await _registration_result(db, profile)


async def update_organs(
    db: AsyncSession,
    actor: User,
    data: OrganSelectionRequest,
) -> List[DonorOrganResponse]:
    """
    Replace the donor's organ selection. Living donations are limited to
    kidney, partial liver, bone marrow and blood.
    """
    profile = await get_or_create_profile(db, actor)
    living = (
        data.is_living_donation
        if data.is_living_donation is not None
        else profile.donor_type == DonorType.LIVING
    )
    if profile.consent_given and profile.donor_type == DonorType.LIVING and not living:
        raise ValidationError(
            "Living donors can only offer living donations",
            errors={"isLivingDonation": "must be true for a consenting living donor"},
        )

    organs, errors = parse_organs(data.organs, living=living)
    if errors:
        raise ValidationError("Invalid organ selection", errors=errors)

    rows = await _replace_organs(db, actor.id, organs, living=living)
    await record(
        db,
        actor,
        AuditAction.DONOR_ORGANS_UPDATED,
        target_user_id=actor.id,
        donor_type=profile.donor_type,
        metadata={"organs": [o.value for o in organs], "living": living},
    )
    return [DonorOrganResponse.model_validate(r) for r in rows]


async def get_registration_status(db: AsyncSession, actor: User) -> RegistrationStatusResponse:
    profile = await get_or_create_profile(db, actor)
    organs = await _organs(db, actor.id)
    contacts = await db.scalar(
        select(func.count(EmergencyContact.id)).where(EmergencyContact.donor_id == actor.id)
    )
    has_medical = await _medical_info(db, actor.id) is not None
    return RegistrationStatusResponse(
        donor_type=profile.donor_type,
        consent_given=profile.consent_given,
        consent_date=profile.consent_date,
        has_medical_info=has_medical,
        organs=[o.organ_name.value for o in organs],
        emergency_contacts_count=contacts or 0,
        is_registered=profile.donor_type is not None and profile.consent_given and bool(organs),
    )


# ── Emergency contacts ────────────────────────────────────────

async def list_emergency_contacts(db: AsyncSession, actor: User) -> List[EmergencyContactResponse]:
    await get_or_create_profile(db, actor)
    result = await db.execute(
        select(EmergencyContact)
        .where(EmergencyContact.donor_id == actor.id)
        .order_by(EmergencyContact.is_primary.desc(), EmergencyContact.created_at)
    )
    return [EmergencyContactResponse.model_validate(c) for c in result.scalars().all()]


async def add_emergency_contact(
    db: AsyncSession,
    actor: User,
    data: EmergencyContactCreate,
) -> EmergencyContactResponse:
    """A new primary contact demotes the previous one."""
    await get_or_create_profile(db, actor)
    if data.is_primary:
        await db.execute(
            update(EmergencyContact)
            .where(EmergencyContact.donor_id == actor.id, EmergencyContact.is_primary.is_(True))
            .values(is_primary=False)
            .execution_options(synchronize_session="fetch")
        )

    contact = EmergencyContact(
        donor_id=actor.id,
        contact_type=ContactType(data.contact_type),
        full_name=sanitize_text(data.full_name),
        relationship=sanitize_text(data.relationship),
        phone=sanitize_text(data.phone),
        email=str(data.email).lower() if data.email else None,
        address=sanitize_text(data.address),
        is_primary=data.is_primary,
    )
    db.add(contact)
    await db.flush()
    await db.refresh(contact)

    await record(
        db,
        actor,
        AuditAction.EMERGENCY_CONTACT_ADDED,
        target_user_id=actor.id,
        metadata={"contact_id": contact.id, "is_primary": contact.is_primary},
    )
    return EmergencyContactResponse.model_validate(contact)


async def delete_emergency_contact(db: AsyncSession, actor: User, contact_id: uuid.UUID) -> None:
    profile = await get_or_create_profile(db, actor)
    contact = await db.get(EmergencyContact, contact_id)
    if contact is None:
        raise NotFoundError("Emergency contact not found")
    authorize("emergency_contact", "write", actor, contact)

    if (
        contact.is_primary
        and profile.consent_given
        and profile.donor_type == DonorType.DECEASED
    ):
        raise ConflictError(
            "Withdraw consent before removing your primary emergency contact",
            errors={"emergencyContact": "required while deceased-donor consent is active"},
        )

    await db.delete(contact)
    await db.flush()
    await record(
        db,
        actor,
        AuditAction.EMERGENCY_CONTACT_REMOVED,
        target_user_id=actor.id,
        metadata={"contact_id": contact_id},
    )


# ── Hospital view ─────────────────────────────────────────────

async def list_available_organs(
    db: AsyncSession,
    actor: User,
    organ: Optional[Organ] = None,
) -> List[AvailableOrganResponse]:
    """Available organs of consenting donors. Medical info is never joined in."""
    if actor.role not in (UserRole.HOSPITAL, UserRole.ADMIN):
        raise ForbiddenError("Only hospitals and admins can browse available organs")
    ensure_approved(actor)

    query = (
        select(DonorOrgan, DonorProfile.donor_type)
        .join(DonorProfile, DonorProfile.user_id == DonorOrgan.donor_id)
        .where(
            DonorOrgan.status == OrganStatus.AVAILABLE,
            DonorProfile.consent_given.is_(True),
        )
        .order_by(DonorOrgan.organ_name, DonorOrgan.created_at)
    )
    if organ is not None:
        query = query.where(DonorOrgan.organ_name == Organ(organ))

    result = await db.execute(query)
    out = []
    for row, donor_type in result.all():
        authorize("donor_organ", "read", actor, row)
        out.append(
            AvailableOrganResponse(
                id=row.id,
                donor_id=row.donor_id,
                organ_name=row.organ_name,
                is_living_donation=row.is_living_donation,
                donor_type=donor_type,
                status=row.status,
            )
        )
    return out
