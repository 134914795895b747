"""
services/user/service.py
Profile store: per-role demographic and contact fields, self-service only.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from services.audit.service import AuditAction, record
from shared.exceptions import ForbiddenError
from shared.models.models import DonorProfile, PatientProfile, SponsorProfile, User, UserRole
from shared.policies.visibility import authorize
from shared.schemas.schemas import ProfileResponse, ProfileUpdateRequest
from shared.utils.text import sanitize_text

logger = logging.getLogger(__name__)

DEMOGRAPHIC_PROFILES = {
    UserRole.PATIENT: PatientProfile,
    UserRole.DONOR: DonorProfile,
    UserRole.SPONSOR: SponsorProfile,
}

PROFILE_FIELDS = tuple(ProfileUpdateRequest.model_fields)

_FREE_TEXT_FIELDS = {
    "full_name",
    "phone",
    "residential_address",
    "emergency_contact",
    "national_id",
    "health_insurance_number",
}


def _to_response(user: User, profile) -> ProfileResponse:
    data = {"user_id": user.id, "role": user.role}
    if profile is not None:
        data.update({f: getattr(profile, f) for f in PROFILE_FIELDS})
    return ProfileResponse.model_validate(data)


def _sanitize(updates: dict) -> dict:
    clean = {}
    for field, value in updates.items():
        if field in _FREE_TEXT_FIELDS and isinstance(value, str):
            value = sanitize_text(value) or None
        elif field == "email" and value is not None:
            value = str(value).strip().lower()
        clean[field] = value
    return clean


async def get_profile(db: AsyncSession, actor: User) -> ProfileResponse:
    authorize("user", "read", actor, actor)
    model = DEMOGRAPHIC_PROFILES.get(actor.role)
    profile = await db.get(model, actor.id) if model else None
    return _to_response(actor, profile)


async def update_profile(db: AsyncSession, actor: User, data: ProfileUpdateRequest) -> ProfileResponse:
    """Update only the fields present in the request. Hospitals and admins have no profile."""
    authorize("user", "write", actor, actor)
    model = DEMOGRAPHIC_PROFILES.get(actor.role)
    if model is None:
        raise ForbiddenError(f"{actor.role.value.capitalize()} accounts have no editable profile")

    profile = await db.get(model, actor.id)
    if profile is None:
        profile = model(user_id=actor.id)
        db.add(profile)

    updates = _sanitize(data.model_dump(exclude_unset=True))
    for field, value in updates.items():
        setattr(profile, field, value)
    await db.flush()

    if updates:
        await record(
            db,
            actor,
            AuditAction.PROFILE_UPDATED,
            target_user_id=actor.id,
            metadata={"fields": sorted(updates)},
        )
    logger.info(f"Profile updated for {actor.id}: {sorted(updates)}")
    return _to_response(actor, profile)
