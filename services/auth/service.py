"""
services/auth/service.py
Identity operations: sign-up, credential checks, approval lookups and the
refresh-token lifecycle. Routers handle cookies and HTTP details.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.redis_client import TokenDenyList
from config.settings import settings
from services.audit.service import AuditAction, record
from shared.exceptions import AuthenticationError, ConflictError, ForbiddenError, NotFoundError
from shared.models.models import (
    APPROVAL_REQUIRED_ROLES,
    DonorProfile,
    HospitalProfile,
    PatientProfile,
    RefreshToken,
    SponsorProfile,
    User,
    UserRole,
)
from shared.schemas.schemas import SignUpRequest
from shared.utils.security import (
    as_utc,
    create_access_token,
    hash_password,
    hash_token,
    new_refresh_token,
    token_ttl_seconds,
    verify_password,
)

logger = logging.getLogger(__name__)

PROFILE_MODELS = {
    UserRole.PATIENT: PatientProfile,
    UserRole.DONOR: DonorProfile,
    UserRole.HOSPITAL: HospitalProfile,
    UserRole.SPONSOR: SponsorProfile,
}


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


def _new_profile(user: User):
    model = PROFILE_MODELS.get(user.role)
    if model is None:
        return None
    if model is HospitalProfile:
        return HospitalProfile(user_id=user.id)
    return model(user_id=user.id, full_name=user.name, email=user.email)


def _email_taken() -> ConflictError:
    return ConflictError(
        "An account with this email already exists",
        errors={"email": "already registered"},
    )


async def create_user(
    db: AsyncSession,
    email: str,
    password: str,
    name: str,
    role: UserRole,
) -> User:
    """Insert the user and its role profile in the caller's transaction."""
    if await get_user_by_email(db, email):
        raise _email_taken()

    role = UserRole(role)
    user = User(
        email=email.strip().lower(),
        name=name,
        password_hash=hash_password(password),
        role=role,
        approved=role not in APPROVAL_REQUIRED_ROLES,
    )
    db.add(user)
    try:
        await db.flush()
    except IntegrityError as e:
        # lost a race with a concurrent sign-up for the same address
        raise _email_taken() from e

    profile = _new_profile(user)
    if profile is not None:
        db.add(profile)
        await db.flush()
    return user


async def sign_up(db: AsyncSession, data: SignUpRequest) -> User:
    user = await create_user(db, data.email, data.password, data.name, data.role)
    await record(
        db,
        user,
        AuditAction.USER_SIGNUP,
        metadata={"email": user.email, "approved": user.approved},
    )
    logger.info(f"User signed up: {user.id} role={user.role.value} approved={user.approved}")
    return user


async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    """
    Check credentials. Hospitals and sponsors still awaiting approval are
    refused with needs_approval so the client can explain why.
    """
    user = await get_user_by_email(db, email)
    if not user or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid email or password")
    if user.needs_approval:
        raise ForbiddenError(
            "Your account is pending admin approval",
            needs_approval=True,
        )
    return user


async def is_approved(db: AsyncSession, user_id: uuid.UUID) -> bool:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user.approved


# ── Tokens ────────────────────────────────────────────────────

async def issue_tokens(
    db: AsyncSession,
    user: User,
    user_agent: Optional[str] = None,
) -> tuple[str, str]:
    """Issue access + refresh tokens. Only the refresh token hash is stored."""
    access_token, _ = create_access_token(
        user_id=str(user.id),
        role=user.role.value,
        email=user.email,
        approved=user.approved,
    )

    raw_refresh, hashed_refresh, expires_at = new_refresh_token()
    db.add(
        RefreshToken(
            user_id=user.id,
            token_hash=hashed_refresh,
            expires_at=expires_at,
            user_agent=(user_agent or "")[:500] or None,
        )
    )
    await db.flush()
    return access_token, raw_refresh


async def rotate_refresh_token(
    db: AsyncSession,
    raw_token: str,
    user_agent: Optional[str] = None,
) -> tuple[User, str, str]:
    """Exchange a valid refresh token for a new pair; the old one is revoked."""
    result = await db.execute(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_token(raw_token),
            RefreshToken.is_revoked.is_(False),
        )
    )
    db_token = result.scalar_one_or_none()
    if not db_token:
        raise AuthenticationError("Invalid or revoked refresh token")
    if as_utc(db_token.expires_at) < datetime.now(timezone.utc):
        raise AuthenticationError("Refresh token expired")

    user = await db.get(User, db_token.user_id)
    if user is None:
        raise AuthenticationError("User not found")
    if user.needs_approval:
        raise ForbiddenError("Your account is pending admin approval", needs_approval=True)

    db_token.is_revoked = True
    access_token, raw_refresh = await issue_tokens(db, user, user_agent)
    return user, access_token, raw_refresh


async def sign_out(
    db: AsyncSession,
    deny_list: TokenDenyList,
    user: User,
    token_payload: dict,
    raw_refresh: Optional[str] = None,
) -> None:
    """Deny-list the access token until it expires and revoke the refresh token."""
    jti = token_payload.get("jti")
    if jti:
        await deny_list.revoke(jti, token_ttl_seconds(token_payload))

    if raw_refresh:
        result = await db.execute(
            select(RefreshToken).where(
                RefreshToken.token_hash == hash_token(raw_refresh),
                RefreshToken.user_id == user.id,
            )
        )
        db_token = result.scalar_one_or_none()
        if db_token:
            db_token.is_revoked = True

    await record(db, user, AuditAction.USER_SIGNOUT)


async def bootstrap_admin(db: AsyncSession) -> Optional[User]:
    """Create the configured admin account once. Admins cannot sign up publicly."""
    email = settings.BOOTSTRAP_ADMIN_EMAIL
    password = settings.BOOTSTRAP_ADMIN_PASSWORD
    if not email or not password:
        return None
    existing = await get_user_by_email(db, email)
    if existing:
        return existing
    admin = await create_user(db, email, password, settings.BOOTSTRAP_ADMIN_NAME, UserRole.ADMIN)
    admin.approved = True
    logger.info(f"Bootstrapped admin account {admin.email}")
    return admin
