"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
JWT is validated here; row-level rules live in shared/policies/visibility.py.
"""

import uuid
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import TokenDenyList, get_redis
from shared.exceptions import AuthenticationError, ForbiddenError
from shared.models.models import User, UserRole
from shared.policies.visibility import ensure_approved
from shared.utils.security import decode_access_token

security = HTTPBearer(auto_error=False)


class TokenData:
    """Verified access-token claims for the current request."""

    def __init__(self, payload: dict):
        try:
            self.user_id = uuid.UUID(payload["sub"])
            self.role = UserRole(payload["role"])
        except ValueError:
            raise AuthenticationError("Malformed token")
        self.email: Optional[str] = payload.get("email")
        self.jti: str = payload["jti"]
        self.payload = payload


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate the bearer token.
    Tokens deny-listed at logout are rejected until they would have expired anyway.
    """
    if not credentials:
        raise AuthenticationError("Authentication required")

    token_data = TokenData(decode_access_token(credentials.credentials))

    if await TokenDenyList(redis).is_revoked(token_data.jti):
        raise AuthenticationError("Token has been revoked")

    return token_data


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await db.get(User, token_data.user_id)
    if user is None:
        raise AuthenticationError("User not found")
    if user.role != token_data.role:
        raise AuthenticationError("Invalid or expired token")
    return user


async def get_approved_user(
    current_user: User = Depends(get_current_user),
) -> User:
    """Hospitals and sponsors must be approved by an admin before doing anything."""
    ensure_approved(current_user)
    return current_user


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        current_user: User = Depends(get_approved_user),
    ) -> User:
        if current_user.role not in self.roles:
            raise ForbiddenError(
                f"Required role: {[r.value for r in self.roles]}",
            )
        return current_user


# Convenience role dependencies
require_patient = RoleRequired(UserRole.PATIENT)
require_donor = RoleRequired(UserRole.DONOR)
require_sponsor = RoleRequired(UserRole.SPONSOR)
require_hospital_or_admin = RoleRequired(UserRole.HOSPITAL, UserRole.ADMIN)
require_admin = RoleRequired(UserRole.ADMIN)
