"""
shared/utils/security.py
Access/refresh token handling and password hashing.
"""

import hashlib
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from config.settings import settings
from shared.exceptions import AuthenticationError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN_TYPE = "access"


# ── Access tokens ─────────────────────────────────────────────

def create_access_token(
    user_id: str,
    role: str,
    email: str,
    approved: bool = True,
) -> tuple[str, str]:
    """
    Sign a short-lived access token for an authenticated actor.

    The token carries the actor's id and role so routers can authorize
    without a lookup; `approved` is informational only, the current
    value is always re-read from the users table.

    Returns (token, jti). The jti is what logout deny-lists.
    """
    jti = str(uuid.uuid4())
    issued_at = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "approved": approved,
        "jti": jti,
        "type": ACCESS_TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM), jti


def decode_access_token(token: str) -> dict:
    """Verify signature, expiry and token type. Raises AuthenticationError."""
    try:
        claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise AuthenticationError("Access token expired")
    except JWTError:
        raise AuthenticationError("Invalid or expired token")

    if claims.get("type") != ACCESS_TOKEN_TYPE:
        raise AuthenticationError("Invalid token type")
    for claim in ("sub", "role", "jti"):
        if not claims.get(claim):
            raise AuthenticationError("Malformed token")
    return claims


def token_ttl_seconds(claims: dict) -> int:
    """Seconds left before the token expires; deny-list entries live this long."""
    remaining = claims.get("exp", 0) - datetime.now(timezone.utc).timestamp()
    return max(0, int(remaining))


# ── Refresh tokens ────────────────────────────────────────────

def new_refresh_token(now: Optional[datetime] = None) -> tuple[str, str, datetime]:
    """
    Returns (raw_token, token_hash, expires_at).
    The raw value goes to the client; only the hash is persisted.
    """
    raw_token = secrets.token_urlsafe(64)
    now = now or datetime.now(timezone.utc)
    return raw_token, hash_token(raw_token), now + timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


# ── Passwords ─────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


# ── Time ──────────────────────────────────────────────────────

def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
