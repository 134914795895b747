"""
services/auth/router.py
Email/password authentication endpoints.
Implements: Sign-up → Sign-in → JWT issue → Refresh → Logout
"""

from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import TokenDenyList, get_redis
from config.settings import settings
from services.audit.service import AuditAction, record
from services.auth import service as auth_service
from shared.exceptions import AuthenticationError
from shared.middleware.auth import TokenData, get_current_user, get_token_data
from shared.models.models import User
from shared.schemas.schemas import (
    MessageResponse,
    RefreshRequest,
    SignInRequest,
    SignUpRequest,
    TokenResponse,
    UserResponse,
)

router = APIRouter(prefix="/auth", tags=["Authentication"])


# ── Helper ────────────────────────────────────────────────────

def _token_response(user: User, access_token: str, raw_refresh: str, response: Response) -> TokenResponse:
    """Set the refresh cookie (web clients) and build the JSON body (all clients)."""
    response.set_cookie(
        key="refresh_token",
        value=raw_refresh,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        max_age=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 86400,
        path="/auth",
    )
    return TokenResponse(
        access_token=access_token,
        refresh_token=raw_refresh,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


# ── Endpoints ─────────────────────────────────────────────────

@router.post(
    "/signup",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an account",
)
async def signup(
    data: SignUpRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Creates the user and its role profile. Patients and donors are approved
    immediately; hospitals and sponsors wait for an admin.
    """
    user = await auth_service.sign_up(db, data)
    return UserResponse.model_validate(user)


@router.post("/signin", response_model=TokenResponse, summary="Sign in")
async def signin(
    data: SignInRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    user = await auth_service.authenticate(db, data.email, data.password)
    access_token, raw_refresh = await auth_service.issue_tokens(
        db, user, request.headers.get("user-agent")
    )
    await record(db, user, AuditAction.USER_SIGNIN)
    return _token_response(user, access_token, raw_refresh, response)


@router.post("/refresh", response_model=TokenResponse, summary="Refresh access token")
async def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a new token pair from a valid refresh token (body or cookie).
    Implements refresh token rotation: the old token is revoked.
    """
    raw_token = (body.refresh_token if body else None) or refresh_token_cookie
    if not raw_token:
        raise AuthenticationError("Refresh token required")

    user, access_token, raw_refresh = await auth_service.rotate_refresh_token(
        db, raw_token, request.headers.get("user-agent")
    )
    return _token_response(user, access_token, raw_refresh, response)


@router.post("/logout", response_model=MessageResponse, summary="Logout user")
async def logout(
    response: Response,
    body: Optional[RefreshRequest] = None,
    refresh_token_cookie: Optional[str] = Cookie(None, alias="refresh_token"),
    token_data: TokenData = Depends(get_token_data),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Revoke the refresh token and deny-list the access token in Redis."""
    raw_refresh = (body.refresh_token if body else None) or refresh_token_cookie
    await auth_service.sign_out(
        db, TokenDenyList(redis), current_user, token_data.payload, raw_refresh
    )
    response.delete_cookie(key="refresh_token", path="/auth")
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse, summary="Get current user")
async def get_me(current_user: User = Depends(get_current_user)):
    """Returns the authenticated user, including approval state."""
    return UserResponse.model_validate(current_user)
