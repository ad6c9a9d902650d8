"""
Authentication Endpoints.

Provides password login, logout and the current account profile.
Second-factor login and 2FA management live in two_factor.py.
"""
import logging
from typing import Dict

from fastapi import APIRouter, Depends, Request, status

from ..models import (
    LoginRequest,
    LoginResponse,
    SessionInfo,
    UserResponse,
    ErrorResponse,
)
from ..deps import (
    get_db,
    get_authenticator,
    get_current_user,
    get_security_events,
    client_context,
    auth_rate_limit,
    api_rate_limit,
)
from ...auth.authenticator import CredentialAuthenticator, IssuedSession, TWO_FACTOR_REQUIRED
from ...auth.errors import AuthenticationFailure
from ...auth.security_log import SecurityEventLogger, LOW
from ...database.account_db import AccountDB

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


def session_info(session: IssuedSession) -> SessionInfo:
    return SessionInfo(
        access_token=session.access_token,
        token_type="bearer",
        expires_in=session.expires_in,
        account=session.account,
    )


@router.post(
    "/login",
    response_model=LoginResponse,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse, "description": "Missing or malformed fields"},
        401: {"model": ErrorResponse, "description": "Invalid credentials"},
        429: {"model": ErrorResponse, "description": "Too many login attempts"},
    },
    dependencies=[Depends(auth_rate_limit)],
)
async def login(
    credentials: LoginRequest,
    request: Request,
    authenticator: CredentialAuthenticator = Depends(get_authenticator),
    events: SecurityEventLogger = Depends(get_security_events),
):
    """
    Authenticate with email and password.

    Returns a session, or ``two_factor_required`` when the account has 2FA
    enabled. In that case, continue with POST /2fa/login-verify.
    """
    ip, user_agent = client_context(request)

    try:
        result = authenticator.login(credentials.email, credentials.password)
    except AuthenticationFailure:
        events.log_login_attempt(ip, user_agent, success=False, reason="password")
        raise

    if result.status == TWO_FACTOR_REQUIRED:
        events.log_event("TWO_FACTOR_REQUIRED", LOW, ip, user_agent, result.account_id)
        return LoginResponse(status=TWO_FACTOR_REQUIRED)

    events.log_login_attempt(ip, user_agent, success=True, account_id=result.account_id)
    logger.info(f"Account logged in: {result.account_id}")

    return LoginResponse(status=result.status, session=session_info(result.session))


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(api_rate_limit)],
)
async def logout(
    user: Dict = Depends(get_current_user),
    db: AccountDB = Depends(get_db),
):
    """
    Logout current session.

    Invalidates the current access token.
    """
    token = user.get("_session_token")
    if token:
        db.invalidate_session(token)
    logger.info(f"Account logged out: {user['id']}")

    return None


@router.get("/me", response_model=UserResponse, dependencies=[Depends(api_rate_limit)])
async def get_current_user_profile(user: Dict = Depends(get_current_user)):
    """
    Get current account profile.
    """
    return UserResponse(
        id=str(user["id"]),
        email=user["email"],
        name=user["name"],
        role=user["role"],
        two_factor_enabled=user["two_factor_enabled"],
        created_at=user["created_at"],
        last_login=user["last_login"],
    )
