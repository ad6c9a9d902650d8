"""
Account Self-Service Endpoints.

Profile updates and password changes for the signed-in account.
"""
import logging
from typing import Dict

from fastapi import APIRouter, Depends, Request

from ..models import (
    ErrorResponse,
    PasswordChangeRequest,
    ProfileUpdateRequest,
    SuccessResponse,
    UserResponse,
)
from ..deps import get_db, get_current_user, get_security_events, client_context, api_rate_limit
from ...auth.errors import InputError
from ...auth.security_log import SecurityEventLogger, MEDIUM
from ...database.account_db import (
    AccountDB,
    MAX_PASSWORD_BYTES,
    hash_password,
    password_too_long,
    verify_password,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/user", tags=["Account"], dependencies=[Depends(api_rate_limit)])


@router.patch("", response_model=UserResponse)
async def update_profile(
    body: ProfileUpdateRequest,
    user: Dict = Depends(get_current_user),
    db: AccountDB = Depends(get_db),
):
    """Update the display name of the current account."""
    updated = db.update_name(str(user["id"]), body.name.strip())

    return UserResponse(
        id=str(updated["id"]),
        email=updated["email"],
        name=updated["name"],
        role=updated["role"],
        two_factor_enabled=updated["two_factor_enabled"],
        created_at=updated["created_at"],
        last_login=updated["last_login"],
    )


@router.post(
    "/password",
    response_model=SuccessResponse,
    responses={400: {"model": ErrorResponse, "description": "Current password incorrect"}},
)
async def change_password(
    body: PasswordChangeRequest,
    request: Request,
    user: Dict = Depends(get_current_user),
    db: AccountDB = Depends(get_db),
    events: SecurityEventLogger = Depends(get_security_events),
):
    """
    Change the current account's password.

    Requires the current password. All sessions except the current one are
    invalidated.
    """
    account_id = str(user["id"])

    if not verify_password(body.current_password, user["password_hash"]):
        raise InputError("Current password is incorrect")

    if password_too_long(body.new_password):
        raise InputError(f"New password must be at most {MAX_PASSWORD_BYTES} bytes")

    db.update_password(account_id, hash_password(body.new_password))

    # Keep the caller signed in on this session only
    current_token = user.get("_session_token")
    db.invalidate_all_sessions(account_id)
    if current_token:
        db.reactivate_session(current_token)

    ip, user_agent = client_context(request)
    events.log_event("PASSWORD_CHANGED", MEDIUM, ip, user_agent, account_id)
    logger.info(f"Password changed for account {account_id}")

    return SuccessResponse(success=True)
