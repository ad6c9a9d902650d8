"""
Two-Factor Endpoints.

Second step of a login, and TOTP enrollment/removal for the signed-in
account. Enrollment keeps no server-side state between /setup and /verify:
the client carries the encrypted secret.
"""
import logging
from typing import Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..models import (
    AccountInfo,
    ErrorResponse,
    SuccessResponse,
    TwoFactorDisableRequest,
    TwoFactorLoginRequest,
    TwoFactorLoginResponse,
    TwoFactorSetupResponse,
    TwoFactorVerifyRequest,
    TwoFactorVerifyResponse,
)
from ..deps import (
    get_authenticator,
    get_current_user,
    get_security_events,
    client_context,
    auth_rate_limit,
    api_rate_limit,
)
from .auth import session_info
from ...auth.authenticator import CredentialAuthenticator, FACTOR_BACKUP_CODE
from ...auth.errors import AuthenticationFailure, InvalidCode
from ...auth.security_log import SecurityEventLogger, LOW, MEDIUM, HIGH

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/2fa", tags=["Two-Factor"])


@router.post(
    "/login-verify",
    response_model=TwoFactorLoginResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing or malformed fields"},
        401: {"model": TwoFactorLoginResponse, "description": "Code rejected"},
        429: {"model": ErrorResponse, "description": "Too many attempts"},
    },
    dependencies=[Depends(auth_rate_limit)],
)
async def login_verify(
    body: TwoFactorLoginRequest,
    request: Request,
    authenticator: CredentialAuthenticator = Depends(get_authenticator),
    events: SecurityEventLogger = Depends(get_security_events),
):
    """
    Complete a login with a 6-digit TOTP code or a backup code.

    Backup codes are consumed on use and cannot be reused.
    """
    ip, user_agent = client_context(request)

    try:
        result = authenticator.verify_login(body.email, body.token)
    except AuthenticationFailure as e:
        events.log_event("TWO_FACTOR_FAILED", HIGH, ip, user_agent, status="FAILED")
        return JSONResponse(
            status_code=e.status_code,
            content={"valid": False, "error": e.message, "code": e.code},
        )

    if result.factor == FACTOR_BACKUP_CODE:
        events.log_event("BACKUP_CODE_USED", MEDIUM, ip, user_agent, result.account_id)
    events.log_login_attempt(ip, user_agent, success=True, account_id=result.account_id)

    return TwoFactorLoginResponse(
        valid=True,
        account=AccountInfo(**result.session.account),
        session=session_info(result.session),
    )


@router.post(
    "/setup",
    response_model=TwoFactorSetupResponse,
    responses={400: {"model": ErrorResponse, "description": "2FA already enabled"}},
    dependencies=[Depends(api_rate_limit)],
)
async def setup_two_factor(
    user: Dict = Depends(get_current_user),
    authenticator: CredentialAuthenticator = Depends(get_authenticator),
):
    """
    Start 2FA enrollment.

    Returns the secret, its encrypted form and a QR code for the
    authenticator app. 2FA is not active until /2fa/verify succeeds.
    """
    pending = authenticator.setup(str(user["id"]))

    logger.info(f"2FA setup initiated for account {user['id']}")

    return TwoFactorSetupResponse(
        secret=pending.secret,
        encrypted_secret=str(pending.encrypted_secret),
        qr_code=pending.qr_code,
        provisioning_uri=pending.provisioning_uri,
    )


@router.post(
    "/verify",
    response_model=TwoFactorVerifyResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid code or 2FA already enabled"}},
    dependencies=[Depends(api_rate_limit)],
)
async def verify_two_factor(
    body: TwoFactorVerifyRequest,
    request: Request,
    user: Dict = Depends(get_current_user),
    authenticator: CredentialAuthenticator = Depends(get_authenticator),
    events: SecurityEventLogger = Depends(get_security_events),
):
    """
    Activate 2FA with a code from the authenticator app.

    Returns backup codes for account recovery. They are shown only once.
    """
    ip, user_agent = client_context(request)
    account_id = str(user["id"])

    try:
        codes = authenticator.activate(account_id, body.token, body.encrypted_secret)
    except InvalidCode:
        events.log_event("TWO_FACTOR_FAILED", MEDIUM, ip, user_agent, account_id, details={"step": "activate"})
        raise

    events.log_event("TWO_FACTOR_ENABLED", LOW, ip, user_agent, account_id)

    return TwoFactorVerifyResponse(success=True, backup_codes=codes)


@router.post(
    "/disable",
    response_model=SuccessResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid code or 2FA not enabled"}},
    dependencies=[Depends(api_rate_limit)],
)
async def disable_two_factor(
    body: TwoFactorDisableRequest,
    request: Request,
    user: Dict = Depends(get_current_user),
    authenticator: CredentialAuthenticator = Depends(get_authenticator),
    events: SecurityEventLogger = Depends(get_security_events),
):
    """
    Disable 2FA for the current account.

    Requires a current TOTP code or an unused backup code, even with a
    valid session.
    """
    ip, user_agent = client_context(request)
    account_id = str(user["id"])

    try:
        factor = authenticator.disable(account_id, body.token)
    except InvalidCode:
        events.log_event("TWO_FACTOR_FAILED", HIGH, ip, user_agent, account_id, details={"step": "disable"})
        raise

    events.log_event("TWO_FACTOR_DISABLED", MEDIUM, ip, user_agent, account_id, details={"factor": factor})

    return SuccessResponse(success=True)
