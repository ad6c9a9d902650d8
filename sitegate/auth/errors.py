"""
Error taxonomy for the authentication core.

Every error carries the HTTP status and the machine-readable code the API
layer reports. Messages are safe to show to clients; internal detail
(which factor failed, why decryption failed) goes to logs only.
"""
from typing import Dict, Optional


class AuthError(Exception):
    """Base class for errors surfaced by the authentication core."""

    status_code = 400
    code = "auth_error"
    message = "Request failed"

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        self.message = message or self.message
        if code is not None:
            self.code = code
        self.headers: Dict[str, str] = {}
        super().__init__(self.message)


class InputError(AuthError):
    """Missing or malformed request field."""

    status_code = 400
    code = "invalid_input"
    message = "Invalid input"


class AuthenticationFailure(AuthError):
    """Wrong password, unknown account, or wrong second factor during login."""

    status_code = 401
    code = "invalid_credentials"
    message = "Invalid credentials"


class InvalidCode(AuthError):
    """A TOTP or backup code failed verification on an authenticated endpoint."""

    status_code = 400
    code = "invalid_code"
    message = "Invalid verification code"


class StateConflict(AuthError):
    """The account's 2FA state does not allow the requested transition."""

    status_code = 400
    code = "state_conflict"
    message = "Operation not allowed in the current state"


class Unauthorized(AuthError):
    """Missing or invalid session on an authenticated-only endpoint."""

    status_code = 401
    code = "unauthorized"
    message = "Authentication required"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message)
        self.headers = {"WWW-Authenticate": "Bearer"}


class RateLimited(AuthError):
    """Too many requests for an endpoint class within the current window."""

    status_code = 429
    code = "rate_limited"
    message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int, headers: Optional[Dict[str, str]] = None):
        super().__init__()
        self.retry_after = retry_after
        self.headers = headers or {"Retry-After": str(retry_after)}


class SecretFormatError(AuthError):
    """Ciphertext could not be parsed or decrypted. Indicates corruption."""

    status_code = 500
    code = "internal_error"
    message = "Internal server error"
