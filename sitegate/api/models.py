"""
Pydantic Models for the Sitegate API.

Request and response models for all API endpoints. Two-factor payloads use
the camelCase field names the admin front end sends (``encryptedSecret``,
``backupCodes``, ``qrCode``).
"""
from datetime import datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, EmailStr, Field, ConfigDict


# ============================================
# Authentication Models
# ============================================

class LoginRequest(BaseModel):
    """
    Password login request.

    If the account has 2FA enabled, the response status is
    ``two_factor_required`` and the login continues at /2fa/login-verify.
    """
    email: EmailStr = Field(..., description="Registered email address")
    password: str = Field(..., min_length=1, description="Account password")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "admin@example.com",
                "password": "secret123"
            }
        }
    )


class AccountInfo(BaseModel):
    """Account identity carried by a session."""
    id: str
    email: str
    name: Optional[str] = None
    role: str


class SessionInfo(BaseModel):
    """Issued session."""
    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Token expiration in seconds")
    account: AccountInfo


class LoginResponse(BaseModel):
    """Login result: a session, or a request for the second factor."""
    status: str = Field(..., description="authenticated or two_factor_required")
    session: Optional[SessionInfo] = None


class UserResponse(BaseModel):
    """Account profile response."""
    id: str
    email: str
    name: Optional[str] = None
    role: str
    two_factor_enabled: bool
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None


class PasswordChangeRequest(BaseModel):
    """
    Password change request.

    Requires the current password. Other sessions are invalidated.
    """
    current_password: str = Field(..., alias="currentPassword", min_length=1)
    new_password: str = Field(..., alias="newPassword", min_length=8, max_length=100)

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "currentPassword": "oldpassword123",
                "newPassword": "newsecurepassword456"
            }
        }
    )


class ProfileUpdateRequest(BaseModel):
    """Profile update request."""
    name: str = Field(..., min_length=1, max_length=100)


class SuccessResponse(BaseModel):
    success: bool = True


# ============================================
# Two-Factor Models
# ============================================

class TwoFactorLoginRequest(BaseModel):
    """Second step of a login for an account with 2FA enabled."""
    email: EmailStr
    token: str = Field(..., min_length=1, max_length=32, description="6-digit TOTP code or backup code")


class TwoFactorLoginResponse(BaseModel):
    valid: bool
    account: Optional[AccountInfo] = None
    session: Optional[SessionInfo] = None


class TwoFactorSetupResponse(BaseModel):
    """Pending enrollment. Nothing is stored until /2fa/verify succeeds."""
    secret: str
    encrypted_secret: str = Field(..., alias="encryptedSecret")
    qr_code: str = Field(..., alias="qrCode", description="PNG data URL")
    provisioning_uri: str = Field(..., alias="provisioningUri")

    model_config = ConfigDict(populate_by_name=True)


class TwoFactorVerifyRequest(BaseModel):
    """Activation request carrying the pending secret from /2fa/setup."""
    token: str = Field(..., min_length=1, max_length=32)
    encrypted_secret: str = Field(..., alias="encryptedSecret", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class TwoFactorVerifyResponse(BaseModel):
    """
    Activation success response.

    Each backup code can be used once. They are not shown again.
    """
    success: bool = True
    backup_codes: List[str] = Field(..., alias="backupCodes")

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "success": True,
                "backupCodes": ["A1B2C3D4", "E5F6A7B8", "C9D0E1F2", "0A1B2C3D",
                                "4E5F6A7B", "8C9D0E1F", "2A3B4C5D", "6E7F8A9B"]
            }
        }
    )


class TwoFactorDisableRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=32)


# ============================================
# Health Models
# ============================================

class HealthStatus(BaseModel):
    """Health check response."""
    status: str = Field(..., description="healthy or unhealthy")
    version: str
    services: Dict[str, str]
    timestamp: datetime


# ============================================
# Error Models
# ============================================

class ErrorResponse(BaseModel):
    """
    Standard error response.

    All API errors return this format with an error message,
    optional detail, and error code for programmatic handling.
    """
    error: str = Field(..., description="Error type/summary")
    detail: Optional[str] = Field(None, description="Detailed error message")
    code: Optional[str] = Field(None, description="Error code for programmatic handling")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "Invalid credentials",
                "detail": None,
                "code": "invalid_credentials"
            }
        }
    )
