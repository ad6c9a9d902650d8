"""
Authentication core for Sitegate.

This package provides:
- Password login with layered two-factor verification (authenticator)
- TOTP enrollment and verification (mfa)
- Single-use backup codes (backup_codes)
- At-rest encryption of TOTP secrets (secret_codec)
- Fixed-window rate limiting (rate_limit)
- Security event logging (security_log)
- Offline security log analysis (log_analysis)
"""
from .mfa import (
    generate_totp_secret,
    get_totp_provisioning_uri,
    verify_totp,
    setup_mfa,
    generate_qr_code_base64,
)
from .backup_codes import generate_backup_codes, hash_backup_codes, verify_and_consume
from .secret_codec import EncryptedSecret, SecretCodec
from .rate_limit import RateLimiter, RateLimitDecision
from .authenticator import CredentialAuthenticator

__all__ = [
    "generate_totp_secret",
    "get_totp_provisioning_uri",
    "verify_totp",
    "setup_mfa",
    "generate_qr_code_base64",
    "generate_backup_codes",
    "hash_backup_codes",
    "verify_and_consume",
    "EncryptedSecret",
    "SecretCodec",
    "RateLimiter",
    "RateLimitDecision",
    "CredentialAuthenticator",
]
