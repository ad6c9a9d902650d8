"""
TOTP second factor for Sitegate.

RFC 6238 codes: 30-second step, 6 digits, SHA-1, as expected by Google
Authenticator, Authy and 1Password. Verification tolerates one step of
clock skew either side.

Backup codes live in backup_codes.py.
"""
import io
import os
import base64
import logging
from datetime import datetime
from typing import Optional, Tuple, Union

import pyotp
import qrcode

logger = logging.getLogger(__name__)

DEFAULT_ISSUER = "Sitegate"
CODE_DIGITS = 6
STEP_SECONDS = 30
SECRET_LENGTH = 32  # base32 chars, 160 bits

Timestamp = Union[int, float, datetime]


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(secret, digits=CODE_DIGITS, interval=STEP_SECONDS)


def get_issuer() -> str:
    """Issuer label shown in authenticator apps (TOTP_ISSUER)."""
    return os.getenv("TOTP_ISSUER", DEFAULT_ISSUER)


def generate_totp_secret() -> str:
    """Fresh base32 secret from the OS CSPRNG."""
    return pyotp.random_base32(length=SECRET_LENGTH)


def get_totp_provisioning_uri(secret: str, email: str, issuer: Optional[str] = None) -> str:
    """
    Build the ``otpauth://totp/...`` URI an authenticator app imports.

    Args:
        secret: Base32 secret.
        email: Account label shown in the app.
        issuer: Defaults to TOTP_ISSUER.
    """
    return _totp(secret).provisioning_uri(name=email, issuer_name=issuer or get_issuer())


def generate_qr_code(uri: str) -> bytes:
    """Render ``uri`` as a PNG QR code."""
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, box_size=8, border=4)
    qr.add_data(uri)
    qr.make(fit=True)

    with io.BytesIO() as out:
        qr.make_image().save(out, format="PNG")
        return out.getvalue()


def generate_qr_code_base64(uri: str) -> str:
    """QR code as a ``data:image/png;base64,...`` URL for an <img> tag."""
    encoded = base64.b64encode(generate_qr_code(uri)).decode("ascii")
    return "data:image/png;base64," + encoded


def verify_totp(
    secret: str,
    code: str,
    window: int = 1,
    for_time: Optional[Timestamp] = None,
) -> bool:
    """
    Check ``code`` against ``secret``.

    Spaces in the code are ignored. Anything that is not exactly six
    digits, or a secret that is not valid base32, fails instead of raising.
    pyotp compares with hmac.compare_digest.

    Args:
        window: Steps of skew accepted either side of ``for_time``.
        for_time: Verification time; now if omitted.
    """
    if not secret or not isinstance(code, str):
        return False

    code = code.replace(" ", "")
    if len(code) != CODE_DIGITS or not code.isdigit():
        return False

    try:
        return _totp(secret).verify(code, for_time=for_time, valid_window=window)
    except (ValueError, TypeError) as e:
        logger.debug(f"TOTP check on malformed secret: {type(e).__name__}")
        return False


def get_current_totp(secret: str, for_time: Optional[Timestamp] = None) -> str:
    """Code for ``secret`` at ``for_time`` (now if omitted). Used by tests and tooling."""
    totp = _totp(secret)
    return totp.now() if for_time is None else totp.at(for_time)


def setup_mfa(email: str, issuer: Optional[str] = None) -> Tuple[str, str, str]:
    """
    Everything a client needs to enroll an authenticator app.

    Returns:
        (secret, provisioning_uri, qr_code_data_url)
    """
    secret = generate_totp_secret()
    uri = get_totp_provisioning_uri(secret, email, issuer)
    return secret, uri, generate_qr_code_base64(uri)
