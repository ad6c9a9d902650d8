"""
Tests for TOTP enrollment and verification.

Covers:
- Secret generation and provisioning URIs
- QR code rendering
- Code verification with clock skew
- Malformed input handling
"""
import base64
from urllib.parse import parse_qs, urlparse

import pyotp
import pytest

from sitegate.auth.mfa import (
    generate_qr_code,
    generate_qr_code_base64,
    generate_totp_secret,
    get_current_totp,
    get_issuer,
    get_totp_provisioning_uri,
    setup_mfa,
    verify_totp,
)

# Start of a 30-second step
STEP_START = 1_700_000_010


@pytest.fixture
def secret():
    return generate_totp_secret()


class TestSecretGeneration:
    """Test TOTP secret generation."""

    def test_secret_is_32_char_base32(self, secret):
        """Test that secrets carry 160 bits in base32."""
        assert len(secret) == 32
        assert len(base64.b32decode(secret)) == 20

    def test_secrets_are_unique(self):
        assert generate_totp_secret() != generate_totp_secret()


class TestProvisioning:
    """Test provisioning URIs and QR codes."""

    def test_provisioning_uri(self, secret):
        """Test the otpauth URI carries secret, account and issuer."""
        uri = get_totp_provisioning_uri(secret, "admin@example.com", issuer="Sitegate")
        parsed = urlparse(uri)
        query = parse_qs(parsed.query)

        assert parsed.scheme == "otpauth"
        assert parsed.netloc == "totp"
        assert "admin%40example.com" in parsed.path or "admin@example.com" in parsed.path
        assert query["secret"] == [secret]
        assert query["issuer"] == ["Sitegate"]

    def test_issuer_from_environment(self, monkeypatch, secret):
        monkeypatch.setenv("TOTP_ISSUER", "Acme Admin")

        assert get_issuer() == "Acme Admin"
        assert "issuer=Acme" in get_totp_provisioning_uri(secret, "admin@example.com")

    def test_qr_code_is_png(self, secret):
        png = generate_qr_code(get_totp_provisioning_uri(secret, "admin@example.com"))
        assert png.startswith(b"\x89PNG")

    def test_qr_code_data_url(self, secret):
        data_url = generate_qr_code_base64(get_totp_provisioning_uri(secret, "admin@example.com"))
        prefix = "data:image/png;base64,"

        assert data_url.startswith(prefix)
        assert base64.b64decode(data_url[len(prefix):]).startswith(b"\x89PNG")

    def test_setup_mfa(self):
        """Test that setup returns a matching secret, URI and QR code."""
        secret, uri, qr_code = setup_mfa("admin@example.com", issuer="Sitegate")

        assert f"secret={secret}" in uri
        assert qr_code.startswith("data:image/png;base64,")


class TestVerification:
    """Test TOTP code verification."""

    def test_current_code_verifies(self, secret):
        code = get_current_totp(secret, for_time=STEP_START)
        assert verify_totp(secret, code, for_time=STEP_START)

    def test_code_matches_pyotp(self, secret):
        """Test interoperability with standard RFC 6238 apps."""
        assert get_current_totp(secret, for_time=STEP_START) == pyotp.TOTP(secret).at(STEP_START)

    def test_adjacent_step_verifies(self, secret):
        """Test one step of clock skew in either direction."""
        code = get_current_totp(secret, for_time=STEP_START)

        assert verify_totp(secret, code, for_time=STEP_START + 30)
        assert verify_totp(secret, code, for_time=STEP_START - 30)

    def test_code_three_steps_away_fails(self, secret):
        """Test that a code 90 seconds off is rejected."""
        code = get_current_totp(secret, for_time=STEP_START)

        assert not verify_totp(secret, code, for_time=STEP_START + 90)
        assert not verify_totp(secret, code, for_time=STEP_START - 90)

    def test_spaces_are_ignored(self, secret):
        code = get_current_totp(secret, for_time=STEP_START)
        spaced = f" {code[:3]} {code[3:]} "

        assert verify_totp(secret, spaced, for_time=STEP_START)

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", "12a456", None, 123456])
    def test_malformed_code_fails(self, secret, code):
        """Test that malformed codes return False instead of raising."""
        assert verify_totp(secret, code) is False

    @pytest.mark.parametrize("bad_secret", ["", None, "not base32 !!!"])
    def test_malformed_secret_fails(self, bad_secret):
        assert verify_totp(bad_secret, "123456") is False
