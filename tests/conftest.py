"""
Pytest configuration and shared fixtures for Sitegate tests.

This module provides common test fixtures for:
- Temporary SQLite account databases
- Seeded accounts (plain and 2FA-enrolled)
- Rate limiters driven by a fake clock
- API test client with dependency overrides
"""
import time

import pytest
from fastapi.testclient import TestClient

from sitegate.api.main import create_app
from sitegate.api.deps import get_db, get_codec
from sitegate.auth.authenticator import CredentialAuthenticator
from sitegate.auth.mfa import get_current_totp
from sitegate.auth.rate_limit import RateLimiter
from sitegate.auth.secret_codec import SecretCodec
from sitegate.database import account_db
from sitegate.database.account_db import AccountDB, hash_password

TEST_ENCRYPTION_KEY = "test-encryption-key"
TEST_PASSWORD = "secret123"
ADMIN_EMAIL = "admin@example.com"
EDITOR_EMAIL = "editor@example.com"


# ============================================
# Database Fixtures
# ============================================

@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    """Cheap bcrypt cost so tests do not spend seconds hashing."""
    monkeypatch.setattr(account_db, "PASSWORD_HASH_ROUNDS", 4)


@pytest.fixture
def db(tmp_path):
    """
    Account database in a temporary SQLite file.
    Automatically cleaned up after test completes.
    """
    database = AccountDB(f"sqlite:///{tmp_path / 'sitegate.db'}")
    database.init_schema()
    yield database
    database.engine.dispose()


@pytest.fixture
def account_id(db):
    """ADMIN account with password 'secret123' and 2FA disabled."""
    return db.create_account(ADMIN_EMAIL, hash_password(TEST_PASSWORD), name="Admin User", role="ADMIN")


@pytest.fixture
def editor_id(db):
    return db.create_account(EDITOR_EMAIL, hash_password(TEST_PASSWORD), name="Editor", role="EDITOR")


# ============================================
# Authentication Fixtures
# ============================================

@pytest.fixture
def codec():
    return SecretCodec(TEST_ENCRYPTION_KEY)


@pytest.fixture
def authenticator(db, codec):
    return CredentialAuthenticator(db, codec, issuer="Sitegate Test", session_hours=24)


@pytest.fixture
def enrolled_account(authenticator, account_id):
    """
    Enroll the ADMIN account in 2FA.

    Returns:
        Tuple of (account_id, plaintext secret, backup codes).
    """
    pending = authenticator.setup(account_id)
    codes = authenticator.activate(
        account_id,
        get_current_totp(pending.secret),
        str(pending.encrypted_secret),
    )
    return account_id, pending.secret, codes


@pytest.fixture
def wrong_totp():
    """Return a 6-digit code that is not valid for the secret right now."""
    def make(secret):
        valid = {get_current_totp(secret, for_time=offset) for offset in _nearby_times()}
        for digit in "0123456789":
            candidate = digit * 6
            if candidate not in valid:
                return candidate
        raise AssertionError("no invalid code found")
    return make


def _nearby_times():
    now = int(time.time())
    return [now + delta for delta in (-60, -30, 0, 30, 60)]


# ============================================
# Rate Limiting Fixtures
# ============================================

class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(window_ms=60_000, limits={"auth": 10, "api": 100}, clock=clock)


# ============================================
# API Fixtures
# ============================================

@pytest.fixture
def app(db, codec, limiter):
    """Fresh application wired to the temporary database and test codec."""
    application = create_app(rate_limiter=limiter)
    application.dependency_overrides[get_db] = lambda: db
    application.dependency_overrides[get_codec] = lambda: codec
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def auth_headers(db, account_id):
    """Bearer header for a live ADMIN session."""
    token = db.create_session(account_id)
    return {"Authorization": f"Bearer {token}"}
