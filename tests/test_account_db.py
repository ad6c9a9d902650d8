"""
Tests for the account store.

Covers:
- Account creation and lookup
- Guarded two-factor writes (enable, disable, backup-code swap)
- Session lifecycle
- Password hashing
- Initial admin seeding
"""
import pytest

from sitegate.database.account_db import hash_password, password_too_long, verify_password
from sitegate.database.seed import seed_admin

DIGESTS = ["a" * 64, "b" * 64, "c" * 64]


class TestAccounts:
    """Test account creation and lookup."""

    def test_create_and_fetch(self, db, account_id):
        account = db.get_account_by_id(account_id)

        assert account["email"] == "admin@example.com"
        assert account["role"] == "ADMIN"
        assert account["two_factor_enabled"] is False
        assert account["two_factor_backup_codes"] == []

    def test_email_normalized(self, db):
        account_id = db.create_account("  Editor@Example.COM ", None)

        assert db.get_account_by_email("editor@example.com")["id"] == account_id

    def test_duplicate_email_rejected(self, db, account_id):
        with pytest.raises(ValueError):
            db.create_account("ADMIN@example.com", None)

    def test_unknown_role_rejected(self, db):
        with pytest.raises(ValueError):
            db.create_account("viewer@example.com", None, role="VIEWER")

    def test_missing_account(self, db):
        assert db.get_account_by_id("missing") is None
        assert db.get_account_by_email("missing@example.com") is None

    def test_update_name(self, db, account_id):
        assert db.update_name(account_id, "Site Owner")["name"] == "Site Owner"


class TestTwoFactorWrites:
    """Test that two-factor writes only apply in the expected state."""

    def test_enable_sets_all_fields(self, db, account_id):
        assert db.enable_two_factor(account_id, "00:11", DIGESTS)

        account = db.get_account_by_id(account_id)
        assert account["two_factor_enabled"] is True
        assert account["two_factor_secret"] == "00:11"
        assert account["two_factor_backup_codes"] == DIGESTS
        assert account["two_factor_verified_at"] is not None

    def test_enable_twice_rejected(self, db, account_id):
        """Test that a second activation cannot overwrite the secret."""
        db.enable_two_factor(account_id, "00:11", DIGESTS)

        assert not db.enable_two_factor(account_id, "22:33", ["d" * 64])
        assert db.get_account_by_id(account_id)["two_factor_secret"] == "00:11"

    def test_disable_clears_all_fields(self, db, account_id):
        db.enable_two_factor(account_id, "00:11", DIGESTS)

        assert db.disable_two_factor(account_id)

        account = db.get_account_by_id(account_id)
        assert account["two_factor_enabled"] is False
        assert account["two_factor_secret"] is None
        assert account["two_factor_backup_codes"] == []
        assert account["two_factor_verified_at"] is None

    def test_disable_when_not_enabled(self, db, account_id):
        assert not db.disable_two_factor(account_id)

    def test_replace_backup_codes_swaps(self, db, account_id):
        db.enable_two_factor(account_id, "00:11", DIGESTS)

        assert db.replace_backup_codes(account_id, DIGESTS, DIGESTS[1:])
        assert db.get_account_by_id(account_id)["two_factor_backup_codes"] == DIGESTS[1:]

    def test_replace_backup_codes_stale_expected(self, db, account_id):
        """Test that two consumers of the same list cannot both win."""
        db.enable_two_factor(account_id, "00:11", DIGESTS)

        assert db.replace_backup_codes(account_id, DIGESTS, DIGESTS[1:])
        assert not db.replace_backup_codes(account_id, DIGESTS, DIGESTS[:1] + DIGESTS[2:])
        assert db.get_account_by_id(account_id)["two_factor_backup_codes"] == DIGESTS[1:]


class TestSessions:
    """Test session lifecycle."""

    def test_session_token_format(self, db, account_id):
        token = db.create_session(account_id)

        assert len(token) == 64
        int(token, 16)

    def test_validate_returns_account(self, db, account_id):
        token = db.create_session(account_id)
        account = db.validate_session(token)

        assert account["id"] == account_id
        assert account["session_expires_at"] is not None

    def test_invalid_token(self, db):
        assert db.validate_session("nope") is None

    def test_expired_session(self, db, account_id):
        token = db.create_session(account_id, expires_hours=-1)

        assert db.validate_session(token) is None

    def test_invalidate_session(self, db, account_id):
        token = db.create_session(account_id)
        db.invalidate_session(token)

        assert db.validate_session(token) is None

    def test_invalidate_all_and_reactivate(self, db, account_id):
        first = db.create_session(account_id)
        second = db.create_session(account_id)

        assert db.invalidate_all_sessions(account_id) == 2

        db.reactivate_session(second)
        assert db.validate_session(first) is None
        assert db.validate_session(second) is not None


class TestPasswords:
    """Test bcrypt hashing helpers."""

    def test_hash_and_verify(self):
        password_hash = hash_password("secret123")

        assert password_hash != "secret123"
        assert verify_password("secret123", password_hash)
        assert not verify_password("secret124", password_hash)

    @pytest.mark.parametrize("password_hash", [None, "", "not-a-bcrypt-hash"])
    def test_bad_hash_never_matches(self, password_hash):
        assert not verify_password("secret123", password_hash)

    def test_empty_password_never_matches(self):
        assert not verify_password("", hash_password("secret123"))

    def test_byte_limit_counts_utf8(self):
        assert not password_too_long("x" * 72)
        assert password_too_long("x" * 73)
        assert password_too_long("é" * 40)

    def test_hash_rejects_over_limit(self):
        with pytest.raises(ValueError):
            hash_password("x" * 73)

    def test_over_limit_never_matches(self):
        password_hash = hash_password("x" * 72)

        assert verify_password("x" * 72, password_hash)
        assert not verify_password("x" * 73, password_hash)


class TestSeedAdmin:
    """Test initial admin creation."""

    def test_creates_admin(self, db):
        account_id, created = seed_admin(db, "owner@example.com", "changeme456")
        account = db.get_account_by_id(account_id)

        assert created
        assert account["role"] == "ADMIN"
        assert account["name"] == "Admin User"
        assert verify_password("changeme456", account["password_hash"])

    def test_existing_admin_untouched(self, db):
        account_id, _ = seed_admin(db, "owner@example.com", "changeme456")

        again_id, created = seed_admin(db, "owner@example.com", "different789")

        assert not created
        assert again_id == account_id
        assert verify_password("changeme456", db.get_account_by_id(account_id)["password_hash"])

    def test_reads_environment(self, db, monkeypatch):
        monkeypatch.setenv("ADMIN_EMAIL", "env-admin@example.com")
        monkeypatch.setenv("ADMIN_PASSWORD", "from-env-123")

        account_id, _ = seed_admin(db)

        assert db.get_account_by_email("env-admin@example.com")["id"] == account_id

    def test_password_over_byte_limit_rejected(self, db):
        with pytest.raises(ValueError):
            seed_admin(db, "owner@example.com", "é" * 40)

        assert db.get_account_by_email("owner@example.com") is None
