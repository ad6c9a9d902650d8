"""
Credential authentication with layered two-factor verification.

Login state machine:

    Start -> PasswordChecked -> SessionIssued
                             -> TwoFactorPending -> SessionIssued | Rejected

A password login for an account with 2FA enabled never yields a session;
it reports ``two_factor_required`` and the client resumes with the email
and a TOTP or backup code. No pending-login record is kept server-side.

Enrollment is stateless too: setup() hands the client a secret and its
ciphertext, and activate() commits them only after the client proves
possession with a valid code.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from . import backup_codes
from .mfa import setup_mfa, verify_totp
from .errors import AuthenticationFailure, InputError, InvalidCode, StateConflict, SecretFormatError
from .secret_codec import EncryptedSecret, SecretCodec
from ..database.account_db import AccountDB, dummy_password_hash, get_session_expiry_hours, verify_password

logger = logging.getLogger(__name__)

AUTHENTICATED = "authenticated"
TWO_FACTOR_REQUIRED = "two_factor_required"

FACTOR_TOTP = "totp"
FACTOR_BACKUP_CODE = "backup_code"


@dataclass
class IssuedSession:
    """Session handed out once login completes."""
    access_token: str
    expires_in: int
    account: Dict


@dataclass
class LoginResult:
    """Outcome of a login step that did not reject."""
    status: str
    session: Optional[IssuedSession] = None
    account_id: Optional[str] = None
    factor: Optional[str] = None  # which second factor succeeded, for logging only


@dataclass
class PendingEnrollment:
    """Freshly generated secret, held by the client between setup and verify."""
    secret: str
    encrypted_secret: EncryptedSecret
    qr_code: str
    provisioning_uri: str


@dataclass
class FactorCheck:
    valid: bool
    factor: Optional[str] = None


def public_account(account: Dict) -> Dict:
    """Fields of an account that may be returned to its owner."""
    return {
        "id": str(account["id"]),
        "email": account["email"],
        "name": account.get("name"),
        "role": account["role"],
    }


def _require(**fields: Optional[str]) -> None:
    missing = [name for name, value in fields.items() if not value or not str(value).strip()]
    if missing:
        raise InputError(f"Missing required field(s): {', '.join(missing)}")


class CredentialAuthenticator:
    """
    Orchestrates password checks, second-factor checks and session issuance.

    Example usage:
        authenticator = CredentialAuthenticator(db, SecretCodec())
        result = authenticator.login("admin@example.com", "secret123")
        if result.status == TWO_FACTOR_REQUIRED:
            result = authenticator.verify_login("admin@example.com", "123456")
    """

    def __init__(
        self,
        db: AccountDB,
        codec: SecretCodec,
        issuer: Optional[str] = None,
        session_hours: Optional[int] = None,
        backup_code_count: int = backup_codes.DEFAULT_COUNT,
    ):
        self.db = db
        self.codec = codec
        self.issuer = issuer
        self.session_hours = session_hours if session_hours is not None else get_session_expiry_hours()
        self.backup_code_count = backup_code_count

    # ==========================================
    # Login
    # ==========================================

    def login(self, email: str, password: str) -> LoginResult:
        """
        Check email and password.

        Raises:
            InputError: If email or password is missing.
            AuthenticationFailure: Unknown email, no password set, or wrong
                password; all three look the same to the caller.
        """
        _require(email=email, password=password)

        account = self.db.get_account_by_email(email)
        if account is None or not account["password_hash"]:
            # Same bcrypt cost whether or not the account exists
            verify_password(password, dummy_password_hash())
            logger.info("Password login rejected")
            raise AuthenticationFailure()

        if not verify_password(password, account["password_hash"]):
            logger.info("Password login rejected")
            raise AuthenticationFailure()

        if account["two_factor_enabled"]:
            logger.info(f"Second factor required for account {account['id']}")
            return LoginResult(status=TWO_FACTOR_REQUIRED, account_id=str(account["id"]))

        return LoginResult(
            status=AUTHENTICATED,
            session=self._issue_session(account),
            account_id=str(account["id"]),
        )

    def verify_login(self, email: str, token: str) -> LoginResult:
        """
        Complete a pending login with a TOTP code or a backup code.

        A matching backup code is consumed. Nothing changes on failure.

        Raises:
            InputError: If email or token is missing.
            AuthenticationFailure: Unknown account, 2FA not enabled, or no
                factor matched.
        """
        _require(email=email, token=token)

        account = self.db.get_account_by_email(email)
        if account is None or not account["two_factor_enabled"] or not account["two_factor_secret"]:
            raise AuthenticationFailure()

        check = self._check_second_factor(account, token, consume=True)
        if not check.valid:
            logger.info(f"Second factor rejected for account {account['id']}")
            raise AuthenticationFailure()

        return LoginResult(
            status=AUTHENTICATED,
            session=self._issue_session(account),
            account_id=str(account["id"]),
            factor=check.factor,
        )

    # ==========================================
    # Enrollment
    # ==========================================

    def setup(self, account_id: str) -> PendingEnrollment:
        """
        Generate a secret, its ciphertext and an enrollment QR code.

        Nothing is persisted.

        Raises:
            StateConflict: If 2FA is already enabled.
        """
        account = self._get_account(account_id)
        if account["two_factor_enabled"]:
            raise StateConflict(
                "2FA is already enabled. Disable it first to set up again.",
                code="already_enabled",
            )

        secret, uri, qr_code = setup_mfa(account["email"], issuer=self.issuer)
        return PendingEnrollment(
            secret=secret,
            encrypted_secret=self.codec.encrypt(secret),
            qr_code=qr_code,
            provisioning_uri=uri,
        )

    def activate(self, account_id: str, token: str, encrypted_secret: str) -> List[str]:
        """
        Verify possession of the pending secret and enable 2FA.

        Returns:
            Plaintext backup codes, shown to the user exactly once.

        Raises:
            InputError: Missing fields, or a ciphertext this server cannot decrypt.
            StateConflict: If 2FA is already enabled.
            InvalidCode: If the token does not match the secret.
        """
        _require(token=token, encryptedSecret=encrypted_secret)

        account = self._get_account(account_id)
        if account["two_factor_enabled"]:
            raise StateConflict("2FA is already enabled", code="already_enabled")

        try:
            pending = EncryptedSecret.parse(encrypted_secret)
            secret = self.codec.decrypt(pending)
        except SecretFormatError:
            raise InputError("Invalid encrypted secret")

        if not verify_totp(secret, token):
            raise InvalidCode()

        codes = backup_codes.generate_backup_codes(self.backup_code_count)
        if not self.db.enable_two_factor(account_id, str(pending), backup_codes.hash_backup_codes(codes)):
            raise StateConflict("2FA is already enabled", code="already_enabled")

        logger.info(f"2FA enabled for account {account_id}")
        return codes

    def disable(self, account_id: str, token: str) -> str:
        """
        Disable 2FA after re-proving possession of a factor.

        Returns:
            The factor that was used.

        Raises:
            InputError: If token is missing.
            StateConflict: If 2FA is not enabled.
            InvalidCode: If neither TOTP nor a backup code matched.
        """
        _require(token=token)

        account = self._get_account(account_id)
        if not account["two_factor_enabled"]:
            raise StateConflict("2FA is not enabled", code="not_enabled")

        # Everything is cleared on success, so a backup code need not be consumed first
        check = self._check_second_factor(account, token, consume=False)
        if not check.valid:
            raise InvalidCode()

        if not self.db.disable_two_factor(account_id):
            raise StateConflict("2FA is not enabled", code="not_enabled")

        logger.info(f"2FA disabled for account {account_id}")
        return check.factor

    # ==========================================
    # Helpers
    # ==========================================

    def _get_account(self, account_id: str) -> Dict:
        account = self.db.get_account_by_id(account_id)
        if account is None:
            # Session points at a deleted account
            raise AuthenticationFailure()
        return account

    def _check_second_factor(self, account: Dict, token: str, consume: bool) -> FactorCheck:
        """
        Try the TOTP secret first, then the backup codes.

        Raises:
            SecretFormatError: If the stored secret is corrupt.
        """
        secret = self.codec.decrypt(account["two_factor_secret"])
        if verify_totp(secret, token):
            return FactorCheck(valid=True, factor=FACTOR_TOTP)

        stored = account["two_factor_backup_codes"]
        if not stored:
            return FactorCheck(valid=False)

        result = backup_codes.verify_and_consume(token, stored)
        if not result.valid:
            return FactorCheck(valid=False)

        if consume and not self.db.replace_backup_codes(str(account["id"]), stored, result.remaining_hashes):
            logger.warning(f"Concurrent backup code use detected for account {account['id']}")
            return FactorCheck(valid=False)

        if consume:
            logger.info(
                f"Backup code used for account {account['id']}, "
                f"{len(result.remaining_hashes)} remaining"
            )
        return FactorCheck(valid=True, factor=FACTOR_BACKUP_CODE)

    def _issue_session(self, account: Dict) -> IssuedSession:
        account_id = str(account["id"])
        token = self.db.create_session(account_id, expires_hours=self.session_hours)
        self.db.update_last_login(account_id)

        return IssuedSession(access_token=token, expires_in=self.session_hours * 3600, account=public_account(account))
