"""
Account store for the admin backend.

This module provides connection management and operations for:
- Admin accounts (email, password hash, role, two-factor fields)
- Session management

Two-factor writes are single UPDATE statements guarded on the current row
state, so enabling, disabling and consuming backup codes are atomic per
account even under concurrent requests.
"""
import os
import uuid
import json
import secrets
import logging
from typing import Optional, Dict, List
from datetime import datetime, timedelta, timezone
from contextlib import contextmanager

import bcrypt
from sqlalchemy import (
    create_engine, update, select,
    Column, String, Text, DateTime, Boolean, ForeignKey, Index,
)
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool

logger = logging.getLogger(__name__)

Base = declarative_base()

ROLE_ADMIN = "ADMIN"
ROLE_EDITOR = "EDITOR"
ROLES = (ROLE_ADMIN, ROLE_EDITOR)

DEFAULT_DATABASE_URL = "sqlite:///./sitegate.db"
PASSWORD_HASH_ROUNDS = 12
MAX_PASSWORD_BYTES = 72  # bcrypt input limit


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# DATABASE MODELS
# =============================================================================

class Account(Base):
    """Admin account with its two-factor sub-record."""
    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(200), nullable=False, unique=True)
    name = Column(String(100), nullable=True)
    password_hash = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=ROLE_EDITOR)

    two_factor_enabled = Column(Boolean, nullable=False, default=False)
    two_factor_secret = Column(Text, nullable=True)  # ivHex:cipherHex
    two_factor_backup_codes = Column(Text, nullable=False, default="[]")  # JSON list of digests
    two_factor_verified_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    last_login = Column(DateTime(timezone=True), nullable=True)


class LoginSession(Base):
    """Bearer session issued after a completed login."""
    __tablename__ = "sessions"

    session_token = Column(String(64), primary_key=True)
    account_id = Column(String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index('idx_sessions_account', 'account_id'),
    )


def _account_to_dict(account: Account) -> Dict:
    return {
        "id": account.id,
        "email": account.email,
        "name": account.name,
        "password_hash": account.password_hash,
        "role": account.role,
        "two_factor_enabled": bool(account.two_factor_enabled),
        "two_factor_secret": account.two_factor_secret,
        "two_factor_backup_codes": json.loads(account.two_factor_backup_codes or "[]"),
        "two_factor_verified_at": account.two_factor_verified_at,
        "created_at": account.created_at,
        "last_login": account.last_login,
    }


class AccountDB:
    """
    Database manager for accounts and sessions.

    Example usage:
        db = AccountDB("sqlite:///./sitegate.db")
        db.init_schema()

        account_id = db.create_account("admin@example.com", hash_password("secret123"), role="ADMIN")
        token = db.create_session(account_id)
    """

    def __init__(self, connection_string: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            connection_string: SQLAlchemy URL. Uses DATABASE_URL if not provided.
        """
        if connection_string is None:
            connection_string = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

        if connection_string.startswith("sqlite"):
            self.engine = create_engine(
                connection_string,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(
                connection_string,
                poolclass=QueuePool,
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_pre_ping=True,  # Test connections before use (detect stale)
                pool_recycle=300,    # Recycle connections every 5 minutes
            )
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def get_session(self):
        """
        Get a database session with automatic cleanup.

        Usage:
            with db.get_session() as session:
                result = session.execute(query)
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_schema(self) -> None:
        """Create tables if they do not exist."""
        Base.metadata.create_all(self.engine)
        logger.info("Account schema initialized")

    # ==========================================
    # Account Management
    # ==========================================

    def create_account(
        self,
        email: str,
        password_hash: Optional[str],
        name: Optional[str] = None,
        role: str = ROLE_EDITOR,
    ) -> str:
        """
        Create a new account.

        Returns:
            ID of created account.

        Raises:
            ValueError: If the email already exists or the role is unknown.
        """
        if role not in ROLES:
            raise ValueError(f"Unknown role '{role}'")

        email = email.lower().strip()
        with self.get_session() as session:
            existing = session.execute(
                select(Account.id).where(Account.email == email)
            ).first()
            if existing:
                raise ValueError(f"Account with email '{email}' already exists")

            account = Account(email=email, name=name, password_hash=password_hash, role=role)
            session.add(account)
            session.flush()
            account_id = account.id

        logger.info(f"Created account: {email} (id={account_id}, role={role})")
        return account_id

    def get_account_by_email(self, email: str) -> Optional[Dict]:
        """Get account by email address, or None."""
        with self.get_session() as session:
            account = session.execute(
                select(Account).where(Account.email == email.lower().strip())
            ).scalar_one_or_none()
            return _account_to_dict(account) if account else None

    def get_account_by_id(self, account_id: str) -> Optional[Dict]:
        """Get account by ID, or None."""
        with self.get_session() as session:
            account = session.get(Account, account_id)
            return _account_to_dict(account) if account else None

    def update_last_login(self, account_id: str) -> None:
        with self.get_session() as session:
            session.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(last_login=_utcnow())
            )

    def update_name(self, account_id: str, name: str) -> Optional[Dict]:
        """Update the display name and return the updated account."""
        with self.get_session() as session:
            session.execute(
                update(Account).where(Account.id == account_id).values(name=name)
            )
        return self.get_account_by_id(account_id)

    def update_password(self, account_id: str, new_password_hash: str) -> None:
        """
        Update account password.

        Args:
            account_id: ID of account.
            new_password_hash: New bcrypt-hashed password.
        """
        with self.get_session() as session:
            session.execute(
                update(Account)
                .where(Account.id == account_id)
                .values(password_hash=new_password_hash)
            )
        logger.info(f"Password updated for account {account_id}")

    # ==========================================
    # Two-Factor State
    # ==========================================

    def enable_two_factor(self, account_id: str, encrypted_secret: str, backup_hashes: List[str]) -> bool:
        """
        Activate 2FA: secret, backup codes, flag and timestamp in one write.

        Only applies while 2FA is disabled.

        Returns:
            True if the account was updated.
        """
        with self.get_session() as session:
            result = session.execute(
                update(Account)
                .where(Account.id == account_id, Account.two_factor_enabled.is_(False))
                .values(
                    two_factor_enabled=True,
                    two_factor_secret=encrypted_secret,
                    two_factor_backup_codes=json.dumps(backup_hashes),
                    two_factor_verified_at=_utcnow(),
                )
            )
            return result.rowcount == 1

    def disable_two_factor(self, account_id: str) -> bool:
        """
        Clear all 2FA fields in one write.

        Returns:
            True if the account was updated.
        """
        with self.get_session() as session:
            result = session.execute(
                update(Account)
                .where(Account.id == account_id, Account.two_factor_enabled.is_(True))
                .values(
                    two_factor_enabled=False,
                    two_factor_secret=None,
                    two_factor_backup_codes="[]",
                    two_factor_verified_at=None,
                )
            )
            return result.rowcount == 1

    def replace_backup_codes(self, account_id: str, expected: List[str], remaining: List[str]) -> bool:
        """
        Compare-and-swap the stored backup code digests.

        The write only applies if the stored list still equals ``expected``,
        so two concurrent consumers of one code cannot both succeed.

        Returns:
            True if the swap was applied.
        """
        with self.get_session() as session:
            result = session.execute(
                update(Account)
                .where(
                    Account.id == account_id,
                    Account.two_factor_backup_codes == json.dumps(expected),
                )
                .values(two_factor_backup_codes=json.dumps(remaining))
            )
            return result.rowcount == 1

    # ==========================================
    # Session Management
    # ==========================================

    def create_session(self, account_id: str, expires_hours: Optional[int] = None) -> str:
        """
        Create a new session for an account.

        Returns:
            Session token (secure random 64-char hex string).
        """
        if expires_hours is None:
            expires_hours = get_session_expiry_hours()

        session_token = secrets.token_hex(32)
        now = _utcnow()

        with self.get_session() as session:
            session.add(LoginSession(
                session_token=session_token,
                account_id=account_id,
                created_at=now,
                expires_at=now + timedelta(hours=expires_hours),
                is_active=True,
            ))

        logger.debug(f"Created session for account {account_id}")
        return session_token

    def validate_session(self, session_token: str) -> Optional[Dict]:
        """
        Validate a session token.

        Returns:
            Account dict if valid, None if invalid/expired.
        """
        with self.get_session() as session:
            row = session.execute(
                select(Account, LoginSession.expires_at)
                .join(LoginSession, LoginSession.account_id == Account.id)
                .where(
                    LoginSession.session_token == session_token,
                    LoginSession.is_active.is_(True),
                    LoginSession.expires_at > _utcnow(),
                )
            ).first()

            if not row:
                return None

            account = _account_to_dict(row[0])
            account["session_expires_at"] = row[1]
            return account

    def invalidate_session(self, session_token: str) -> None:
        """Invalidate (logout) a session."""
        with self.get_session() as session:
            session.execute(
                update(LoginSession)
                .where(LoginSession.session_token == session_token)
                .values(is_active=False)
            )
        logger.debug("Invalidated session")

    def reactivate_session(self, session_token: str) -> None:
        """Mark a session active again (it still expires on schedule)."""
        with self.get_session() as session:
            session.execute(
                update(LoginSession)
                .where(LoginSession.session_token == session_token)
                .values(is_active=True)
            )

    def invalidate_all_sessions(self, account_id: str) -> int:
        """
        Invalidate all sessions for an account.

        Returns:
            Number of sessions invalidated.
        """
        with self.get_session() as session:
            result = session.execute(
                update(LoginSession)
                .where(LoginSession.account_id == account_id, LoginSession.is_active.is_(True))
                .values(is_active=False)
            )
            return result.rowcount


def get_session_expiry_hours() -> int:
    return int(os.getenv("SESSION_EXPIRY_HOURS", "24"))


def password_too_long(password: str) -> bool:
    """True if the UTF-8 encoding exceeds what bcrypt accepts."""
    return len(password.encode('utf-8')) > MAX_PASSWORD_BYTES


def hash_password(password: str) -> str:
    """
    Hash a password using bcrypt.

    Raises:
        ValueError: If the password is longer than MAX_PASSWORD_BYTES.
    """
    if password_too_long(password):
        raise ValueError(f"Password exceeds {MAX_PASSWORD_BYTES} bytes")
    salt = bcrypt.gensalt(rounds=PASSWORD_HASH_ROUNDS)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """
    Verify a password against its bcrypt hash.

    A missing or malformed hash never matches, and neither does a password
    too long to have been hashed.
    """
    if not password or not password_hash or password_too_long(password):
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


_dummy_hash: Optional[str] = None


def dummy_password_hash() -> str:
    """Hash of a random password, checked when no account matches."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = hash_password(secrets.token_urlsafe(32))
    return _dummy_hash


_account_db: Optional[AccountDB] = None


def get_account_db() -> AccountDB:
    """Get singleton account database."""
    global _account_db
    if _account_db is None:
        _account_db = AccountDB()
    return _account_db
