"""
Initial account seeding.

Creates the first ADMIN account if it does not exist. Existing accounts
are left untouched (no password reset on re-run).
"""
import os
import logging
from typing import Optional, Tuple

from .account_db import AccountDB, MAX_PASSWORD_BYTES, ROLE_ADMIN, hash_password, password_too_long

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_EMAIL = "admin@example.com"
DEFAULT_ADMIN_PASSWORD = "changeme123"


def seed_admin(
    db: AccountDB,
    email: Optional[str] = None,
    password: Optional[str] = None,
    name: str = "Admin User",
) -> Tuple[str, bool]:
    """
    Ensure an ADMIN account exists.

    Args:
        db: Account database with schema initialized.
        email: Defaults to ADMIN_EMAIL.
        password: Defaults to ADMIN_PASSWORD.

    Returns:
        Tuple of (account_id, created).

    Raises:
        ValueError: If the password is longer than bcrypt accepts.
    """
    email = email or os.getenv("ADMIN_EMAIL", DEFAULT_ADMIN_EMAIL)
    password = password or os.getenv("ADMIN_PASSWORD", DEFAULT_ADMIN_PASSWORD)
    if password_too_long(password):
        raise ValueError(f"ADMIN_PASSWORD must be at most {MAX_PASSWORD_BYTES} bytes")

    existing = db.get_account_by_email(email)
    if existing is not None:
        logger.info(f"Admin account already exists: {email}")
        return str(existing["id"]), False

    if password == DEFAULT_ADMIN_PASSWORD:
        logger.warning("Seeding admin with the default password; change it after first login")

    account_id = db.create_account(email, hash_password(password), name=name, role=ROLE_ADMIN)
    return account_id, True
