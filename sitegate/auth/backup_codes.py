"""
Backup code generation and verification for account recovery.

Codes are 8 upper-case hex characters drawn from ``secrets``. Only their
SHA-256 digests are stored. Each code is single-use: a successful
verification returns the stored list with that one digest removed, and the
caller persists it.
"""
import hmac
import hashlib
import secrets
from typing import List, NamedTuple

DEFAULT_COUNT = 8
CODE_LENGTH = 8


class BackupCodeResult(NamedTuple):
    """Outcome of verify_and_consume."""
    valid: bool
    remaining_hashes: List[str]


def normalize_backup_code(code: str) -> str:
    """Strip separators and whitespace, upper-case."""
    return code.strip().replace("-", "").replace(" ", "").upper()


def generate_backup_codes(count: int = DEFAULT_COUNT, length: int = CODE_LENGTH) -> List[str]:
    """
    Generate backup codes for account recovery.

    These are shown to the user once; each can only be used once.

    Args:
        count: Number of backup codes to generate.
        length: Length of each code (hex characters, must be even).

    Returns:
        List of upper-case hex codes.
    """
    return [secrets.token_hex(length // 2).upper() for _ in range(count)]


def hash_backup_code(code: str) -> str:
    """
    Hash a backup code for storage.

    Returns:
        SHA-256 hex digest of the normalized code.
    """
    return hashlib.sha256(normalize_backup_code(code).encode('utf-8')).hexdigest()


def hash_backup_codes(codes: List[str]) -> List[str]:
    """Hash each code independently, preserving order."""
    return [hash_backup_code(code) for code in codes]


def find_matching_backup_code(code: str, hashed_codes: List[str]) -> int:
    """
    Find the index of a matching backup code.

    Returns:
        Index of the matching hash, or -1 if not found.
    """
    if not code or not isinstance(code, str):
        return -1

    candidate = hash_backup_code(code)
    match = -1
    # Walk the whole list so timing does not depend on the match position
    for i, hashed in enumerate(hashed_codes):
        if hmac.compare_digest(candidate, hashed) and match == -1:
            match = i
    return match


def verify_and_consume(code: str, hashed_codes: List[str]) -> BackupCodeResult:
    """
    Verify a backup code and remove it from the stored list.

    Args:
        code: Plain text backup code entered by user (case-insensitive).
        hashed_codes: Stored digests, in storage order.

    Returns:
        BackupCodeResult. On a match, remaining_hashes is the input minus
        that one entry, order kept; otherwise the input list unchanged.
    """
    index = find_matching_backup_code(code, hashed_codes)
    if index == -1:
        return BackupCodeResult(valid=False, remaining_hashes=hashed_codes)

    remaining = hashed_codes[:index] + hashed_codes[index + 1:]
    return BackupCodeResult(valid=True, remaining_hashes=remaining)
