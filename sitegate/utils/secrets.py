"""
Secret lookup for Sitegate.

A secret NAME is resolved from, in order:
1. The file named by NAME_FILE (mounted secret)
2. The NAME environment variable
3. /run/secrets/name (Docker secrets default mount)

Usage:
    from sitegate.utils.secrets import get_secret

    key = get_secret("TWO_FACTOR_ENCRYPTION_KEY")
"""
import os
import logging
from typing import Optional
from functools import lru_cache

logger = logging.getLogger(__name__)

# Used only when no encryption key is configured outside production.
DEFAULT_ENCRYPTION_KEY = "default-key"
DOCKER_SECRETS_DIR = "/run/secrets"


def _read_secret_file(path: str) -> Optional[str]:
    if not os.path.isfile(path):
        return None
    try:
        with open(path) as f:
            return f.read().strip()
    except OSError as e:
        logger.warning(f"Cannot read secret file {path}: {e}")
        return None


@lru_cache(maxsize=32)
def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Resolve a secret by name.

    Args:
        name: Secret name, e.g. "TWO_FACTOR_ENCRYPTION_KEY".
        default: Returned when no source has a value.
    """
    file_path = os.environ.get(f"{name}_FILE")
    if file_path:
        value = _read_secret_file(file_path)
        if value:
            logger.debug(f"Secret {name} read from {name}_FILE")
            return value

    value = os.environ.get(name)
    if value:
        return value

    value = _read_secret_file(os.path.join(DOCKER_SECRETS_DIR, name.lower()))
    if value:
        logger.debug(f"Secret {name} read from Docker secrets")
        return value

    return default


def is_production() -> bool:
    """True when APP_ENV marks a production deployment."""
    return os.getenv("APP_ENV", "development").lower() == "production"


def get_encryption_key() -> str:
    """
    Get the deployment-wide key used to encrypt TOTP secrets at rest.

    Falls back to AUTH_SECRET, then to a fixed development key. The fixed
    key is refused in production.

    Raises:
        ValueError: If no key is configured and APP_ENV is production.
    """
    key = get_secret("TWO_FACTOR_ENCRYPTION_KEY") or get_secret("AUTH_SECRET")
    if key:
        return key

    if is_production():
        raise ValueError(
            "TWO_FACTOR_ENCRYPTION_KEY not set. Refusing to use the default "
            "encryption key in production."
        )

    logger.warning(
        "TWO_FACTOR_ENCRYPTION_KEY not set; using the insecure default key. "
        "Do not run like this in production."
    )
    return DEFAULT_ENCRYPTION_KEY

