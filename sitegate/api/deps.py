"""
FastAPI Dependencies for the Sitegate API.

Provides:
- Authentication dependencies
- Rate limiting per endpoint class
- Database, codec and authenticator wiring
- Redis client for the shared rate-limit store
"""
import os
import logging
from typing import Optional, Dict, Tuple
from functools import lru_cache

import redis
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..auth.authenticator import CredentialAuthenticator
from ..auth.errors import RateLimited, Unauthorized
from ..auth.mfa import get_issuer
from ..auth.rate_limit import API, AUTH, RateLimiter
from ..auth.secret_codec import SecretCodec
from ..auth.security_log import SecurityEventLogger, get_security_logger
from ..database.account_db import AccountDB, get_account_db

logger = logging.getLogger(__name__)


# ============================================
# Redis Client
# ============================================

def get_redis_client() -> Optional[redis.Redis]:
    """
    Build a Redis client for the shared rate-limit store.

    Returns None unless REDIS_HOST is set (and REDIS_ENABLED is not
    "false"), or if Redis is unavailable; callers then keep counters in
    process memory.
    """
    host = os.getenv("REDIS_HOST")
    if not host or os.getenv("REDIS_ENABLED", "true").lower() == "false":
        return None

    port = int(os.getenv("REDIS_PORT", "6379"))
    password = os.getenv("REDIS_PASSWORD", "") or None
    db = int(os.getenv("REDIS_DB", "0"))

    try:
        client = redis.Redis(
            host=host,
            port=port,
            password=password,
            db=db,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        client.ping()
        logger.info(f"Redis connected: {host}:{port}")
        return client
    except redis.RedisError as e:
        logger.warning(f"Redis connection failed: {e}. Rate limiting will use in-memory store.")
        return None


# Security scheme
security = HTTPBearer(auto_error=False)


# ============================================
# Core Dependencies
# ============================================

def get_db() -> AccountDB:
    """Get database connection."""
    return get_account_db()


@lru_cache(maxsize=1)
def get_codec() -> SecretCodec:
    """Secret codec keyed with the deployment encryption key."""
    return SecretCodec()


def get_authenticator(
    db: AccountDB = Depends(get_db),
    codec: SecretCodec = Depends(get_codec),
) -> CredentialAuthenticator:
    return CredentialAuthenticator(db, codec, issuer=get_issuer())


def get_security_events() -> SecurityEventLogger:
    return get_security_logger()


def get_client_ip(request: Request) -> str:
    """Client identity: first X-Forwarded-For hop, then X-Real-IP, then the peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


def client_context(request: Request) -> Tuple[str, str]:
    """(ip, user agent) for security event logging."""
    return get_client_ip(request), request.headers.get("user-agent", "unknown")


# ============================================
# Authentication Dependencies
# ============================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AccountDB = Depends(get_db),
) -> Dict:
    """
    Validate bearer token and return the current account.

    Raises:
        Unauthorized: If token is missing, invalid, or expired.
    """
    if credentials is None:
        raise Unauthorized()

    token = credentials.credentials
    user = db.validate_session(token)

    if user is None:
        raise Unauthorized("Invalid or expired token")

    # Store token in user dict for logout
    user["_session_token"] = token
    return user


# ============================================
# Rate Limiting
# ============================================

def get_rate_limiter(request: Request) -> RateLimiter:
    """The limiter instance built by create_app()."""
    return request.app.state.rate_limiter


def rate_limit(endpoint_class: str):
    """
    Build a dependency enforcing the budget of ``endpoint_class``.

    Raises RateLimited (429 with Retry-After and X-RateLimit-* headers)
    when the client has exhausted the current window.
    """

    async def check(
        request: Request,
        limiter: RateLimiter = Depends(get_rate_limiter),
        events: SecurityEventLogger = Depends(get_security_events),
    ) -> None:
        if os.getenv("RATE_LIMIT_ENABLED", "true").lower() != "true":
            return

        ip = get_client_ip(request)
        decision = limiter.check(endpoint_class, ip)
        if decision.allowed:
            return

        events.log_rate_limited(ip, request.headers.get("user-agent"), endpoint_class, request.url.path)
        raise RateLimited(decision.retry_after, headers=decision.headers())

    return check


auth_rate_limit = rate_limit(AUTH)
api_rate_limit = rate_limit(API)

