"""
Health endpoint.

Reports the account database and the rate-limit counter store. A Redis
outage is reported but does not make the service unhealthy: the limiter
falls back to process memory.
"""
import os
import time
import logging
from datetime import datetime, timezone
from typing import Tuple

import redis
from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..models import HealthStatus
from ..deps import get_db, get_rate_limiter
from ...auth.rate_limit import RateLimiter
from ...database.account_db import AccountDB

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])


def _elapsed_ms(started: float) -> str:
    return f"{(time.perf_counter() - started) * 1000:.1f}ms"


def probe_database(db: AccountDB) -> Tuple[bool, str]:
    started = time.perf_counter()
    try:
        with db.get_session() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Database probe failed: {e}")
        return False, "unhealthy"
    return True, f"healthy ({_elapsed_ms(started)})"


def probe_rate_limit_store(limiter: RateLimiter) -> str:
    if limiter.redis is None:
        return "in-memory"

    started = time.perf_counter()
    try:
        limiter.redis.ping()
    except redis.RedisError as e:
        logger.warning(f"Redis probe failed: {e}")
        return "redis unhealthy (in-memory fallback)"
    return f"redis healthy ({_elapsed_ms(started)})"


@router.get("", response_model=HealthStatus)
async def health_check(
    db: AccountDB = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Service status; "unhealthy" only when the database is unreachable."""
    db_ok, db_status = probe_database(db)

    return HealthStatus(
        status="healthy" if db_ok else "unhealthy",
        version=os.getenv("APP_VERSION", "0.1.0"),
        services={"database": db_status, "rate_limit": probe_rate_limit_store(limiter)},
        timestamp=datetime.now(timezone.utc),
    )
