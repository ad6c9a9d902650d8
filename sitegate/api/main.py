"""
Sitegate REST API - Main Application.

Authentication service for the marketing site's admin backend.

Usage:
    # Development
    uvicorn sitegate.api.main:app --reload --port 8000

    # Production (counters are per process unless REDIS_HOST is configured)
    uvicorn sitegate.api.main:app --host 0.0.0.0 --port 8000
"""
import os
import time
import uuid
import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from .routes import auth_router, two_factor_router, user_router, health_router
from .deps import get_db, get_redis_client
from ..auth.errors import AuthError
from ..auth.rate_limit import RateLimiter
from ..auth.security_log import configure_security_log

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "X-Robots-Tag": "noindex, nofollow",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

API_TITLE = "Sitegate API"
API_VERSION = os.getenv("APP_VERSION", "0.1.0")
API_DESCRIPTION = """
**Admin authentication for the marketing site**

- **Password login** with one generic rejection for unknown accounts and wrong passwords
- **Two-factor authentication** with TOTP apps and single-use backup codes
- **Rate limiting** per client IP: `auth` class for login, `api` class for everything else

## Login flow

1. `POST /auth/login` with email and password
2. On `two_factor_required`, `POST /2fa/login-verify` with email and code
3. Send the session token as `Authorization: Bearer <token>`

## Enrollment

1. `POST /2fa/setup` returns a QR code and an encrypted secret
2. `POST /2fa/verify` with a code and the encrypted secret returns 8 backup codes
"""


class RequestIdFilter(logging.Filter):
    """Default request_id for records logged outside a request."""

    def filter(self, record):
        if not hasattr(record, "request_id"):
            record.request_id = "-"
        return True


def configure_logging() -> None:
    """Root logging from LOG_LEVEL / LOG_FORMAT, with request ids."""
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=os.getenv("LOG_FORMAT", DEFAULT_LOG_FORMAT),
    )
    for handler in logging.getLogger().handlers:
        handler.addFilter(RequestIdFilter())


configure_logging()
logger = logging.getLogger(__name__)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the schema, then keep the rate-limit sweeper running until shutdown."""
    logger.info(f"Starting {API_TITLE} v{API_VERSION}")
    get_db().init_schema()

    interval = float(os.getenv("RATE_LIMIT_SWEEP_SECONDS", "60"))
    sweeper = asyncio.create_task(app.state.rate_limiter.run_sweeper(interval))
    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        logger.info(f"{API_TITLE} stopped")


# ============================================
# Middleware and exception handlers
# ============================================

async def track_request(request: Request, call_next):
    """Tag the request with an id, time it, and add security headers."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    started = time.perf_counter()

    try:
        response = await call_next(request)
    except Exception:
        logger.exception(f"{request.method} {request.url.path} crashed", extra={"request_id": request_id})
        raise

    elapsed_ms = (time.perf_counter() - started) * 1000
    if request.url.path != "/health":
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f}ms",
            extra={"request_id": request_id},
        )

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.2f}"
    response.headers.update(SECURITY_HEADERS)
    return response


async def handle_auth_error(request: Request, exc: AuthError):
    body = {"error": exc.message, "detail": None, "code": exc.code}
    if exc.status_code >= 500:
        # Never leak why decryption or storage failed
        logger.error(f"Auth core fault: {exc}", extra={"request_id": _request_id(request)})
        body = {"error": "Internal Server Error", "detail": None, "code": exc.code, "request_id": _request_id(request)}

    return JSONResponse(status_code=exc.status_code, content=body, headers=exc.headers or None)


async def handle_validation_error(request: Request, exc: RequestValidationError):
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"] if part != "body")
        problems.append(f"{field}: {error['msg']}" if field else error["msg"])

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid input", "detail": "; ".join(problems), "code": "invalid_input"},
    )


async def handle_unexpected_error(request: Request, exc: Exception):
    request_id = _request_id(request)
    logger.error(f"Unhandled {type(exc).__name__}: {exc}", exc_info=True, extra={"request_id": request_id})

    show_detail = os.getenv("APP_ENV") == "development"
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if show_detail else None,
            "code": "internal_error",
            "request_id": request_id,
        },
    )


def create_app(rate_limiter: Optional[RateLimiter] = None) -> FastAPI:
    """
    Build the application.

    Args:
        rate_limiter: Limiter instance; one is built from the environment
            (Redis-backed when REDIS_HOST is set) if omitted.
    """
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=lifespan,
    )

    app.state.rate_limiter = rate_limiter or RateLimiter(get_redis_client())
    configure_security_log()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )
    app.middleware("http")(track_request)

    app.add_exception_handler(AuthError, handle_auth_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    for router in (health_router, auth_router, two_factor_router, user_router):
        app.include_router(router)

    @app.get("/", include_in_schema=False)
    async def index():
        return {"name": API_TITLE, "version": API_VERSION, "docs": "/docs", "health": "/health"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("sitegate.api.main:app", host="0.0.0.0", port=8000, reload=True)
