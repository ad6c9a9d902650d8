"""
Security event logging.

Events are serialized as JSON and emitted on the ``sitegate.security``
logger. Attach a file with configure_security_log() (SECURITY_LOG_PATH).
Emitting is fire-and-forget: a failing sink never breaks the request.
"""
import os
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("sitegate.security")

LOW = "LOW"
MEDIUM = "MEDIUM"
HIGH = "HIGH"
CRITICAL = "CRITICAL"


def configure_security_log(path: Optional[str] = None) -> Optional[logging.Handler]:
    """
    Attach a JSON-lines file handler to the security logger.

    Args:
        path: Log file path. Defaults to SECURITY_LOG_PATH; no-op if unset.

    Calling it again for a file that is already attached returns the
    existing handler, so each event is written once.

    Returns:
        The handler writing to the file, or None.
    """
    path = path or os.getenv("SECURITY_LOG_PATH")
    if not path:
        return None

    path = os.path.abspath(path)
    for existing in security_logger.handlers:
        if isinstance(existing, logging.FileHandler) and existing.baseFilename == path:
            return existing

    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, mode=0o750, exist_ok=True)

    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter("%(message)s"))
    security_logger.addHandler(handler)
    security_logger.setLevel(logging.INFO)
    return handler


class SecurityEventLogger:
    """Emits security-relevant outcomes (logins, 2FA, rate limits)."""

    def log_event(
        self,
        event_type: str,
        severity: str,
        ip: str,
        user_agent: Optional[str] = None,
        account_id: Optional[str] = None,
        status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            event = {
                "type": event_type,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "severity": severity,
                "ip": ip,
                "userAgent": user_agent,
                "userId": account_id,
                "status": status,
                "details": details,
            }
            level = logging.WARNING if severity in (HIGH, CRITICAL) else logging.INFO
            security_logger.log(level, json.dumps(event, default=str))
        except Exception as e:
            logger.warning(f"Failed to log security event {event_type}: {e}")

    def log_login_attempt(
        self,
        ip: str,
        user_agent: Optional[str],
        success: bool,
        account_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.log_event(
            "SUCCESSFUL_LOGIN" if success else "FAILED_LOGIN",
            LOW if success else HIGH,
            ip,
            user_agent,
            account_id,
            status="SUCCESS" if success else "FAILED",
            details={"reason": reason} if reason else None,
        )

    def log_rate_limited(self, ip: str, user_agent: Optional[str], endpoint_class: str, path: str) -> None:
        self.log_event(
            "RATE_LIMITED",
            MEDIUM,
            ip,
            user_agent,
            details={"class": endpoint_class, "path": path},
        )


_security_events: Optional[SecurityEventLogger] = None


def get_security_logger() -> SecurityEventLogger:
    """Get singleton security event logger."""
    global _security_events
    if _security_events is None:
        _security_events = SecurityEventLogger()
    return _security_events
