"""
Offline analysis of the security event log.

Reads the JSON-lines file written through configure_security_log() and
summarizes it: counts by type and severity, failed logins, high-severity
events and IPs with repeated suspicious activity.

Used by scripts/analyze_security_log.py.
"""
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List

from .security_log import HIGH, CRITICAL, LOW, MEDIUM

logger = logging.getLogger(__name__)

SEVERITIES = (LOW, MEDIUM, HIGH, CRITICAL)
SUSPICIOUS_THRESHOLD = 5
RECENT_LIMIT = 10

FAILED_LOGIN_TYPES = ("FAILED_LOGIN", "LOGIN_FAILURE")


@dataclass
class LogReport:
    """Summary of a security log."""
    total: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    by_severity: Dict[str, int] = field(default_factory=dict)
    failed_logins: List[Dict[str, Any]] = field(default_factory=list)
    high_severity: List[Dict[str, Any]] = field(default_factory=list)
    suspicious_ips: Dict[str, int] = field(default_factory=dict)
    threshold: int = SUSPICIOUS_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "byType": self.by_type,
            "bySeverity": self.by_severity,
            "failedLogins": self.failed_logins,
            "highSeverity": self.high_severity,
            "suspiciousIPs": self.suspicious_ips,
        }


def parse_events(lines: Iterable[str]) -> List[Dict[str, Any]]:
    """Decode one event per line; blank and malformed lines are skipped."""
    events = []
    for number, line in enumerate(lines, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed line {number}")
            continue
        if isinstance(event, dict) and "type" in event:
            events.append(event)
    return events


def load_events(path: str) -> List[Dict[str, Any]]:
    """
    Read events from a security log file.

    Returns:
        Events in file order; empty if the file does not exist.
    """
    try:
        with open(path, encoding="utf-8") as f:
            return parse_events(f)
    except FileNotFoundError:
        logger.info(f"No security log at {path}")
        return []


def count_by(events: List[Dict[str, Any]], key: str) -> Dict[str, int]:
    counts = defaultdict(int)
    for event in events:
        counts[event.get(key) or "UNKNOWN"] += 1
    return dict(counts)


def is_failed_login(event: Dict[str, Any]) -> bool:
    if event.get("type") in FAILED_LOGIN_TYPES:
        return True
    return event.get("type") == "LOGIN_ATTEMPT" and event.get("status") == "FAILED"


def is_high_severity(event: Dict[str, Any]) -> bool:
    return event.get("severity") in (HIGH, CRITICAL)


def is_suspicious(event: Dict[str, Any]) -> bool:
    event_type = event.get("type") or ""
    return "FAILED" in event_type or "ERROR" in event_type or is_high_severity(event)


def suspicious_ips(events: List[Dict[str, Any]], threshold: int = SUSPICIOUS_THRESHOLD) -> Dict[str, int]:
    """IPs with at least ``threshold`` suspicious events, most active first."""
    counts = count_by([e for e in events if is_suspicious(e)], "ip")
    flagged = {ip: count for ip, count in counts.items() if count >= threshold}
    return dict(sorted(flagged.items(), key=lambda item: item[1], reverse=True))


def analyze(events: List[Dict[str, Any]], threshold: int = SUSPICIOUS_THRESHOLD) -> LogReport:
    return LogReport(
        total=len(events),
        by_type=count_by(events, "type"),
        by_severity=count_by(events, "severity"),
        failed_logins=[e for e in events if is_failed_login(e)],
        high_severity=[e for e in events if is_high_severity(e)],
        suspicious_ips=suspicious_ips(events, threshold),
        threshold=threshold,
    )


def format_timestamp(timestamp: str) -> str:
    """Local-time rendering of an ISO timestamp; unparseable values pass through."""
    try:
        return datetime.fromisoformat(timestamp).astimezone().strftime("%Y-%m-%d %H:%M:%S")
    except (TypeError, ValueError):
        return str(timestamp)


def format_report(report: LogReport, recent: int = RECENT_LIMIT) -> str:
    """Human-readable report, as printed by the analysis script."""
    lines = ["=" * 60, "SECURITY LOG ANALYSIS REPORT", "=" * 60, f"Total events analyzed: {report.total}"]

    if report.total == 0:
        lines.append("No events to analyze.")
        return "\n".join(lines)

    lines.append("\n--- Events by Type ---")
    for event_type, count in sorted(report.by_type.items(), key=lambda item: item[1], reverse=True):
        lines.append(f"  {event_type}: {count}")

    lines.append("\n--- Events by Severity ---")
    for severity in SEVERITIES:
        lines.append(f"  {severity}: {report.by_severity.get(severity, 0)}")

    if report.failed_logins:
        lines.append(f"\n--- Failed Login Attempts: {len(report.failed_logins)} ---")
        for event in report.failed_logins[-recent:]:
            lines.append(f"  {format_timestamp(event.get('timestamp'))} - IP: {event.get('ip')}")

    if report.high_severity:
        lines.append(f"\n--- High/Critical Severity Events: {len(report.high_severity)} ---")
        for event in report.high_severity[-recent:]:
            lines.append(
                f"  [{event.get('severity')}] {event.get('type')} - "
                f"{format_timestamp(event.get('timestamp'))} - IP: {event.get('ip')}"
            )

    if report.suspicious_ips:
        lines.append(f"\n--- Suspicious IPs ({report.threshold}+ suspicious events): {len(report.suspicious_ips)} ---")
        for ip, count in report.suspicious_ips.items():
            lines.append(f"  {ip}: {count} suspicious events")

    lines.append("\n" + "=" * 60)
    return "\n".join(lines)
