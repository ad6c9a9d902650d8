#!/usr/bin/env python3
"""
Summarize the Sitegate security event log.

Reads the JSON-lines file at SECURITY_LOG_PATH (or the path given) and
prints event counts, recent failed logins, high-severity events and
suspicious IPs.

Usage:
    python scripts/analyze_security_log.py
    python scripts/analyze_security_log.py --json
    python scripts/analyze_security_log.py --failed
    python scripts/analyze_security_log.py --severity
    python scripts/analyze_security_log.py logs/security.log --threshold 3
"""
import os
import sys
import json
import argparse
from pathlib import Path

# Add project root to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sitegate.auth.log_analysis import (
    SEVERITIES,
    SUSPICIOUS_THRESHOLD,
    analyze,
    format_report,
    format_timestamp,
    load_events,
)

DEFAULT_LOG_PATH = "logs/security.log"


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Security log analyzer")
    parser.add_argument(
        "path",
        nargs="?",
        default=os.getenv("SECURITY_LOG_PATH", DEFAULT_LOG_PATH),
        help="Security log file (default: SECURITY_LOG_PATH or logs/security.log)",
    )
    parser.add_argument("--json", action="store_true", help="Output the full analysis as JSON")
    parser.add_argument("--failed", action="store_true", help="Show only failed login attempts")
    parser.add_argument("--severity", action="store_true", help="Show only the severity breakdown")
    parser.add_argument(
        "--threshold",
        type=int,
        default=SUSPICIOUS_THRESHOLD,
        help=f"Suspicious events before an IP is flagged (default: {SUSPICIOUS_THRESHOLD})",
    )
    args = parser.parse_args(argv)

    if not os.path.exists(args.path):
        print(f"No security log file found at: {args.path}")

    report = analyze(load_events(args.path), threshold=args.threshold)

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, default=str))
        return 0

    if args.failed:
        print(f"\nFailed Login Attempts: {len(report.failed_logins)}\n")
        for event in report.failed_logins:
            print(
                f"{format_timestamp(event.get('timestamp'))} - IP: {event.get('ip')} "
                f"- UserAgent: {event.get('userAgent') or 'unknown'}"
            )
        return 0

    if args.severity:
        print("\nEvents by Severity:")
        for severity in SEVERITIES:
            print(f"  {severity}: {report.by_severity.get(severity, 0)}")
        return 0

    print(format_report(report))
    return 0


if __name__ == "__main__":
    sys.exit(main())
