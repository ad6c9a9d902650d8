"""
Sitegate - admin authentication core for the marketing site.

This package provides password login with layered two-factor verification,
backup-code recovery, at-rest encryption of TOTP secrets, and a fixed-window
rate limiter guarding the login and API surface.
"""

__version__ = "0.1.0"
__author__ = "Sitegate Team"
