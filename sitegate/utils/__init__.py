"""
Shared utilities for Sitegate.

This package provides:
- Secrets management
- Encryption key lookup
"""
from .secrets import get_secret, get_encryption_key

__all__ = ["get_secret", "get_encryption_key"]
