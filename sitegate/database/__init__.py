"""
Database access for Sitegate.

This package provides:
- account_db: accounts, two-factor state and sessions (SQLAlchemy)
"""
