#!/usr/bin/env python3
"""
Initialize the Sitegate database.

Run this after first setup.

This script:
1. Creates the accounts and sessions tables
2. Creates the initial ADMIN account from ADMIN_EMAIL / ADMIN_PASSWORD
"""
import sys
from pathlib import Path

# Add project root to Python path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from sitegate.database.account_db import AccountDB
from sitegate.database.seed import seed_admin


def main():
    print("=" * 60)
    print("Sitegate Database Initialization")
    print("=" * 60)

    db = AccountDB()

    print("\n[1/2] Schema:")
    db.init_schema()
    print("  Tables: accounts, sessions")

    print("\n[2/2] Admin account:")
    account_id, created = seed_admin(db)
    if created:
        print(f"  Created admin account (id={account_id})")
    else:
        print(f"  Admin account already present (id={account_id})")

    print("\n" + "=" * 60)
    print("Database initialization complete!")
    print("=" * 60)


if __name__ == "__main__":
    main()
