#!/usr/bin/env python3
"""Bootstrap an admin account for testing and initial setup.

Usage:
    # Using environment variables:
    ADMIN_USERNAME=admin ADMIN_PASSWORD='Secure#Pass123' python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --username admin --password 'Secure#Pass123'

Environment Variables:
    ADMIN_USERNAME: Username for the admin account
    ADMIN_PASSWORD: Password for the admin account (must pass login validation)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

ADMIN_ROLE = "ADMIN"


def bootstrap_admin(username: str, password: str, dry_run: bool = False) -> dict:
    """Create an admin account, or unlock and re-enable an existing one.

    Returns:
        dict with user_id, username, and status
    """
    # Import here to avoid loading config before env vars are set
    from sessionauth.service.runtime import get_runtime

    runtime = get_runtime()
    existing = runtime.store.get_user_by_username(username)

    if existing:
        if existing.role == ADMIN_ROLE and existing.active and not existing.locked:
            print(f"User {username} already exists as admin (id: {existing.id})")
            return {"user_id": existing.id, "username": username, "status": "already_admin"}
        if dry_run:
            print(f"[DRY RUN] Would re-enable existing user {username}")
            return {"user_id": existing.id, "username": username, "status": "dry_run"}
        runtime.store.set_account_status(existing.id, active=True, locked=False)
        print(f"Re-enabled existing user {username} (id: {existing.id})")
        return {"user_id": existing.id, "username": username, "status": "reenabled"}

    if dry_run:
        print(f"[DRY RUN] Would create admin user: {username}")
        return {"user_id": None, "username": username, "status": "dry_run"}

    user = runtime.store.create_user(
        username, runtime.passwords.hash(password), role=ADMIN_ROLE
    )
    print(f"Created admin user: {username} (id: {user.id})")
    return {"user_id": user.id, "username": username, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin account for sessionauth",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("ADMIN_USERNAME"),
        help="Admin username (or set ADMIN_USERNAME env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.username:
        print("Error: --username or ADMIN_USERNAME environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    from sessionauth.service.validation import validate_login_request

    checked = validate_login_request(args.username, args.password)
    if not checked.ok:
        for field, message in checked.errors.items():
            print(f"Error: {field}: {message}")
        sys.exit(1)

    # Use memory store if no database configured
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    try:
        result = bootstrap_admin(args.username, args.password, args.dry_run)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAdmin user created successfully!")
        print(f"  Username: {result['username']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "reenabled":
        print("\nExisting user unlocked and re-enabled.")
    elif result["status"] == "already_admin":
        print("\nNo changes needed - user is already an admin.")


if __name__ == "__main__":
    main()
