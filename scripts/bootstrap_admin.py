#!/usr/bin/env python3
"""Create the first CampusLink administrator, or promote an existing account.

Usage:
    ADMIN_EMAIL=dean@campus.edu ADMIN_PASSWORD=Secret123 python scripts/bootstrap_admin.py \
        --first-name Ada --last-name Lovelace

    python scripts/bootstrap_admin.py --email dean@campus.edu --password Secret123 \
        --first-name Ada --last-name Lovelace [--department Registry] [--dry-run]

Environment Variables:
    ADMIN_EMAIL: Email for the admin user
    ADMIN_PASSWORD: Password for the admin user (6 to 128 characters)
    DATABASE_URL: PostgreSQL connection string (uses the memory store if not set)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def validate_password(password: str) -> bool:
    return 6 <= len(password) <= 128


_OUTCOMES = {
    "created": "Admin account ready: {email} (id: {user_id})",
    "promoted": "Account {email} now has the admin role",
    "already_admin": "Nothing to do: {email} is already an admin",
    "dry_run": "Dry run finished, no changes written",
}


async def bootstrap_admin(
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    *,
    department: str | None = None,
    dry_run: bool = False,
) -> dict:
    """Create or promote an admin user.

    Returns:
        dict with user_id, email and status ('created', 'promoted',
        'already_admin' or 'dry_run')
    """
    # Imported late so the environment below is in place before settings load
    from campuslink.service.auth import Registration
    from campuslink.service.runtime import get_runtime
    from campuslink.storage.models import AdminProfile, normalize_email

    runtime = get_runtime()
    email = normalize_email(email)
    existing = runtime.store.get_user_by_email(email)

    if existing:
        if existing.is_admin:
            return {"user_id": existing.id, "email": email, "status": "already_admin"}
        if dry_run:
            print(f"[DRY RUN] Would promote existing user {email} to admin")
            return {"user_id": existing.id, "email": email, "status": "dry_run"}
        existing.profile = AdminProfile(department=department or existing.department)
        runtime.store.save_user(existing)
        return {"user_id": existing.id, "email": email, "status": "promoted"}

    if dry_run:
        print(f"[DRY RUN] Would create admin user: {email}")
        return {"user_id": None, "email": email, "status": "dry_run"}

    result = await runtime.auth.register(
        Registration(
            email=email,
            password=password,
            first_name=first_name,
            last_name=last_name,
            role="admin",
            department=department,
        )
    )
    return {
        "user_id": result.user.id,
        "email": result.user.email,
        "status": "created",
        "token": result.token,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for CampusLink",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument("--first-name", default="Campus")
    parser.add_argument("--last-name", default="Admin")
    parser.add_argument("--department", default=None)
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email or not args.password:
        parser.error("an email and a password are required (flags or ADMIN_EMAIL/ADMIN_PASSWORD)")
    if not validate_password(args.password):
        parser.error("the password must be 6 to 128 characters long")

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")
    # The operator is creating the admin, so the self-registration gate does not apply
    os.environ["ALLOW_ADMIN_REGISTRATION"] = "true"
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = asyncio.run(
            bootstrap_admin(
                args.email,
                args.password,
                args.first_name,
                args.last_name,
                department=args.department,
                dry_run=args.dry_run,
            )
        )
    except Exception as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    print(_OUTCOMES[result["status"]].format(**result))


if __name__ == "__main__":
    main()
