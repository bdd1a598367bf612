#!/usr/bin/env python3
"""
TaskFlow — Admin bootstrap
Creates the first admin account, or promotes an existing user to admin.
Registration only ever creates workers, so a fresh install needs this once.

Usage:
    python scripts/create_admin.py --email lead@example.com
    python scripts/create_admin.py --email lead@example.com --first-name Lee --last-name Lead
    ADMIN_PASSWORD=... python scripts/create_admin.py --email lead@example.com --reset-password
"""

import os
import sys
import asyncio
import argparse
import getpass
from pathlib import Path

# backend/ holds the application modules
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "backend"))

from auth import AuthService, MIN_PASSWORD_LENGTH  # noqa: E402
from database import get_db_context, init_db, close_db  # noqa: E402
from models import UserRole  # noqa: E402


def _read_password() -> str:
    password = os.getenv("ADMIN_PASSWORD")
    if password:
        return password
    password = getpass.getpass("Admin password: ")
    if password != getpass.getpass("Repeat password: "):
        sys.exit("Passwords don't match")
    return password


async def bootstrap_admin(email: str, first_name=None, last_name=None, reset_password: bool = False) -> str:
    await init_db()
    try:
        async with get_db_context() as db:
            user = await AuthService.get_user_by_email(email, db)
            if user is not None and user.deleted_at is None:
                user.role = UserRole.ADMIN
                user.is_active = True
                if reset_password:
                    user.password_hash = AuthService.hash_password(_read_password())
                return f"Promoted existing user {user.email} ({user.id}) to admin"
            if user is not None:
                sys.exit(f"{email} belongs to a deleted account; pick another email")

            password = _read_password()
            if len(password) < MIN_PASSWORD_LENGTH:
                sys.exit(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
            user = await AuthService.create_user(
                db, email=email, password=password,
                first_name=first_name, last_name=last_name, role=UserRole.ADMIN,
            )
            return f"Created admin {user.email} ({user.id})"
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Create or promote a TaskFlow admin")
    parser.add_argument("--email", required=True, help="Admin email address")
    parser.add_argument("--first-name", default=None)
    parser.add_argument("--last-name", default=None)
    parser.add_argument("--reset-password", action="store_true",
                        help="Also reset the password when the user already exists")
    args = parser.parse_args()

    if not os.getenv("JWT_SECRET_KEY"):
        print("⚠️  JWT_SECRET_KEY is not set; the API will issue tokens with an ephemeral key")

    message = asyncio.run(bootstrap_admin(args.email, args.first_name, args.last_name, args.reset_password))
    print(f"✅ {message}")


if __name__ == "__main__":
    main()
