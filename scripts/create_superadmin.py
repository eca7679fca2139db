#!/usr/bin/env python3
"""
Create or repair a SuperAdmin account.

Usage:
    # Create (or promote) an account and print its status:
    python scripts/create_superadmin.py --email root@ndma.gov.in --name "Super Admin" --password Secret123

    # Only report the current SuperAdmin accounts:
    python scripts/create_superadmin.py --check

An existing account with the given email is promoted: its role becomes
SuperAdmin, its permissions are recomputed and it is approved and activated.
"""
import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select  # noqa: E402

from disaster_training.database import async_session_maker, session_scope, init_db, close_db  # noqa: E402
from disaster_training.models.database_models import User  # noqa: E402
from disaster_training.models.roles import Role  # noqa: E402
from disaster_training.security import hash_password  # noqa: E402


def print_status(user: User) -> None:
    print(f"👤 {user.name} <{user.email}>")
    print(f"   - Role: {user.role}  State: {user.state}")
    print(f"   - Approved: {user.is_approved}  Active: {user.is_active}")
    granted = [name for name, value in user.permissions.items() if value]
    print(f"   - Permissions: {', '.join(granted) or 'none'}")


async def check() -> int:
    async with async_session_maker() as db:
        result = await db.execute(select(User).where(User.role == Role.SUPER_ADMIN.value))
        admins = result.scalars().all()
        if not admins:
            print("❌ No SuperAdmin found")
            return 1
        for admin in admins:
            print_status(admin)
        return 0


async def create_or_repair(email: str, name: str, password: str = None) -> int:
    async with session_scope() as db:
        result = await db.execute(select(User).where(User.email == email.strip().lower()))
        user = result.scalar_one_or_none()

        if user is None:
            if not password:
                print("❌ --password is required to create a new account")
                return 1
            user = User.create_with_role(
                name=name,
                email=email,
                password_hash=hash_password(password),
                role=Role.SUPER_ADMIN.value,
            )
            db.add(user)
            print("✅ SuperAdmin created")
        else:
            user.change_role(Role.SUPER_ADMIN.value)
            if password:
                user.password_hash = hash_password(password)
            print("✅ Existing account promoted to SuperAdmin")

        user.is_approved = True
        user.is_active = True
        user.rejection_reason = None
        await db.flush()
        await db.refresh(user)
        print_status(user)
        return 0


async def run(args) -> int:
    await init_db()
    try:
        if args.check:
            return await check()
        return await create_or_repair(args.email, args.name, args.password)
    finally:
        await close_db()


def main():
    parser = argparse.ArgumentParser(description="Create or repair a SuperAdmin account")
    parser.add_argument("--email", "-e", help="Account email")
    parser.add_argument("--name", "-n", default="Super Admin", help="Display name for a new account")
    parser.add_argument("--password", "-p", help="Password (required when creating)")
    parser.add_argument("--check", action="store_true", help="Only report existing SuperAdmins")

    args = parser.parse_args()
    if not args.check and not args.email:
        parser.error("--email is required unless --check is given")

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
