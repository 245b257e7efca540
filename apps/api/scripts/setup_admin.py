"""Promote a user to ADMIN, creating the account if it does not exist.

Usage:
    python scripts/setup_admin.py admin@example.com [--password ...] [--credits 1000]
"""

import argparse
import asyncio
import os
import sys
from typing import Optional

# Add parent dir to path to find app modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import func
from sqlalchemy.future import select

from database import Base, async_session_maker, engine
from models.credit_transaction import BONUS
from models.user import ROLE_ADMIN, User
from services.credits import add_credits
from services.passwords import hash_password


async def setup_admin(email: str, password: Optional[str], name: str, starting_credits: int) -> None:
    print("🔧 Setting up admin user...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    normalized = email.strip().lower()
    async with async_session_maker() as db:
        result = await db.execute(select(User).where(func.lower(User.email) == normalized))
        user = result.scalar_one_or_none()

        if user:
            user.role = ROLE_ADMIN
            user.is_active = True
            if password:
                user.password_hash = hash_password(password)
            await db.commit()
            print(f"✅ User {normalized} has been updated to ADMIN role")
            await engine.dispose()
            return

        user = User(
            email=normalized,
            name=name,
            role=ROLE_ADMIN,
            credits=0,
            is_active=True,
            password_hash=hash_password(password) if password else None,
        )
        db.add(user)
        await db.flush()
        if starting_credits > 0:
            await add_credits(
                user.id,
                db,
                amount=starting_credits,
                transaction_type=BONUS,
                description="Initial admin credits",
            )
        else:
            await db.commit()
        print(f"✅ New admin user created: {normalized}")

    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("email")
    parser.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"))
    parser.add_argument("--name", default="Admin User")
    parser.add_argument("--credits", type=int, default=1000)
    args = parser.parse_args()

    try:
        asyncio.run(setup_admin(args.email, args.password, args.name, args.credits))
    except Exception as exc:
        print(f"❌ Error setting up admin user: {exc}")
        sys.exit(1)
    print("🎉 Admin setup completed successfully!")


if __name__ == "__main__":
    main()
