"""
Database seeding script for initial users.

Creates ADMIN, COLLECTOR and USER accounts for testing and development.
Run this script after database is set up but before first use:

    python -m ecotrack.seed_users
"""

import asyncio

from sqlalchemy import select

from ecotrack.app.db.session import AsyncSessionLocal
from ecotrack.app.models.user import User
from ecotrack.app.models.enums import UserRole
from ecotrack.app.core.security import get_password_hash

SEED_USERS = [
    {
        "name": "Admin User",
        "email": "admin@ecotrack.com",
        "username": "admin",
        "password": "admin123",
        "role": UserRole.ADMIN,
        "is_superuser": True,
    },
    {
        "name": "John Collector",
        "email": "collector@ecotrack.com",
        "username": "collector",
        "password": "collector123",
        "role": UserRole.COLLECTOR,
        "phone": "+1234567891",
    },
    {
        "name": "Jane Citizen",
        "email": "user@ecotrack.com",
        "username": "citizen",
        "password": "user123",
        "role": UserRole.USER,
        "phone": "+1234567892",
    },
]


async def seed_users():
    """
    Seed one user per role. Existing usernames are left untouched.
    """
    async with AsyncSessionLocal() as db:
        print("🌱 Starting user seeding...")

        created = []
        for seed in SEED_USERS:
            result = await db.execute(select(User).where(User.username == seed["username"]))
            if result.scalar_one_or_none():
                print(f"ℹ️  {seed['role'].value} user '{seed['username']}' already exists, skipping")
                continue

            db.add(User(
                name=seed["name"],
                email=seed["email"],
                username=seed["username"],
                phone=seed.get("phone"),
                hashed_password=get_password_hash(seed["password"]),
                role=seed["role"],
                is_active=True,
                is_superuser=seed.get("is_superuser", False)
            ))
            created.append(seed)
            print(f"✅ Created {seed['role'].value} user (username: {seed['username']})")

        await db.commit()

        print("\n🎉 User seeding completed successfully!")
        for seed in created:
            print(f"  - {seed['role'].value:<10} {seed['username']} / {seed['password']}")


if __name__ == "__main__":
    asyncio.run(seed_users())
