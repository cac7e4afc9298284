"""Seed the database with courts and a few test accounts.

Run with: python -m scripts.seed
Creates the courts, one admin and two players in the institution domain.
"""

import asyncio

from sqlalchemy import select

from courtslot.core.config import settings
from courtslot.core.database import async_session_factory, engine
from courtslot.models import Base, Court, PlayPolicy, User, UserRole

COURTS = ["Court 1", "Court 2", "Court 3", "Court 4"]

USERS = [
    {"email": f"admin@{settings.institution_domain}", "role": UserRole.ADMIN},
    {"email": f"player1@{settings.institution_domain}", "play_policy": PlayPolicy.ONE_DAY},
    {"email": f"player2@{settings.institution_domain}"},
]


async def seed():
    # Create tables (in dev; production runs migrations)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as db:
        # Check if already seeded
        result = await db.execute(select(Court).limit(1))
        if result.scalar_one_or_none():
            print("Database already seeded, skipping.")
            return

        for name in COURTS:
            db.add(Court(name=name, is_active=True))

        for user_data in USERS:
            db.add(User(**user_data))

        await db.commit()

        print(f"Seeded: {settings.app_name}")
        print(f"  {len(COURTS)} courts")
        print(f"  {len(USERS)} users:")
        for user_data in USERS:
            print(f"    {user_data['email']}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
