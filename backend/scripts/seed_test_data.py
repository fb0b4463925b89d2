"""
Seed Test Data — Creates a demo hierarchy and dealer stock for development.

Run: python scripts/seed_test_data.py
"""

import asyncio
import random
import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_settings
from db.models import DeviceStock, User
from db.session import Base

settings = get_settings()

# Seed data constants
DEVICES = [
    ("Galaxy A15", "SM-A155F"),
    ("Galaxy A25", "SM-A256E"),
    ("Redmi 13C", "23100RN82L"),
    ("Tecno Spark 20", "KJ5"),
    ("Infinix Hot 40", "X6836"),
]
LOCATIONS = ["Lagos", "Abuja", "Ibadan", "Port Harcourt"]


async def seed_data():
    """Create demo data for development."""
    engine = create_async_engine(settings.database_url)
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionLocal() as db:
        # ── Hierarchy ────────────────────────────────────────
        # Dev master-admin id must match api/deps.py DEV_USER_ID
        master = User(
            user_id=uuid.UUID("00000000-0000-0000-0000-000000000001"),
            unique_id="MA-0001",
            first_name="Dev",
            last_name="Master",
            role="master_admin",
        )
        super_admin = User(unique_id="SA-0001", first_name="Sade", last_name="Okafor", role="super_admin")
        db.add_all([master, super_admin])
        await db.flush()

        marketers = []
        for i, location in enumerate(LOCATIONS):
            admin = User(
                unique_id=f"AD-{i + 1:04d}",
                first_name="Admin",
                last_name=location,
                role="admin",
                super_admin_id=super_admin.user_id,
                location=location,
            )
            db.add(admin)
            await db.flush()
            for j in range(3):
                marketer = User(
                    unique_id=f"MK-{i + 1:02d}{j + 1:02d}",
                    first_name=f"Marketer{j + 1}",
                    last_name=location,
                    role="marketer",
                    admin_id=admin.user_id,
                    location=location,
                )
                db.add(marketer)
                marketers.append(marketer)

        # Marketers only pick up from dealers in their own location
        dealers = [
            User(
                unique_id=f"DL-{i + 1:04d}",
                first_name="Prime Devices",
                last_name=location,
                role="dealer",
                location=location,
            )
            for i, location in enumerate(LOCATIONS)
        ]
        db.add_all(dealers)
        await db.flush()

        # ── Dealer Stock ─────────────────────────────────────
        for dealer in dealers:
            for name, model in DEVICES:
                overall = random.randint(10, 60)
                db.add(
                    DeviceStock(
                        dealer_id=dealer.user_id,
                        device_name=name,
                        device_model=model,
                        available_quantity=overall,
                        overall_quantity=overall,
                    )
                )

        await db.commit()
        print(
            f"Seeded: 1 master-admin, 1 super-admin, {len(LOCATIONS)} admins, {len(marketers)} marketers, "
            f"{len(dealers)} dealers, {len(dealers) * len(DEVICES)} SKUs"
        )

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_data())
