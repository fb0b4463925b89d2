"""
Test Configuration — Fixtures for async DB, test client, and a seeded hierarchy.

Each test gets its own SQLite file so several sessions can hit the same
database concurrently. Transactions start with BEGIN IMMEDIATE, which makes
SQLite serialize writers the way row locks would on PostgreSQL.
"""

import uuid
from datetime import datetime

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.deps import get_current_user, get_db, get_publisher
from api.main import app
from db.session import Base
from pickups.lifecycle import PickupLifecycleEngine
from realtime.publisher import PickupEventPublisher

T0 = datetime(2026, 3, 2, 9, 0, 0)

SKU = {"device_name": "Galaxy A15", "device_model": "SM-A155F"}


class RecordingPublisher(PickupEventPublisher):
    """Captures published events instead of sending them to Redis."""

    def __init__(self):
        self.events: list[tuple[str, dict, list[str]]] = []

    async def publish(self, event, payload, channels):
        self.events.append((event.value, payload, list(channels)))
        return len(channels)

    def types(self) -> list[str]:
        return [e[0] for e in self.events]


class FailingPublisher(PickupEventPublisher):
    async def publish(self, event, payload, channels):
        raise ConnectionError("redis unavailable")


@pytest.fixture
async def test_engine(tmp_path):
    """File-backed SQLite engine with all tables built."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fieldstock.db'}", echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
async def org(session_factory):
    """
    Seed a hierarchy and one dealer SKU.

      master
      super_admin ── admin ── marketer_a, marketer_b, marketer_c
      admin_2 (no super-admin) ── marketer_d

    The dealer and every marketer except marketer_c (Ikeja) are in Lagos.
    Seeded in a separate session so the returned objects stay detached and
    are not expired when a test's session rolls back.
    """
    async with session_factory() as seed_db:
        return await _seed_org(seed_db)


async def _seed_org(test_db):
    from db.models import DeviceStock, User

    master = User(unique_id="MA-1", first_name="Mara", last_name="Master", role="master_admin", created_at=T0)
    super_admin = User(unique_id="SA-1", first_name="Sola", last_name="Super", role="super_admin")
    test_db.add_all([master, super_admin])
    await test_db.flush()

    admin = User(
        unique_id="AD-1",
        first_name="Ade",
        last_name="Admin",
        role="admin",
        super_admin_id=super_admin.user_id,
        location="Lagos",
    )
    admin_2 = User(unique_id="AD-2", first_name="Bisi", last_name="Admin", role="admin", location="Lagos")
    dealer = User(unique_id="DL-1", first_name="Prime", last_name="Devices", role="dealer", location="Lagos")
    test_db.add_all([admin, admin_2, dealer])
    await test_db.flush()

    marketers = {}
    for key, parent, location in [
        ("marketer_a", admin, "Lagos"),
        ("marketer_b", admin, "Lagos"),
        ("marketer_c", admin, "Ikeja"),
        ("marketer_d", admin_2, "Lagos"),
    ]:
        marketers[key] = User(
            unique_id=f"MK-{key[-1].upper()}",
            first_name=f"Marketer{key[-1].upper()}",
            last_name="Field",
            role="marketer",
            admin_id=parent.user_id,
            location=location,
        )
    test_db.add_all(list(marketers.values()))

    stock = DeviceStock(dealer_id=dealer.user_id, available_quantity=3, overall_quantity=3, **SKU)
    test_db.add(stock)
    await test_db.commit()

    return {
        "master": master,
        "super_admin": super_admin,
        "admin": admin,
        "admin_2": admin_2,
        "dealer": dealer,
        "stock": stock,
        **marketers,
    }


@pytest.fixture
def engine(test_db, publisher):
    return PickupLifecycleEngine(test_db, publisher=publisher)


@pytest.fixture
def current_user():
    """Mutable JWT payload used by the API client; tests set sub/role."""
    return {"sub": str(uuid.UUID(int=0)), "role": "master_admin"}


def login(current_user: dict, user) -> None:
    current_user.update(sub=str(user.user_id), role=user.role)


@pytest.fixture
async def client(test_db, current_user, publisher):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        yield test_db

    def override_get_current_user():
        return current_user

    def override_get_publisher():
        return publisher

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_publisher] = override_get_publisher

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
