import json

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.capabilities import SchemaCapabilities
from app.config import Settings
from app.models.base import Base
# Import all models so they register with Base.metadata for create_all
import app.models  # noqa: F401
from app.models import (
    Carrier,
    Contact,
    Driver,
    ImportRecord,
    PadLocation,
    PullPoint,
    RouteLeg,
    Vehicle,
)
from app.shipment_engine.locks import GroupLocks
from app.shipment_engine.service import InboundShipmentService

# In-memory SQLite shared across one test's connections (services commit)
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine):
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(database_url=TEST_DATABASE_URL, batch_max_import_ids=500)


@pytest.fixture
def capabilities() -> SchemaCapabilities:
    return SchemaCapabilities.from_metadata()


async def seed_reference_data(db_session: AsyncSession) -> dict:
    """Reference data: two carriers' drivers, locations and route legs.

    John Smith drives truck 2512, Jane Doe drives T77, both for Acme.
    Ned Stark has a driver row but no carrier. Yard A connects to Site 9
    (42 mi) and to Site 10 / East (15 mi); the two Yard B pull points make
    "Yard B" ambiguous.
    """
    acme = Carrier(name="Acme Hauling")
    db_session.add(acme)

    john = Contact(first_name="John", last_name="Smith")
    jane = Contact(first_name="Jane", last_name="Doe")
    ned = Contact(first_name="Ned", last_name="Stark")
    db_session.add_all([john, jane, ned])

    t2512 = Vehicle(vehicle_number="2512", vehicle_name="Peterbilt 2512")
    t77 = Vehicle(vehicle_number="T77", vehicle_name="Kenworth")
    db_session.add_all([t2512, t77])
    await db_session.flush()

    d_john = Driver(contact_id=john.id, vehicle_id=t2512.id, carrier_id=acme.id)
    d_jane = Driver(contact_id=jane.id, vehicle_id=t77.id, carrier_id=acme.id)
    d_ned = Driver(contact_id=ned.id, vehicle_id=None, carrier_id=None)
    db_session.add_all([d_john, d_jane, d_ned])

    yard_a = PullPoint(name="Yard A")
    yard_b_north = PullPoint(name="Yard B - North")
    yard_b_south = PullPoint(name="Yard B - South")
    site_9 = PadLocation(name="Site 9")
    site_10 = PadLocation(name="Site 10 / East")
    db_session.add_all([yard_a, yard_b_north, yard_b_south, site_9, site_10])
    await db_session.flush()

    leg_9 = RouteLeg(pull_point_id=yard_a.id, pad_location_id=site_9.id, miles=42)
    leg_10 = RouteLeg(pull_point_id=yard_a.id, pad_location_id=site_10.id, miles=15)
    db_session.add_all([leg_9, leg_10])
    await db_session.commit()

    return {
        "carrier_id": acme.id,
        "john_contact_id": john.id,
        "jane_contact_id": jane.id,
        "john_driver_id": d_john.id,
        "jane_driver_id": d_jane.id,
        "ned_driver_id": d_ned.id,
        "truck_2512_id": t2512.id,
        "yard_a_id": yard_a.id,
        "site_9_id": site_9.id,
        "site_10_id": site_10.id,
        "leg_9_id": leg_9.id,
        "leg_10_id": leg_10.id,
    }


@pytest.fixture
async def seeded(db_session) -> dict:
    return await seed_reference_data(db_session)


@pytest.fixture
def seed_data():
    """The reference-data seeder, for tests that build their own database."""
    return seed_reference_data


def _load_payload(**overrides) -> dict:
    payload = {
        "status": "At Terminal",
        "loadnumber": "741",
        "terminal": "Yard A",
        "jobname": "Site 9",
        "carrier": "Acme Hauling\nJohn Smith",
        "truck_trailer": "Truck #: 2512 Trailer #: 88",
        "datetime_at_terminal": "02/12/2026 07:30 AM",
    }
    payload.update(overrides)
    return {k: v for k, v in payload.items() if v is not None}


@pytest.fixture
def load_payload():
    """Vendor payload for shipment 741 run by John Smith, Yard A -> Site 9."""
    return _load_payload


@pytest.fixture
def add_import(db_session):
    """Factory: insert an import record and return its id."""

    async def _add(payload: dict | None = None, **columns) -> int:
        record = ImportRecord(
            payload_json=json.dumps(payload) if payload is not None else None,
            **columns,
        )
        db_session.add(record)
        await db_session.commit()
        return record.id

    return _add


@pytest.fixture
async def client(db_session, capabilities):
    from app.database import get_db
    from app.dependencies import get_capabilities
    from app.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_capabilities] = lambda: capabilities

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def fetch_row(db_session):
    """Factory: read a row fresh from the database as a dict (bypasses the identity map)."""

    async def _fetch(model, row_id: int) -> dict | None:
        table = model.__table__
        row = (await db_session.execute(
            select(table).where(table.c.id == row_id)
        )).mappings().first()
        return dict(row) if row is not None else None

    return _fetch


@pytest.fixture
def service(test_settings, capabilities):
    return InboundShipmentService(test_settings, capabilities, locks=GroupLocks())
