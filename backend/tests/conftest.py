"""
Test fixtures for TaxiHub.

The app runs in-process behind ``httpx.ASGITransport`` against a throwaway
SQLite database (aiosqlite).  Every test starts from empty tables and an
empty offline cache; users are seeded directly through the ORM so each test
only exercises the routes it is about.
"""
import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="taxihub-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR}/taxihub.db"
os.environ["OFFLINE_CACHE_PATH"] = os.path.join(_TMP_DIR, "offline_cache.db")
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ["JWT_SECRET"] = "taxihub-test-secret"

import uuid

import httpx
import pytest
import pytest_asyncio

import taxihub.models  # noqa: F401  (registers the mappers)
from taxihub.database import AsyncSessionLocal, Base, async_engine
from taxihub.main import app
from taxihub.middleware.auth import hash_password
from taxihub.models import MarshalProfile, Principal, TaxiRank
from taxihub.models.base import utcnow
from taxihub.services.offline_cache import get_offline_cache

DEFAULT_PASSWORD = "secret123"

BREE = {"name": "Bree Taxi Rank", "latitude": -26.2005, "longitude": 28.0362}
PARK_STATION = {"name": "Park Station", "latitude": -26.1952, "longitude": 28.0416}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def login(client: httpx.AsyncClient, email: str, password: str = DEFAULT_PASSWORD) -> str:
    """Login and return the JWT token."""
    r = await client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, f"Login failed: {r.text}"
    return r.json()["access_token"]


def auth_headers(token: str) -> dict:
    """Return auth header dict for a given token."""
    return {"Authorization": f"Bearer {token}"}


async def seed_user(
    email: str,
    *,
    role: str | None = None,
    rank_id: uuid.UUID | None = None,
    approved: bool = True,
    suspended: bool = False,
    name: str = "Test User",
    phone: str = "0820000000",
    password: str = DEFAULT_PASSWORD,
) -> uuid.UUID:
    """Insert a principal and its profile directly; returns the id."""
    async with AsyncSessionLocal() as session:
        principal = Principal(email=email, password_hash=hash_password(password))
        session.add(principal)
        await session.flush()
        session.add(MarshalProfile(
            id=principal.id,
            email=email,
            name=name,
            phone=phone,
            role=role,
            rank_id=rank_id,
            approved=approved,
            approved_at=utcnow() if approved else None,
            suspended=suspended,
        ))
        await session.commit()
        return principal.id


async def seed_rank(name: str, latitude: float | None = None, longitude: float | None = None) -> uuid.UUID:
    async with AsyncSessionLocal() as session:
        rank = TaxiRank(
            name=name,
            address=f"{name}, Johannesburg",
            latitude=latitude,
            longitude=longitude,
        )
        session.add(rank)
        await session.commit()
        return rank.id


# ---------------------------------------------------------------------------
# Database / client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def fresh_database():
    """Recreate every table and empty the offline cache before each test."""
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    get_offline_cache().clear_all()
    yield


@pytest_asyncio.fixture
async def client():
    """Async HTTP client wired straight into the ASGI app."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", timeout=30.0) as c:
        yield c


@pytest_asyncio.fixture
async def db():
    async with AsyncSessionLocal() as session:
        yield session


# ---------------------------------------------------------------------------
# Seed data fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def bree_rank_id():
    return await seed_rank(**BREE)


@pytest_asyncio.fixture
async def park_rank_id():
    return await seed_rank(**PARK_STATION)


@pytest_asyncio.fixture
async def admin_id():
    return await seed_user("admin@taxihub.test", role="Admin", name="Admin One")


@pytest_asyncio.fixture
async def admin_headers(client, admin_id):
    """Auth headers for the seeded Admin."""
    return auth_headers(await login(client, "admin@taxihub.test"))


@pytest_asyncio.fixture
async def marshal_id(bree_rank_id):
    return await seed_user(
        "marshal@taxihub.test", role="Marshal", rank_id=bree_rank_id, name="Bree Marshal"
    )


@pytest_asyncio.fixture
async def marshal_headers(client, marshal_id):
    """Auth headers for a Marshal assigned to Bree Taxi Rank."""
    return auth_headers(await login(client, "marshal@taxihub.test"))


@pytest_asyncio.fixture
async def supervisor_id(bree_rank_id):
    return await seed_user(
        "supervisor@taxihub.test", role="Supervisor", rank_id=bree_rank_id, name="Bree Supervisor"
    )


@pytest_asyncio.fixture
async def supervisor_headers(client, supervisor_id):
    """Auth headers for a Supervisor of Bree Taxi Rank."""
    return auth_headers(await login(client, "supervisor@taxihub.test"))
