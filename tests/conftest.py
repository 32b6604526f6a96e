"""
tests/conftest.py
Shared fixtures: in-memory SQLite database, mocked Redis, an ASGI client
with dependency overrides, and one user per role.
"""

import os

# Settings are read at import time, so configure the environment first
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["VAPID_PUBLIC_KEY"] = ""
os.environ["VAPID_PRIVATE_KEY"] = ""

import uuid
from datetime import date, time, timedelta
from unittest.mock import AsyncMock

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from config.database import Base, get_db
from config.redis_client import get_redis
from main import app
from shared.models.models import (
    RefereeAvailability,
    RefereeDateAvailability,
    RefereeProfile,
    User,
    UserRole,
)
from shared.utils.security import create_access_token, hash_password

TEST_PASSWORD = "password123"
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


# ── Helpers ───────────────────────────────────────────────────

_headers_by_user: dict = {}


def auth_headers(user: User) -> dict:
    """
    Bearer headers for user, cached by identity. A failed request rolls the
    shared session back and expires every loaded row, so later lookups must
    not touch column attributes.
    """
    identity = inspect(user).identity
    user_id = identity[0] if identity else user.id
    if user_id not in _headers_by_user:
        token, _ = create_access_token(str(user.id), user.role.value, user.email)
        _headers_by_user[user_id] = {"Authorization": f"Bearer {token}"}
    return dict(_headers_by_user[user_id])


def match_day(days_ahead: int = 7) -> date:
    return date.today() + timedelta(days=days_ahead)


def weekday_of(d: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return d.isoweekday() % 7


async def create_user(
    db: AsyncSession,
    role: UserRole,
    full_name: str,
    email: str = None,
    **profile_fields,
) -> User:
    user = User(
        id=uuid.uuid4(),
        email=email or f"{uuid.uuid4().hex[:10]}@example.com",
        password_hash=TEST_PASSWORD_HASH,
        full_name=full_name,
        postcode="SW1A 1AA",
        role=role,
    )
    db.add(user)
    if role == UserRole.REFEREE:
        db.add(RefereeProfile(user_id=user.id, **profile_fields))
    await db.commit()
    auth_headers(user)
    return user


async def add_weekly_slot(
    db: AsyncSession, referee: User, day: int, start: time = time(9, 0), end: time = time(17, 0)
) -> RefereeAvailability:
    slot = RefereeAvailability(referee_id=referee.id, day_of_week=day, start_time=start, end_time=end)
    db.add(slot)
    await db.commit()
    return slot


async def add_date_slot(
    db: AsyncSession, referee: User, slot_date: date, start: time = time(9, 0), end: time = time(17, 0)
) -> RefereeDateAvailability:
    slot = RefereeDateAvailability(referee_id=referee.id, date=slot_date, start_time=start, end_time=end)
    db.add(slot)
    await db.commit()
    return slot


def booking_payload(**overrides) -> dict:
    payload = {
        "match_date": match_day().isoformat(),
        "kickoff_time": "10:30:00",
        "location_postcode": "E9 5PF",
        "ground_name": "Hackney Marshes",
        "home_team": "Hackney Colts",
        "away_team": "Leyton Lions",
        "age_group": "u12",
        "format": "7v7",
        "competition_type": "league",
    }
    payload.update(overrides)
    return payload


async def create_confirmed_booking(client: AsyncClient, db: AsyncSession, coach: User, referee: User) -> dict:
    """Book, price and confirm through the API. Returns the confirm response body."""
    await add_weekly_slot(db, referee, weekday_of(match_day()))

    created = await client.post("/bookings", headers=auth_headers(coach), json=booking_payload())
    assert created.status_code == 201

    offers = await client.get("/offers", headers=auth_headers(referee))
    offer = next(o for o in offers.json() if o["booking_id"] == created.json()["id"])

    priced = await client.post(
        f"/offers/{offer['id']}/accept",
        headers=auth_headers(referee),
        json={"price_pounds": "45.00"},
    )
    assert priced.status_code == 200

    confirmed = await client.post(f"/offers/{offer['id']}/confirm", headers=auth_headers(coach))
    assert confirmed.status_code == 200
    return confirmed.json()


# ── Database ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield session


# ── Redis ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def mock_redis():
    redis = AsyncMock()
    redis.exists.return_value = 0
    redis.get.return_value = None
    return redis


# ── Client ────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def client(db, mock_redis):
    async def _get_db():
        try:
            yield db
            await db.commit()
        except Exception:
            await db.rollback()
            raise

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_redis] = lambda: mock_redis

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Users ─────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def coach_user(db) -> User:
    return await create_user(db, UserRole.COACH, "Sam Coach", "coach@example.com")


@pytest_asyncio.fixture
async def other_coach(db) -> User:
    return await create_user(db, UserRole.COACH, "Alex Other", "other.coach@example.com")


@pytest_asyncio.fixture
async def referee_user(db) -> User:
    return await create_user(
        db, UserRole.REFEREE, "Jordan Ref", "referee@example.com",
        county="London", level="Level 7",
    )


@pytest_asyncio.fixture
async def second_referee(db) -> User:
    return await create_user(db, UserRole.REFEREE, "Casey Whistle", "referee2@example.com", county="Essex")


@pytest_asyncio.fixture
async def admin_user(db) -> User:
    return await create_user(db, UserRole.ADMIN, "Admin", "admin@example.com")
