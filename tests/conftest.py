"""Shared pytest fixtures for Frinder Ledger tests.

Every test gets a fresh in-memory SQLite database with foreign keys and
SAVEPOINTs enabled, so the nested-transaction paths behave as they do on
PostgreSQL.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base, configure_sqlite, get_db
from app.models import User
from app.services.credit_service import CreditService
from app.services.match_service import MatchService
from app.services.rate_limiter import RateLimiter
from app.services.realtime import RealtimeHub

GENEROUS_LIMITS = {
    action: {"window_ms": 60_000, "max_count": 10_000}
    for action in ("swipe", "superlike", "message", "profileUpdate")
}

PHOTO_URL = "https://storage.googleapis.com/frinder/photo.jpg"


class RecordingDispatcher:
    """Notification double that remembers every event."""

    def __init__(self, fail: bool = False):
        self.events = []
        self.fail = fail

    async def notify(self, to_user_id, from_user_id, kind):
        if self.fail:
            raise RuntimeError("notifier down")
        self.events.append((to_user_id, from_user_id, kind))


async def create_user(session, uid, **overrides):
    fields = dict(
        id=uid,
        email=f"{uid}@uni.example.edu",
        display_name=uid.title(),
        bio="",
        age=21,
        gender=None,
        city="Lisbon",
        country="PT",
        university="Universidade de Lisboa",
        photos=[PHOTO_URL],
        interests=["music", "hiking"],
        is_profile_complete=True,
        is_banned=False,
    )
    fields.update(overrides)
    user = User(**fields)
    session.add(user)
    await session.flush()
    return user


@pytest.fixture
async def test_engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    configure_sqlite(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def test_session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(test_session_factory):
    async with test_session_factory() as session:
        yield session


@pytest.fixture
async def users(db_session):
    """Three complete profiles: alice, bob and carol."""
    created = {
        uid: await create_user(db_session, uid)
        for uid in ("alice", "bob", "carol")
    }
    await db_session.commit()
    return created


@pytest.fixture
def rate_limiter():
    return RateLimiter(rules=GENEROUS_LIMITS)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def credit_service():
    return CreditService()


@pytest.fixture
def match_service():
    return MatchService()


@pytest.fixture
async def client(test_session_factory, rate_limiter, dispatcher):
    """FastAPI test client with DB and service dependencies overridden."""
    from app.api import deps
    from app.main import app

    async def override_get_db():
        async with test_session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    hub = RealtimeHub()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[deps.get_session_factory] = lambda: test_session_factory
    app.dependency_overrides[deps.get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[deps.get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[deps.get_realtime_hub] = lambda: hub

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test",
    ) as c:
        c.hub = hub
        yield c

    app.dependency_overrides.clear()
