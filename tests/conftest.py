from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import licensing.tables  # noqa: F401
from licensing.db import Base
from licensing.license_service import LicenseService
from licensing.store import LicenseStore


class FrozenClock:
    """Deterministic clock; call it to read, advance() to move it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class _FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.store.pop(key, None)
        self.ttls.pop(key, None)


@pytest.fixture
def engine():
    """In-memory SQLite shared across sessions and threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db_session):
    return LicenseStore(db_session)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def fake_redis():
    return _FakeRedis()


@pytest.fixture
def licenses(store, clock):
    return LicenseService(store, clock=clock)


@pytest.fixture
def make_license(licenses):
    """Create a license; extra keyword args are applied as raw column updates."""
    counter = {"n": 0}

    def _make(principal_id: str = None, tier: str = "trial", **columns):
        counter["n"] += 1
        principal_id = principal_id or f"principal-{counter['n']}"
        licenses.create_license(
            principal_id,
            username=f"user-{principal_id}",
            email=f"{principal_id}@example.com",
            tier=tier,
        )
        if columns:
            licenses.store.update_license(principal_id, **columns)
        return licenses.store.get_license(principal_id)

    return _make
