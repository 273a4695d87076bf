"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# hakgyo.api.deps validates JWT_SECRET at import time, so it must be set
# before anything imports the API.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

from datetime import UTC, date, datetime  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# SQLite has no JSONB; render it as TEXT (SQLAlchemy's JSON processing still
# applies).
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from hakgyo.database.models import Base, User  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB (idempotent)."""
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()


class FakeClock:
    """Settable ``datetime`` clock for the coordinator."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


class FakeMonotonic:
    """Settable ``time.monotonic`` replacement for the in-memory guard."""

    def __init__(self, start: float = 1000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture
def db_engine() -> Engine:
    """In-memory SQLite engine with all Hakgyo tables.

    StaticPool keeps one shared connection so worker threads
    (``asyncio.to_thread``, concurrency tests) see the same database.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


def make_user(
    engine: Engine,
    user_id: str = "u1",
    *,
    name: str = "Siti",
    xp: int = 0,
    level: int = 1,
    current_streak: int = 0,
    longest_streak: int = 0,
    last_active_date: date | None = None,
) -> str:
    """Insert a learner row and return its id."""
    with Session(engine) as session:
        session.add(User(
            id=user_id,
            name=name,
            xp=xp,
            level=level,
            current_streak=current_streak,
            longest_streak=longest_streak,
            last_active_date=last_active_date,
        ))
        session.commit()
    return user_id


@pytest.fixture
def clock() -> FakeClock:
    # 2024-03-10 10:00 in Asia/Jakarta (UTC+7)
    return FakeClock(datetime(2024, 3, 10, 3, 0, tzinfo=UTC))


def make_user_token(sub: str = "u1", **claims) -> str:
    """Create a learner JWT.  Usable as a factory in API tests."""
    import jwt

    from hakgyo.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": sub, **claims}, JWT_SECRET, algorithm=JWT_ALGORITHM)


def make_admin_token(sub: str = "admin-1") -> str:
    return make_user_token(sub, is_admin=True)


@pytest.fixture
def admin_token():
    return make_admin_token()
