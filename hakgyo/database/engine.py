"""
hakgyo.database.engine — Database Connection & Async Helper
============================================================

Reward writes are short, strictly transactional units of work (one profile
row, at most one streak flip, one activity row).  SQLAlchemy + psycopg2 is
synchronous, so the coordinator stays synchronous and the API ships it to
a worker thread:

    1. A request arrives on the event loop.
    2. The route awaits ``run_db(service.process_event, ...)``.
    3. ``run_db`` runs the call on the default thread pool.
    4. The transaction commits or rolls back on that thread.

Usage::

    from hakgyo.database.engine import create_db_engine, get_session, run_db

    engine = create_db_engine()          # DATABASE_URL from .env

    with get_session(engine) as session:
        ...                              # commit on exit, rollback on error

    result = await run_db(service.process_event, user_id, "DAILY_LOGIN")
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from hakgyo.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Server-side cap per statement (PostgreSQL only).  A reward transaction
# that needs longer than this is stuck, not slow.
DEFAULT_STATEMENT_TIMEOUT_MS = 10_000


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build the :class:`Engine` for *url* (default: ``DATABASE_URL``).

    Pool sizing is read from ``DB_POOL_SIZE`` / ``DB_MAX_OVERFLOW``
    (defaults 5 / 10).  Connections are pinged before use and recycled
    hourly.  On PostgreSQL every session gets ``statement_timeout`` from
    ``DB_STATEMENT_TIMEOUT_MS`` so a blocked ``SELECT ... FOR UPDATE``
    cannot hold a learner's lock forever.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    connect_args: dict = {}
    if url.startswith("postgresql"):
        timeout_ms = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", DEFAULT_STATEMENT_TIMEOUT_MS))
        connect_args["options"] = f"-c statement_timeout={timeout_ms}"

    engine = create_engine(
        url,
        echo=False,
        pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
        max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
        connect_args=connect_args,
    )
    logger.info("Database engine created → %s", engine.url.render_as_string(hide_password=True))
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create the gamification tables if they are missing (dev/test only).

    Production schemas are owned by Alembic (``alembic upgrade head``);
    the API only calls this when ``HAKGYO_AUTO_CREATE_TABLES`` is set.
    """
    Base.metadata.create_all(engine)
    logger.info("Gamification tables verified: %s", ", ".join(sorted(Base.metadata.tables)))


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """One transaction: commit when the block exits, roll back if it raises.

    Every reward write in :mod:`hakgyo.services.reward_service` happens
    inside a single ``get_session`` block, which is what makes the profile
    patch, the streak-history flip and the activity row all-or-nothing.
    """
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.debug("Transaction rolled back (%s)", type(exc).__name__)
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a synchronous database function on a background thread.

    Cancelling the awaiting task does not stop the thread.  Callers that
    must roll back on cancellation hand *func* a ``threading.Event`` and set
    it themselves (see ``GamificationService.aprocess_event``).
    """
    return await asyncio.to_thread(func, *args, **kwargs)
