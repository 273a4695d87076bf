"""
hakgyo.engine.guard — Per-User Concurrency Guard
==================================================

Serializes reward processing *per user*: two requests for the same learner
never read-modify-write the aggregate at the same time, while different
learners run fully in parallel.

A held lock expires after ``timeout_seconds`` even if nobody releases it,
which bounds the lockout left behind by a crashed or hung request.  A
second request that finds a live lock is rejected (never queued); the
caller surfaces "request already in progress" and the client retries.

Every successful ``try_acquire`` returns a fresh token, and ``release``
only frees the lock while that token is still the one on record.  A hung
holder whose lock expired and was taken over therefore cannot free its
successor's lock when it finally finishes.

Two implementations share the :class:`ConcurrencyGuard` protocol:

* :class:`InMemoryUserLock` — single-process deployments and tests.
* :class:`DatabaseLeaseLock` — a row-level lease in ``gamification_locks``
  so several API instances share one single-writer-per-user guarantee.

Both take an injected clock so tests simulate expiry without sleeping.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hakgyo.database.models import GamificationLock
from hakgyo.errors import RequestInProgressError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 30.0


class ConcurrencyGuard(Protocol):
    timeout_seconds: float

    def try_acquire(self, user_id: str) -> str | None: ...

    def release(self, user_id: str, token: str) -> None: ...


def _new_token() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# In-process implementation
# ---------------------------------------------------------------------------
class InMemoryUserLock:
    """Thread-safe map of user id → (token, acquisition time).

    Correct only within one process.  Created at service start, drained at
    shutdown; there is no module-level instance.
    """

    def __init__(
        self,
        timeout_seconds: float = DEFAULT_LOCK_TIMEOUT,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._held: dict[str, tuple[str, float]] = {}

    def _live(self, user_id: str, now: float) -> bool:
        entry = self._held.get(user_id)
        return entry is not None and now - entry[1] < self.timeout_seconds

    def try_acquire(self, user_id: str) -> str | None:
        """Token for the new hold, or ``None`` if a live lock exists."""
        now = self._clock()
        with self._lock:
            entry = self._held.get(user_id)
            if entry is not None:
                held_for = now - entry[1]
                if held_for < self.timeout_seconds:
                    return None
                logger.warning(
                    "Taking over stale reward lock for user %s (held %.1fs)",
                    user_id, held_for,
                )
            token = _new_token()
            self._held[user_id] = (token, now)
            return token

    def release(self, user_id: str, token: str) -> None:
        with self._lock:
            entry = self._held.get(user_id)
            if entry is None:
                return
            if entry[0] != token:
                logger.warning(
                    "Late release for user %s ignored: lock was taken over", user_id
                )
                return
            del self._held[user_id]

    def is_locked(self, user_id: str) -> bool:
        now = self._clock()
        with self._lock:
            return self._live(user_id, now)

    def active_locks(self) -> list[str]:
        """User ids whose lock has not yet expired."""
        now = self._clock()
        with self._lock:
            return [uid for uid in self._held if self._live(uid, now)]

    def drain(self) -> list[str]:
        """Drop every entry; returns the ids that were still live (shutdown)."""
        live = self.active_locks()
        with self._lock:
            self._held.clear()
        if live:
            logger.warning("Reward guard drained with %d live lock(s): %s", len(live), live)
        return live


# ---------------------------------------------------------------------------
# Row-level lease implementation
# ---------------------------------------------------------------------------
def _utcnow() -> datetime:
    return datetime.now(UTC)


class DatabaseLeaseLock:
    """Per-user lease stored in ``gamification_locks``.

    Acquire = insert a row, or take over a row older than the timeout, in
    one short transaction.  Release deletes the row only while it still
    carries the caller's token.
    """

    def __init__(
        self,
        engine: Engine,
        timeout_seconds: float = DEFAULT_LOCK_TIMEOUT,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.engine = engine
        self.timeout_seconds = timeout_seconds
        self._clock = clock

    @staticmethod
    def _normalize_dt(value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    def try_acquire(self, user_id: str) -> str | None:
        now = self._clock()
        token = _new_token()
        try:
            with Session(self.engine) as session:
                row = session.get(GamificationLock, user_id, with_for_update=True)
                if row is None:
                    session.add(GamificationLock(user_id=user_id, token=token, acquired_at=now))
                else:
                    age = now - self._normalize_dt(row.acquired_at)
                    if age < timedelta(seconds=self.timeout_seconds):
                        return None
                    logger.warning(
                        "Taking over stale reward lease for user %s (held %.1fs)",
                        user_id, age.total_seconds(),
                    )
                    row.token = token
                    row.acquired_at = now
                session.commit()
        except IntegrityError:
            # Lost the insert race to another instance.
            return None
        return token

    def release(self, user_id: str, token: str) -> None:
        with Session(self.engine) as session:
            deleted = session.execute(
                delete(GamificationLock).where(
                    GamificationLock.user_id == user_id,
                    GamificationLock.token == token,
                )
            ).rowcount
            session.commit()
        if not deleted:
            logger.warning(
                "Late release for user %s ignored: lease was taken over", user_id
            )

    def is_locked(self, user_id: str) -> bool:
        with Session(self.engine) as session:
            acquired_at = session.scalar(
                select(GamificationLock.acquired_at).where(GamificationLock.user_id == user_id)
            )
        if acquired_at is None:
            return False
        age = self._clock() - self._normalize_dt(acquired_at)
        return age < timedelta(seconds=self.timeout_seconds)


# ---------------------------------------------------------------------------
# Context manager
# ---------------------------------------------------------------------------
@contextmanager
def hold(guard: ConcurrencyGuard, user_id: str) -> Iterator[str]:
    """Hold *user_id*'s lock for the block and yield its token.

    The lock is released on every exit path, but only if this hold still
    owns it.  Raises :class:`RequestInProgressError` if the lock is held
    elsewhere.
    """
    token = guard.try_acquire(user_id)
    if token is None:
        raise RequestInProgressError(
            user_id, retry_after=max(1, int(guard.timeout_seconds))
        )
    try:
        yield token
    finally:
        guard.release(user_id, token)
