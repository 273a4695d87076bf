"""
hakgyo.services.repositories — Collaborator Contracts & SQLAlchemy Stores
==========================================================================

The reward coordinator talks to storage only through three narrow
contracts, all bound to one :class:`Session` so their writes share a
single transaction:

* :class:`UserRepository`     — ``load_profile`` / ``save_profile``
* :class:`StreakHistoryStore` — ``latest_current_entry`` / ``close_current_and_open_new``
* :class:`ActivityLogStore`   — ``append`` (append-only, never updated)

None of these commit; the coordinator owns the transaction.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from hakgyo.database.models import ActivityLog, StreakHistory, User
from hakgyo.engine.streak import HISTORY_WINDOW

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class UserProfile:
    """Snapshot of a learner's gamification aggregate."""

    user_id: str
    name: str
    total_xp: int
    current_level: int
    current_streak: int
    longest_streak: int
    last_active_date: date | None
    last_active_at: datetime | None


@dataclass(frozen=True, slots=True)
class ProfilePatch:
    total_xp: int
    current_level: int
    current_streak: int
    longest_streak: int
    last_active_date: date
    last_active_at: datetime


@dataclass(frozen=True, slots=True)
class StreakEntry:
    id: int | None
    user_id: str
    streak_date: date
    streak_length: int
    is_current: bool = True


@dataclass(frozen=True, slots=True)
class ActivityEntry:
    user_id: str
    type: str
    event_type: str
    description: str
    xp_earned: int
    base_xp: int
    streak_bonus: int
    previous_streak: int
    new_streak: int
    previous_level: int
    new_level: int
    streak_updated: bool
    metadata: Mapping[str, Any] | None
    created_at: datetime


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------
class UserRepository(Protocol):
    def load_profile(self, user_id: str) -> UserProfile | None: ...

    def save_profile(self, user_id: str, patch: ProfilePatch) -> None: ...


class StreakHistoryStore(Protocol):
    def latest_current_entry(self, user_id: str) -> StreakEntry | None: ...

    def recent_dates(self, user_id: str, limit: int = HISTORY_WINDOW) -> tuple[date, ...]: ...

    def close_current_and_open_new(self, user_id: str, entry: StreakEntry) -> StreakEntry: ...


class ActivityLogStore(Protocol):
    def append(self, entry: ActivityEntry) -> int: ...


@dataclass(frozen=True, slots=True)
class Repositories:
    """The three stores, sharing one session."""

    users: UserRepository
    streaks: StreakHistoryStore
    activity: ActivityLogStore


# ---------------------------------------------------------------------------
# SQLAlchemy implementations
# ---------------------------------------------------------------------------
class SqlUserRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def load_profile(self, user_id: str) -> UserProfile | None:
        # FOR UPDATE on PostgreSQL; a no-op on SQLite.
        user = self.session.get(User, user_id, with_for_update=True)
        if user is None:
            return None
        return UserProfile(
            user_id=user.id,
            name=user.name,
            total_xp=user.xp or 0,
            current_level=user.level or 1,
            current_streak=user.current_streak or 0,
            longest_streak=user.longest_streak or 0,
            last_active_date=user.last_active_date,
            last_active_at=user.last_active_at,
        )

    def save_profile(self, user_id: str, patch: ProfilePatch) -> None:
        user = self.session.get(User, user_id)
        if user is None:
            raise LookupError(f"User {user_id} vanished mid-transaction")
        user.xp = patch.total_xp
        user.level = patch.current_level
        user.current_streak = patch.current_streak
        user.longest_streak = patch.longest_streak
        user.last_active_date = patch.last_active_date
        user.last_active_at = patch.last_active_at
        self.session.flush()


class SqlStreakHistoryStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def _to_entry(row: StreakHistory) -> StreakEntry:
        return StreakEntry(
            id=row.id,
            user_id=row.user_id,
            streak_date=row.streak_date,
            streak_length=row.streak_length,
            is_current=row.is_current,
        )

    def latest_current_entry(self, user_id: str) -> StreakEntry | None:
        row = self.session.scalar(
            select(StreakHistory)
            .where(StreakHistory.user_id == user_id, StreakHistory.is_current.is_(True))
            .order_by(StreakHistory.streak_date.desc(), StreakHistory.id.desc())
            .limit(1)
        )
        return self._to_entry(row) if row is not None else None

    def recent_dates(self, user_id: str, limit: int = HISTORY_WINDOW) -> tuple[date, ...]:
        dates = self.session.scalars(
            select(StreakHistory.streak_date)
            .where(StreakHistory.user_id == user_id)
            .order_by(StreakHistory.streak_date.desc(), StreakHistory.id.desc())
            .limit(limit)
        ).all()
        return tuple(reversed(dates))

    def close_current_and_open_new(self, user_id: str, entry: StreakEntry) -> StreakEntry:
        # Flip first and flush so the partial unique index never sees two
        # current rows for this user.
        self.session.execute(
            update(StreakHistory)
            .where(StreakHistory.user_id == user_id, StreakHistory.is_current.is_(True))
            .values(is_current=False)
            .execution_options(synchronize_session="fetch")
        )
        row = StreakHistory(
            user_id=user_id,
            streak_date=entry.streak_date,
            streak_length=entry.streak_length,
            is_current=True,
        )
        self.session.add(row)
        self.session.flush()
        return self._to_entry(row)


class SqlActivityLogStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def append(self, entry: ActivityEntry) -> int:
        row = ActivityLog(
            user_id=entry.user_id,
            type=entry.type,
            event_type=entry.event_type,
            description=entry.description,
            xp_earned=entry.xp_earned,
            base_xp=entry.base_xp,
            streak_bonus=entry.streak_bonus,
            previous_streak=entry.previous_streak,
            new_streak=entry.new_streak,
            previous_level=entry.previous_level,
            new_level=entry.new_level,
            streak_updated=entry.streak_updated,
            metadata_=dict(entry.metadata) if entry.metadata is not None else None,
            created_at=entry.created_at,
        )
        self.session.add(row)
        self.session.flush()
        return row.id


def sql_repositories(session: Session) -> Repositories:
    """Default factory: SQLAlchemy stores bound to *session*."""
    return Repositories(
        users=SqlUserRepository(session),
        streaks=SqlStreakHistoryStore(session),
        activity=SqlActivityLogStore(session),
    )
