"""
hakgyo.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- users               — Learner profiles and the gamification aggregate
- streak_history      — One row per streak day; at most one ``is_current`` per user
- activity_log        — Append-only audit trail of every XP/level/streak delta
- gamification_locks  — Row-level leases for the distributed concurrency guard

Only :mod:`hakgyo.services.reward_service` writes to ``users`` gamification
columns, ``streak_history`` and ``activity_log``.
"""

from __future__ import annotations

import enum
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Hakgyo ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ActivityType(enum.StrEnum):
    """Activity-log taxonomy (what the feed groups and filters by)."""
    LOGIN = "LOGIN"
    COMPLETE_MATERI = "COMPLETE_MATERI"
    COMPLETE_QUIZ = "COMPLETE_QUIZ"
    VOCABULARY_PRACTICE = "VOCABULARY_PRACTICE"
    CREATE_POST = "CREATE_POST"
    LIKE_POST = "LIKE_POST"
    COMMENT_POST = "COMMENT_POST"
    JOIN_CLASS = "JOIN_CLASS"
    ACHIEVEMENT = "ACHIEVEMENT"
    OTHER = "OTHER"


# ---------------------------------------------------------------------------
# Users — one row per learner
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), default=None)
    xp: Mapped[int] = mapped_column(Integer, default=0)
    level: Mapped[int] = mapped_column(Integer, default=1)
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0)
    # Calendar date in the reference timezone; the streak math runs on this.
    last_active_date: Mapped[date | None] = mapped_column(Date, default=None)
    last_active_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    streak_history: Mapped[list[StreakHistory]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    activity_logs: Mapped[list[ActivityLog]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_users_xp_desc", "xp"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id!r} lvl={self.level} streak={self.current_streak}>"


# ---------------------------------------------------------------------------
# StreakHistory — one row per streak day
# ---------------------------------------------------------------------------
class StreakHistory(Base):
    __tablename__ = "streak_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    streak_date: Mapped[date] = mapped_column(Date, nullable=False)
    streak_length: Mapped[int] = mapped_column(Integer, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="streak_history")

    __table_args__ = (
        # At most one current row per user
        Index(
            "ix_streak_history_one_current",
            "user_id",
            unique=True,
            postgresql_where=is_current.is_(True),
            sqlite_where=is_current.is_(True),
        ),
        Index("ix_streak_history_user_date", "user_id", "streak_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<StreakHistory user={self.user_id!r} date={self.streak_date} "
            f"len={self.streak_length} current={self.is_current}>"
        )


# ---------------------------------------------------------------------------
# ActivityLog — append-only audit trail
# ---------------------------------------------------------------------------
class ActivityLog(Base):
    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    xp_earned: Mapped[int] = mapped_column(Integer, default=0)
    base_xp: Mapped[int] = mapped_column(Integer, default=0)
    streak_bonus: Mapped[int] = mapped_column(Integer, default=0)
    previous_streak: Mapped[int] = mapped_column(Integer, default=0)
    new_streak: Mapped[int] = mapped_column(Integer, default=0)
    previous_level: Mapped[int] = mapped_column(Integer, default=1)
    new_level: Mapped[int] = mapped_column(Integer, default=1)
    streak_updated: Mapped[bool] = mapped_column(Boolean, default=False)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="activity_logs")

    __table_args__ = (
        Index("ix_activity_log_user_time", "user_id", "created_at"),
        Index("ix_activity_log_created_at", "created_at"),
        Index("ix_activity_log_type_time", "type", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ActivityLog id={self.id} user={self.user_id!r} "
            f"event={self.event_type} xp={self.xp_earned}>"
        )


# ---------------------------------------------------------------------------
# GamificationLock — per-user lease (multi-instance concurrency guard)
# ---------------------------------------------------------------------------
class GamificationLock(Base):
    __tablename__ = "gamification_locks"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<GamificationLock user={self.user_id!r} at={self.acquired_at}>"
