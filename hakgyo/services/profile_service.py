"""
hakgyo.services.profile_service — Read Models
===============================================

Read-only views over the gamification aggregate: the profile card, the
paginated activity feed, and the leaderboards.  Nothing here takes the
concurrency guard or writes.

Leaderboard scopes:
  * ``alltime`` — ranked by ``users.xp``
  * ``weekly``  — XP earned in the last 7 days (summed from ``activity_log``)
  * ``monthly`` — XP earned since the same instant one calendar month ago
"""

from __future__ import annotations

import calendar
import logging
import math
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Engine, func, select
from sqlalchemy.orm import Session

from hakgyo.config import RewardConfig
from hakgyo.constants import DEFAULT_PAGE_SIZE, LEADERBOARD_SCOPES, MAX_PAGE_SIZE
from hakgyo.database.models import ActivityLog, ActivityType, User
from hakgyo.engine.events import EventRegistry, GameEvent
from hakgyo.engine.levels import (
    get_level_progress,
    is_milestone_level,
    next_milestone_level,
    xp_to_reach_level,
)
from hakgyo.engine.streak import (
    StreakMilestones,
    StreakState,
    TimezonePolicy,
    effective_streak,
    hours_until_new_streak_day,
    hours_until_reset,
)
from hakgyo.errors import UserNotFoundError

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _streak_info(user: User, now: datetime, policy: TimezonePolicy) -> dict[str, Any]:
    return {
        "hours_until_reset": hours_until_reset(user.last_active_date, now, policy),
        "hours_until_new_streak": hours_until_new_streak_day(user.last_active_date, now, policy),
        "current_streak": effective_streak(
            StreakState(user.current_streak, user.last_active_date, user.longest_streak),
            now, policy,
        ),
        "last_active": _as_utc(user.last_active_at).isoformat() if user.last_active_at else None,
    }


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------
def _level_milestone(xp: int, level: int, base: int) -> dict[str, Any]:
    target = next_milestone_level(level)
    return {
        "reached": is_milestone_level(level),
        "next_level": target,
        "xp_remaining": xp_to_reach_level(xp, target, base),
    }


def get_profile_summary(
    engine: Engine,
    user_id: str,
    *,
    now: datetime,
    config: RewardConfig | None = None,
) -> dict[str, Any]:
    """Profile card: XP, level progress, streak state as of *now*."""
    config = config or RewardConfig()
    policy = TimezonePolicy(config.timezone)
    milestones = StreakMilestones(config.streak_milestones, config.streak_milestone_interval)

    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        info = _streak_info(user, now, policy)
        return {
            "user_id": user.id,
            "name": user.name,
            "total_xp": user.xp,
            "level": user.level,
            "level_progress": get_level_progress(user.xp, config.level_base).to_dict(),
            "level_milestone": _level_milestone(user.xp, user.level, config.level_base),
            "current_streak": info["current_streak"],
            "stored_streak": user.current_streak,
            "longest_streak": user.longest_streak,
            "next_streak_milestone": milestones.next_milestone(info["current_streak"]),
            "streak_info": info,
            "config_version": config.config_version,
        }


# ---------------------------------------------------------------------------
# Activity feed
# ---------------------------------------------------------------------------
def _event_title(event_type: str) -> str:
    # Retired event names are shown as stored.
    if EventRegistry.is_valid_event(event_type):
        return EventRegistry.display_name(GameEvent(event_type))
    return event_type


def get_activity_page(
    engine: Engine,
    user_id: str,
    *,
    now: datetime,
    config: RewardConfig | None = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    activity_type: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> dict[str, Any]:
    """Newest-first page of the learner's activity log.

    Raises ValueError for out-of-range paging or an unknown activity type.
    """
    if page < 1:
        raise ValueError("Page must be greater than 0")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValueError(f"Limit must be between 1 and {MAX_PAGE_SIZE}")
    if activity_type is not None and activity_type not in ActivityType.__members__:
        raise ValueError("Invalid activity type")

    config = config or RewardConfig()
    policy = TimezonePolicy(config.timezone)

    conditions = [ActivityLog.user_id == user_id]
    if activity_type is not None:
        conditions.append(ActivityLog.type == activity_type)
    if date_from is not None:
        conditions.append(ActivityLog.created_at >= _as_utc(date_from))
    if date_to is not None:
        conditions.append(ActivityLog.created_at <= _as_utc(date_to))

    with Session(engine) as session:
        user = session.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        total = session.scalar(
            select(func.count()).select_from(ActivityLog).where(*conditions)
        ) or 0
        rows = session.scalars(
            select(ActivityLog)
            .where(*conditions)
            .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        ).all()

        items = [
            {
                "id": row.id,
                "type": row.type,
                "event": row.event_type,
                "title": _event_title(row.event_type),
                "xp": row.xp_earned or 0,
                "date": _as_utc(row.created_at).isoformat(),
                "description": row.description or "",
                "streak_updated": row.streak_updated,
                "previous_streak": row.previous_streak,
                "new_streak": row.new_streak,
                "previous_level": row.previous_level,
                "new_level": row.new_level,
                "metadata": row.metadata_,
            }
            for row in rows
        ]
        streak_info = _streak_info(user, now, policy)

    total_pages = math.ceil(total / limit)
    return {
        "items": items,
        "streak_info": streak_info,
        "meta": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": total_pages,
            "has_next_page": page < total_pages,
            "has_previous_page": page > 1,
        },
    }


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------
def _one_month_before(now: datetime) -> datetime:
    year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def period_start(scope: str, now: datetime) -> datetime | None:
    """Start of the window for *scope*; ``None`` for ``alltime``."""
    now = _as_utc(now)
    if scope == "weekly":
        return now - timedelta(days=7)
    if scope == "monthly":
        return _one_month_before(now)
    return None


def get_leaderboard(
    engine: Engine,
    *,
    now: datetime,
    scope: str = "alltime",
    limit: int = 50,
    user_id: str | None = None,
) -> dict[str, Any]:
    """Top *limit* learners for *scope* plus the caller's own position."""
    if scope not in LEADERBOARD_SCOPES:
        raise ValueError("Invalid scope parameter")
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise ValueError(f"Limit must be between 1 and {MAX_PAGE_SIZE}")

    since = period_start(scope, now)

    with Session(engine) as session:
        if since is None:
            score = User.xp
            stmt = select(User, score.label("score"))
        else:
            period_xp = (
                select(
                    ActivityLog.user_id,
                    func.coalesce(func.sum(ActivityLog.xp_earned), 0).label("period_xp"),
                )
                .where(ActivityLog.created_at >= since)
                .group_by(ActivityLog.user_id)
                .subquery()
            )
            score = func.coalesce(period_xp.c.period_xp, 0)
            stmt = (
                select(User, score.label("score"))
                .outerjoin(period_xp, period_xp.c.user_id == User.id)
            )

        ranking = session.execute(
            stmt.order_by(
                score.desc(),
                User.level.desc(),
                User.current_streak.desc(),
                User.id,
            )
        ).all()

        def _entry(rank: int, user: User, points: int) -> dict[str, Any]:
            entry = {
                "rank": rank,
                "user": {"id": user.id, "name": user.name},
                "stats": {
                    "xp": user.xp,
                    "level": user.level,
                    "current_streak": user.current_streak,
                },
            }
            if since is not None:
                entry["stats"]["period_xp"] = int(points)
            return entry

        leaderboard = [
            _entry(i, user, points) for i, (user, points) in enumerate(ranking[:limit], start=1)
        ]

        current_user = None
        position = 0
        if user_id is not None:
            for i, (user, points) in enumerate(ranking, start=1):
                if user.id == user_id:
                    position = i
                    current_user = _entry(i, user, points)
                    break
            if current_user is None:
                raise UserNotFoundError(user_id)

    return {
        "leaderboard": leaderboard,
        "current_user": current_user,
        "meta": {
            "scope": scope,
            "since": since.isoformat() if since else None,
            "total_in_top": len(leaderboard),
            "user_position": position,
            "is_in_top": 0 < position <= limit,
        },
    }
