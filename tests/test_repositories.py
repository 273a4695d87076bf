"""
tests/test_repositories.py — SQLAlchemy stores behind the coordinator
=======================================================================
"""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest
from conftest import make_user

from hakgyo.services.repositories import (
    ActivityEntry,
    ProfilePatch,
    StreakEntry,
    sql_repositories,
)


def _entry(day: int, length: int) -> StreakEntry:
    return StreakEntry(id=None, user_id="u1", streak_date=date(2024, 3, day), streak_length=length)


class TestUserRepository:
    def test_load_missing(self, db_session):
        assert sql_repositories(db_session).users.load_profile("ghost") is None

    def test_load_and_save(self, db_engine, db_session):
        make_user(db_engine, xp=120, level=2)
        users = sql_repositories(db_session).users
        profile = users.load_profile("u1")
        assert profile.total_xp == 120
        assert profile.current_level == 2

        now = datetime(2024, 3, 10, 3, tzinfo=UTC)
        users.save_profile("u1", ProfilePatch(
            total_xp=125, current_level=2, current_streak=1, longest_streak=1,
            last_active_date=date(2024, 3, 10), last_active_at=now,
        ))
        reloaded = users.load_profile("u1")
        assert reloaded.total_xp == 125
        assert reloaded.last_active_date == date(2024, 3, 10)

    def test_save_vanished_user(self, db_session):
        with pytest.raises(LookupError):
            sql_repositories(db_session).users.save_profile("ghost", ProfilePatch(
                total_xp=1, current_level=1, current_streak=1, longest_streak=1,
                last_active_date=None, last_active_at=None,
            ))


class TestStreakHistoryStore:
    def test_no_current_entry(self, db_engine, db_session):
        make_user(db_engine)
        streaks = sql_repositories(db_session).streaks
        assert streaks.latest_current_entry("u1") is None
        assert streaks.recent_dates("u1") == ()

    def test_close_and_open_keeps_single_current(self, db_engine, db_session):
        make_user(db_engine)
        streaks = sql_repositories(db_session).streaks
        for day, length in [(8, 1), (9, 2), (10, 3)]:
            opened = streaks.close_current_and_open_new("u1", _entry(day, length))
            assert opened.is_current
            assert opened.id is not None

        current = streaks.latest_current_entry("u1")
        assert current.streak_date == date(2024, 3, 10)
        assert current.streak_length == 3
        assert streaks.recent_dates("u1") == (date(2024, 3, 8), date(2024, 3, 9), date(2024, 3, 10))
        assert streaks.recent_dates("u1", limit=1) == (date(2024, 3, 10),)


class TestActivityLogStore:
    def test_append_returns_id(self, db_engine, db_session):
        make_user(db_engine)
        activity = sql_repositories(db_session).activity
        metadata = {"materi_id": 4}
        first = activity.append(ActivityEntry(
            user_id="u1", type="LOGIN", event_type="DAILY_LOGIN",
            description="Completed daily login", xp_earned=5, base_xp=5, streak_bonus=0,
            previous_streak=0, new_streak=1, previous_level=1, new_level=1,
            streak_updated=True, metadata=metadata,
            created_at=datetime(2024, 3, 10, 3, tzinfo=UTC),
        ))
        second = activity.append(ActivityEntry(
            user_id="u1", type="LIKE_POST", event_type="LIKE_POST",
            description="Completed like post", xp_earned=2, base_xp=2, streak_bonus=0,
            previous_streak=1, new_streak=1, previous_level=1, new_level=1,
            streak_updated=False, metadata=None,
            created_at=datetime(2024, 3, 10, 4, tzinfo=UTC),
        ))
        assert second > first
        assert metadata == {"materi_id": 4}


class TestSchema:
    def test_init_db_creates_tables(self):
        from sqlalchemy import create_engine, inspect

        from hakgyo.database.engine import init_db

        engine = create_engine("sqlite://")
        init_db(engine)
        assert set(inspect(engine).get_table_names()) >= {
            "users", "streak_history", "activity_log", "gamification_locks",
        }
