"""
tests/test_reconciliation.py — Aggregate repair jobs
======================================================

The interleaving tests apply a reward after the job has listed users but
before it repairs them; the repair must work from the freshly locked row.
"""

from __future__ import annotations

import logging
from datetime import date

import pytest
from conftest import make_user
from sqlalchemy import select
from sqlalchemy.orm import Session

from hakgyo.config import RewardConfig
from hakgyo.constants import level_for_xp
from hakgyo.database.models import StreakHistory, User
from hakgyo.engine.guard import InMemoryUserLock
from hakgyo.services import reconciliation_service
from hakgyo.services.reconciliation_service import (
    reconcile_current_streaks,
    reconcile_levels,
)
from hakgyo.services.reward_service import GamificationService


@pytest.fixture
def reward_between_listing_and_repair(monkeypatch, db_engine, clock):
    """Patch the user listing so one DAILY_LOGIN commits right after it."""
    service = GamificationService(db_engine, config=RewardConfig(timezone="Asia/Jakarta"), clock=clock)
    list_users = reconciliation_service._user_ids

    def listing_then_reward(engine):
        ids = list_users(engine)
        assert service.process_event("a", "DAILY_LOGIN").success
        return ids

    monkeypatch.setattr(reconciliation_service, "_user_ids", listing_then_reward)


def _current_rows(engine, user_id="a") -> list[StreakHistory]:
    with Session(engine) as session:
        return session.scalars(
            select(StreakHistory).where(
                StreakHistory.user_id == user_id, StreakHistory.is_current.is_(True)
            )
        ).all()


class TestReconcileLevels:
    def test_all_consistent(self, db_engine):
        make_user(db_engine, "a", xp=0, level=1)
        make_user(db_engine, "b", xp=450, level=3)
        result = reconcile_levels(db_engine)
        assert result["checked"] == 2
        assert result["corrected"] == 0
        assert result["skipped"] == []
        assert result["curve"] == "quadratic-v1"

    def test_drift_corrected(self, db_engine, caplog):
        make_user(db_engine, "a", xp=950, level=2)
        with caplog.at_level(logging.WARNING, logger="hakgyo.services.reconciliation_service"):
            result = reconcile_levels(db_engine)

        assert result["corrections"] == [{"user_id": "a", "xp": 950, "stored": 2, "actual": 4}]
        assert "corrected 1/1" in caplog.text
        with Session(db_engine) as session:
            assert session.get(User, "a").level == 4

    def test_new_curve_base(self, db_engine):
        make_user(db_engine, "a", xp=200, level=2)
        result = reconcile_levels(db_engine, level_base=50)
        assert result["corrections"][0]["actual"] == 3
        assert result["level_base"] == 50

    def test_reward_after_listing_is_not_overwritten(self, db_engine, reward_between_listing_and_repair):
        # Stored level is stale; the reward rewrites it from the new XP first.
        make_user(db_engine, "a", xp=98, level=3)
        result = reconcile_levels(db_engine)

        with Session(db_engine) as session:
            user = session.get(User, "a")
            assert user.xp == 103
            assert user.level == level_for_xp(103) == 2
        assert result["corrected"] == 0

    def test_busy_user_skipped_under_guard(self, db_engine):
        make_user(db_engine, "a", xp=950, level=2)
        make_user(db_engine, "b", xp=450, level=1)
        guard = InMemoryUserLock()
        token = guard.try_acquire("a")

        result = reconcile_levels(db_engine, guard=guard)
        assert result["skipped"] == ["a"]
        assert result["checked"] == 1
        assert [c["user_id"] for c in result["corrections"]] == ["b"]
        with Session(db_engine) as session:
            assert session.get(User, "a").level == 2

        guard.release("a", token)
        result = reconcile_levels(db_engine, guard=guard)
        assert result["corrections"] == [{"user_id": "a", "xp": 950, "stored": 2, "actual": 4}]
        assert guard.active_locks() == []


class TestReconcileStreaks:
    def _add_rows(self, engine, *rows):
        with Session(engine) as session:
            session.add_all(rows)
            session.commit()

    def test_missing_current_row_opened(self, db_engine):
        make_user(db_engine, "a", current_streak=4, longest_streak=4, last_active_date=date(2024, 3, 9))
        make_user(db_engine, "b")
        result = reconcile_current_streaks(db_engine)

        assert result["checked"] == 2
        assert result["opened"] == [{"user_id": "a", "streak_date": "2024-03-09", "streak_length": 4}]
        with Session(db_engine) as session:
            row = session.scalars(select(StreakHistory)).one()
            assert row.is_current
            assert row.streak_length == 4

    def test_consistent_user_untouched(self, db_engine):
        make_user(db_engine, "a", current_streak=2, longest_streak=2, last_active_date=date(2024, 3, 9))
        self._add_rows(db_engine, StreakHistory(
            user_id="a", streak_date=date(2024, 3, 9), streak_length=2, is_current=True,
        ))
        result = reconcile_current_streaks(db_engine)
        assert result["closed"] == []
        assert result["opened"] == []

    def test_reward_after_listing_keeps_single_current_row(
        self, db_engine, reward_between_listing_and_repair
    ):
        # No current row yet; the reward opens one before the repair runs.
        make_user(db_engine, "a", current_streak=4, longest_streak=4, last_active_date=date(2024, 3, 9))
        result = reconcile_current_streaks(db_engine)

        assert result["opened"] == []
        rows = _current_rows(db_engine)
        assert len(rows) == 1
        assert rows[0].streak_date == date(2024, 3, 10)
        assert rows[0].streak_length == 5

    def test_busy_user_skipped_under_guard(self, db_engine):
        make_user(db_engine, "a", current_streak=4, longest_streak=4, last_active_date=date(2024, 3, 9))
        guard = InMemoryUserLock()
        guard.try_acquire("a")
        result = reconcile_current_streaks(db_engine, guard=guard)
        assert result["skipped"] == ["a"]
        assert result["opened"] == []
        assert _current_rows(db_engine) == []
