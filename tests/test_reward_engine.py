"""
tests/test_reward_engine.py — Unit Tests for the Reward Composer
=================================================================

Tests the pure calculation pipeline (no I/O, no database).
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from hakgyo.engine.events import EventRegistry, GameEvent
from hakgyo.engine.reward import compose_reward, compose_sequence, format_reward_summary
from hakgyo.engine.streak import (
    StreakMilestones,
    StreakState,
    StreakUpdate,
    TimezonePolicy,
)

UTC_POLICY = TimezonePolicy("UTC")


def _streak(prev=1, new=2, milestone=False, counted=True):
    return StreakUpdate(
        previous_streak=prev,
        new_streak=new,
        previous_longest=prev,
        new_longest=max(prev, new),
        streak_updated=counted,
        milestone_reached=milestone,
        last_active_date=date(2024, 3, 10),
        gap_days=1,
    )


class TestComposeReward:
    def test_base_only(self):
        result = compose_reward(GameEvent.DAILY_LOGIN, 5, _streak(), 0)
        assert result.base_xp == 5
        assert result.streak_bonus == 0
        assert result.total_xp == 5
        assert result.new_total_xp == 5
        assert result.previous_level == result.new_level == 1
        assert not result.leveled_up

    def test_milestone_bonus_added(self):
        result = compose_reward(
            GameEvent.COMPLETE_SOAL, 15, _streak(6, 7, milestone=True), 0,
            milestone_xp_per_day=10,
        )
        assert result.streak_bonus == 70
        assert result.total_xp == 85
        assert result.streak_milestone_reached

    def test_level_up_detected(self):
        result = compose_reward(GameEvent.COMPLETE_ASSESSMENT, 25, _streak(), 90)
        assert result.previous_level == 1
        assert result.new_level == 2
        assert result.levels_gained == 1
        assert result.leveled_up
        assert result.level_progress.current_level == 2

    def test_multi_level_jump(self):
        result = compose_reward(
            GameEvent.STREAK_MILESTONE, 50, _streak(99, 100, milestone=True), 0,
            milestone_xp_per_day=10,
        )
        # 50 + 100*10 = 1050 XP → level 4
        assert result.total_xp == 1050
        assert result.new_level == 4
        assert result.levels_gained == 3

    def test_custom_level_base(self):
        result = compose_reward(GameEvent.DAILY_LOGIN, 60, _streak(), 0, level_base=50)
        assert result.new_level == 2

    def test_negative_base_rejected(self):
        with pytest.raises(ValueError):
            compose_reward(GameEvent.DAILY_LOGIN, -1, _streak(), 0)

    def test_pure(self):
        a = compose_reward(GameEvent.LIKE_POST, 2, _streak(), 10)
        b = compose_reward(GameEvent.LIKE_POST, 2, _streak(), 10)
        assert a == b


class TestComposeSequence:
    def test_chains_state_between_events(self):
        start = datetime(2024, 3, 10, 9, tzinfo=UTC)
        results = compose_sequence(
            [
                (GameEvent.DAILY_LOGIN, start),
                (GameEvent.COMPLETE_SOAL, start + timedelta(hours=2)),
                (GameEvent.DAILY_LOGIN, start + timedelta(days=1)),
            ],
            registry=EventRegistry(),
            state=StreakState(1, date(2024, 3, 9), 1),
            total_xp=90,
            policy=UTC_POLICY,
            milestones=StreakMilestones((3,), interval=None),
        )
        assert [r.streak.new_streak for r in results] == [2, 2, 3]
        assert [r.streak.streak_updated for r in results] == [True, False, True]
        assert results[2].streak_milestone_reached
        assert results[2].streak_bonus == 30
        assert results[0].new_total_xp == 95
        assert results[1].new_total_xp == 110
        assert results[1].previous_total_xp == results[0].new_total_xp
        assert results[1].new_level == 2

    def test_empty(self):
        assert compose_sequence(
            [], registry=EventRegistry(), state=StreakState(), total_xp=0, policy=UTC_POLICY,
        ) == []


class TestSummary:
    def test_plain(self):
        result = compose_reward(GameEvent.DAILY_LOGIN, 5, _streak(), 0)
        assert format_reward_summary(result) == "+5 XP for DAILY_LOGIN"

    def test_with_bonus_level_and_milestone(self):
        result = compose_reward(
            GameEvent.DAILY_LOGIN, 5, _streak(6, 7, milestone=True), 50,
            milestone_xp_per_day=10,
        )
        summary = format_reward_summary(result)
        assert "+75 XP for DAILY_LOGIN" in summary
        assert "+70 streak bonus" in summary
        assert "Now level 2" in summary
        assert "7 day streak" in summary
