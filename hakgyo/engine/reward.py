"""
hakgyo.engine.reward — Reward Composition Pipeline
====================================================

Pure calculation pipeline.  No DB I/O, no clock reads inside the composer.

Pipeline stages:
  GameEvent → Base XP → Streak update → Milestone bonus → Level check → RewardResult

Ordinary streak continuation adds no XP by itself; only a streak milestone
adds a bonus, ``streak_length × milestone_xp_per_day``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import datetime

from hakgyo.constants import DEFAULT_LEVEL_BASE, level_for_xp
from hakgyo.engine.events import EventRegistry, GameEvent
from hakgyo.engine.levels import LevelProgress, get_level_progress, levels_gained
from hakgyo.engine.streak import (
    StreakMilestones,
    StreakState,
    StreakUpdate,
    TimezonePolicy,
    update_streak,
)

logger = logging.getLogger(__name__)

__all__ = [
    "RewardResult",
    "compose_reward",
    "compose_sequence",
    "format_reward_summary",
]

DEFAULT_MILESTONE_XP_PER_DAY = 10


# ---------------------------------------------------------------------------
# RewardResult — output of the pipeline
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RewardResult:
    """Computed, not-yet-persisted outcome of one event."""

    event: GameEvent
    base_xp: int
    streak_bonus: int
    total_xp: int              # XP earned by this event (base + bonus)
    previous_total_xp: int
    new_total_xp: int
    previous_level: int
    new_level: int
    levels_gained: int
    streak: StreakUpdate
    streak_milestone_reached: bool
    level_progress: LevelProgress

    @property
    def leveled_up(self) -> bool:
        return self.levels_gained > 0


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------
def compose_reward(
    event: GameEvent,
    base_xp: int,
    streak: StreakUpdate,
    current_total_xp: int,
    *,
    milestone_xp_per_day: int = DEFAULT_MILESTONE_XP_PER_DAY,
    level_base: int = DEFAULT_LEVEL_BASE,
) -> RewardResult:
    """Combine base XP, the streak outcome and the milestone bonus.

    This is a PURE function; given the same inputs it always returns the
    same :class:`RewardResult`.
    """
    if base_xp < 0:
        raise ValueError(f"base_xp must be >= 0, got {base_xp}")

    streak_bonus = (
        StreakMilestones.bonus_for(streak.new_streak, milestone_xp_per_day)
        if streak.milestone_reached
        else 0
    )
    earned = base_xp + streak_bonus

    previous_total = max(0, current_total_xp)
    new_total = previous_total + earned
    previous_level = level_for_xp(previous_total, level_base)
    progress = get_level_progress(new_total, level_base)

    return RewardResult(
        event=event,
        base_xp=base_xp,
        streak_bonus=streak_bonus,
        total_xp=earned,
        previous_total_xp=previous_total,
        new_total_xp=new_total,
        previous_level=previous_level,
        new_level=progress.current_level,
        levels_gained=levels_gained(previous_total, new_total, level_base),
        streak=streak,
        streak_milestone_reached=streak.milestone_reached,
        level_progress=progress,
    )


def compose_sequence(
    events: Iterable[tuple[GameEvent, datetime]],
    *,
    registry: EventRegistry,
    state: StreakState,
    total_xp: int,
    policy: TimezonePolicy,
    milestones: StreakMilestones | None = None,
    milestone_xp_per_day: int = DEFAULT_MILESTONE_XP_PER_DAY,
    level_base: int = DEFAULT_LEVEL_BASE,
) -> list[RewardResult]:
    """Chain several events against one starting state (preview, no I/O).

    Each event sees the XP and streak left behind by the previous one,
    exactly as if they had been processed one after another.
    """
    results: list[RewardResult] = []
    for event, at in events:
        streak = update_streak(state, at, policy, milestones)
        result = compose_reward(
            event,
            registry.base_xp(event),
            streak,
            total_xp,
            milestone_xp_per_day=milestone_xp_per_day,
            level_base=level_base,
        )
        results.append(result)

        total_xp = result.new_total_xp
        state = replace(
            state,
            current_streak=streak.new_streak,
            last_active_date=streak.last_active_date,
            longest_streak=streak.new_longest,
            streak_history=streak.streak_history,
        )
    return results


def format_reward_summary(result: RewardResult) -> str:
    """One-line summary, e.g. ``+55 XP for DAILY_LOGIN (including +50 streak bonus)``."""
    summary = f"+{result.total_xp} XP for {result.event.value}"
    if result.streak_bonus > 0:
        summary += f" (including +{result.streak_bonus} streak bonus)"
    if result.levels_gained > 0:
        summary += f" - Level up! Now level {result.new_level}"
    if result.streak_milestone_reached:
        summary += f" - Streak milestone reached! {result.streak.new_streak} day streak"
    return summary
