"""
hakgyo.engine.levels — Level Progress View
============================================

Everything a profile card or reward toast needs to render progress,
derived from cumulative XP through the canonical curve in
:mod:`hakgyo.constants`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from hakgyo.constants import (
    DEFAULT_LEVEL_BASE,
    LEVEL_MILESTONE_EVERY,
    level_for_xp,
    xp_for_level,
)

__all__ = [
    "LevelProgress",
    "get_level_progress",
    "has_leveled_up",
    "is_milestone_level",
    "level_table",
    "levels_gained",
    "next_milestone_level",
    "xp_to_next_level",
    "xp_to_reach_level",
]


@dataclass(frozen=True, slots=True)
class LevelProgress:
    current_level: int
    current_xp: int
    xp_for_current_level: int
    xp_for_next_level: int
    xp_progress: float  # fraction of the current level completed, 0.0–1.0
    xp_remaining: int
    total_xp: int

    def to_dict(self) -> dict:
        return asdict(self)


def get_level_progress(total_xp: int, base: int = DEFAULT_LEVEL_BASE) -> LevelProgress:
    """Progress view for ``total_xp`` cumulative XP."""
    total_xp = max(0, total_xp)
    level = level_for_xp(total_xp, base)
    floor_xp = xp_for_level(level, base)
    next_xp = xp_for_level(level + 1, base)
    progress = (total_xp - floor_xp) / (next_xp - floor_xp)
    return LevelProgress(
        current_level=level,
        current_xp=total_xp,
        xp_for_current_level=floor_xp,
        xp_for_next_level=next_xp,
        xp_progress=min(1.0, max(0.0, progress)),
        xp_remaining=max(0, next_xp - total_xp),
        total_xp=total_xp,
    )


def xp_to_next_level(level: int, base: int = DEFAULT_LEVEL_BASE) -> int:
    """Width of ``level`` in XP (XP needed to go from its floor to the next level)."""
    return xp_for_level(level + 1, base) - xp_for_level(level, base)


def xp_to_reach_level(current_xp: int, target_level: int, base: int = DEFAULT_LEVEL_BASE) -> int:
    return max(0, xp_for_level(target_level, base) - current_xp)


def levels_gained(previous_xp: int, new_xp: int, base: int = DEFAULT_LEVEL_BASE) -> int:
    return level_for_xp(new_xp, base) - level_for_xp(previous_xp, base)


def has_leveled_up(previous_xp: int, new_xp: int, base: int = DEFAULT_LEVEL_BASE) -> bool:
    return levels_gained(previous_xp, new_xp, base) > 0


def is_milestone_level(level: int) -> bool:
    return level > 0 and level % LEVEL_MILESTONE_EVERY == 0


def next_milestone_level(current_level: int) -> int:
    return (current_level // LEVEL_MILESTONE_EVERY + 1) * LEVEL_MILESTONE_EVERY


def level_table(max_level: int = 100, base: int = DEFAULT_LEVEL_BASE) -> list[dict[str, int]]:
    """``[{"level": 1, "xp_required": 0, "xp_to_next": 100}, ...]`` up to ``max_level``."""
    return [
        {
            "level": level,
            "xp_required": xp_for_level(level, base),
            "xp_to_next": xp_to_next_level(level, base),
        }
        for level in range(1, max_level + 1)
    ]
