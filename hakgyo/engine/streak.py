"""
hakgyo.engine.streak — Streak Calculator
==========================================

Pure day-boundary arithmetic.  No DB I/O, no wall-clock reads: the caller
passes ``now`` and a :class:`TimezonePolicy`, so every rule is evaluated on
the learner's *calendar date* in the reference timezone rather than on raw
UTC instants or "24 hours since last activity".

Rules (``today = policy.calendar_date(now)``):

* no ``last_active_date``           → streak = 1 (first activity ever)
* ``today == last_active_date``     → unchanged, not a new streak day, no bonus
* ``today == last_active_date + 1`` → streak + 1
* gap of two or more days           → streak = 1
* ``longest = max(longest, new)``
* milestone only when the new length is a configured milestone *and* the
  streak actually grew (a same-day replay can never re-trigger one)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_STREAK_MILESTONES",
    "StreakMilestones",
    "StreakState",
    "StreakUpdate",
    "TimezonePolicy",
    "effective_streak",
    "hours_until_new_streak_day",
    "hours_until_reset",
    "update_streak",
]

DEFAULT_STREAK_MILESTONES: tuple[int, ...] = (3, 7, 14, 30, 60, 100)

# Keep at most this many dates in StreakState.streak_history snapshots
HISTORY_WINDOW = 30


# ---------------------------------------------------------------------------
# Timezone policy
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TimezonePolicy:
    """Maps instants onto calendar dates in one IANA timezone.

    Naive datetimes are interpreted as UTC.
    """

    tz_name: str = "UTC"

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.tz_name)

    def localize(self, now: datetime) -> datetime:
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        return now.astimezone(self.zone)

    def calendar_date(self, now: datetime) -> date:
        return self.localize(now).date()

    def start_of_day(self, day: date) -> datetime:
        """Local midnight at the start of *day*, as an aware UTC instant."""
        return datetime.combine(day, time.min, tzinfo=self.zone).astimezone(UTC)


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StreakMilestones:
    """Streak lengths that earn a bonus.

    ``milestones`` is the explicit list; past its largest entry every
    multiple of ``interval`` is also a milestone (``None`` disables that).
    """

    milestones: tuple[int, ...] = DEFAULT_STREAK_MILESTONES
    interval: int | None = 100

    def is_milestone(self, streak: int) -> bool:
        if streak <= 0:
            return False
        if streak in self.milestones:
            return True
        top = max(self.milestones, default=0)
        return self.interval is not None and streak > top and streak % self.interval == 0

    def next_milestone(self, streak: int) -> int | None:
        """Smallest milestone strictly greater than *streak*."""
        upcoming = [m for m in self.milestones if m > streak]
        if upcoming:
            return min(upcoming)
        if self.interval is None:
            return None
        top = max(self.milestones, default=0)
        base = max(streak, top)
        return (base // self.interval + 1) * self.interval

    @staticmethod
    def bonus_for(streak: int, xp_per_day: int) -> int:
        """Milestone bonus: scales linearly with the streak length."""
        return streak * xp_per_day


# ---------------------------------------------------------------------------
# State in / update out
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class StreakState:
    """A learner's streak as loaded from storage."""

    current_streak: int = 0
    last_active_date: date | None = None
    longest_streak: int = 0
    streak_history: tuple[date, ...] = ()


@dataclass(frozen=True, slots=True)
class StreakUpdate:
    """Result of evaluating one event against a :class:`StreakState`."""

    previous_streak: int
    new_streak: int
    previous_longest: int
    new_longest: int
    streak_updated: bool          # True when this event counted a new streak day
    milestone_reached: bool
    last_active_date: date        # anchor date after the update
    gap_days: int | None = None   # days since the previous active date (None = first ever)
    streak_history: tuple[date, ...] = field(default=())

    @property
    def streak_reset(self) -> bool:
        return self.gap_days is not None and self.gap_days >= 2


def update_streak(
    state: StreakState,
    now: datetime,
    policy: TimezonePolicy,
    milestones: StreakMilestones | None = None,
) -> StreakUpdate:
    """Evaluate one streak-eligible event at instant ``now``."""
    milestones = milestones or StreakMilestones()
    today = policy.calendar_date(now)
    last = state.last_active_date
    previous = state.current_streak

    gap: int | None
    if last is None:
        gap = None
        new_streak = 1
        counted = True
    else:
        gap = (today - last).days
        if gap <= 0:
            # Same calendar day (or a stored date ahead of the clock).
            if previous == 0:
                # Legacy rows with a date but no streak: today starts it.
                new_streak, counted = 1, True
            else:
                new_streak, counted = previous, False
        elif gap == 1:
            new_streak, counted = previous + 1, True
        else:
            new_streak, counted = 1, True

    new_longest = max(state.longest_streak, new_streak)
    milestone = counted and new_streak > previous and milestones.is_milestone(new_streak)

    if counted:
        anchor = today
        history = (*state.streak_history, today)[-HISTORY_WINDOW:]
    else:
        anchor = last if last is not None else today
        history = state.streak_history

    logger.debug(
        "Streak update: last=%s today=%s gap=%s %d → %d (counted=%s milestone=%s)",
        last, today, gap, previous, new_streak, counted, milestone,
    )

    return StreakUpdate(
        previous_streak=previous,
        new_streak=new_streak,
        previous_longest=state.longest_streak,
        new_longest=new_longest,
        streak_updated=counted,
        milestone_reached=milestone,
        last_active_date=anchor,
        gap_days=gap,
        streak_history=history,
    )


# ---------------------------------------------------------------------------
# Read-only helpers (profile / activity views)
# ---------------------------------------------------------------------------
def effective_streak(state: StreakState, now: datetime, policy: TimezonePolicy) -> int:
    """Streak length as of ``now``: 0 once a full calendar day was missed.

    Stored ``current_streak`` only changes when an event arrives, so a
    learner who stopped three days ago still has their old value on disk.
    """
    if state.last_active_date is None:
        return 0
    gap = (policy.calendar_date(now) - state.last_active_date).days
    return state.current_streak if gap <= 1 else 0


def hours_until_reset(
    last_active_date: date | None, now: datetime, policy: TimezonePolicy
) -> float:
    """Hours left before the streak lapses (end of the day after the last active day)."""
    if last_active_date is None:
        return 0.0
    deadline = policy.start_of_day(last_active_date + timedelta(days=2))
    remaining = (deadline - policy.localize(now).astimezone(UTC)).total_seconds() / 3600
    return round(max(0.0, remaining), 2)


def hours_until_new_streak_day(
    last_active_date: date | None, now: datetime, policy: TimezonePolicy
) -> float:
    """Hours until another streak day can be earned.  0 when today is still open."""
    today = policy.calendar_date(now)
    if last_active_date is None or last_active_date < today:
        return 0.0
    next_midnight = policy.start_of_day(today + timedelta(days=1))
    remaining = (next_midnight - policy.localize(now).astimezone(UTC)).total_seconds() / 3600
    return round(max(0.0, remaining), 2)
