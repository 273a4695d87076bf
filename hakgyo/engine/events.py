"""
hakgyo.engine.events — GameEvent Registry
==========================================

The closed set of reward-eligible learner actions, their base XP, and the
single table that maps each one onto the activity-log taxonomy.

The set is versioned with the deployment.  An unrecognized event name is
rejected with :class:`~hakgyo.errors.InvalidEventError`; it is never
silently defaulted to zero XP or to ``ActivityType.OTHER``.
"""

from __future__ import annotations

import enum
from collections.abc import Mapping

from hakgyo.database.models import ActivityType
from hakgyo.errors import InvalidEventError

__all__ = [
    "DEFAULT_EVENT_XP",
    "EVENT_ACTIVITY_TYPE",
    "EventRegistry",
    "GameEvent",
]


class GameEvent(enum.StrEnum):
    """Every learner action the reward pipeline recognizes."""
    COMPLETE_MATERI = "COMPLETE_MATERI"
    COMPLETE_SOAL = "COMPLETE_SOAL"
    COMPLETE_VOCABULARY = "COMPLETE_VOCABULARY"
    COMPLETE_ASSESSMENT = "COMPLETE_ASSESSMENT"
    DAILY_LOGIN = "DAILY_LOGIN"
    CREATE_POST = "CREATE_POST"
    LIKE_POST = "LIKE_POST"
    COMMENT_POST = "COMMENT_POST"
    JOIN_KELAS = "JOIN_KELAS"
    PERFECT_SCORE = "PERFECT_SCORE"
    STREAK_MILESTONE = "STREAK_MILESTONE"


# ---------------------------------------------------------------------------
# Base XP per event (overridable per deployment via config.yaml)
# ---------------------------------------------------------------------------
DEFAULT_EVENT_XP: dict[GameEvent, int] = {
    # Learning
    GameEvent.COMPLETE_MATERI: 10,
    GameEvent.COMPLETE_SOAL: 15,
    GameEvent.COMPLETE_VOCABULARY: 5,
    GameEvent.COMPLETE_ASSESSMENT: 25,
    # Daily engagement
    GameEvent.DAILY_LOGIN: 5,
    # Social
    GameEvent.CREATE_POST: 10,
    GameEvent.LIKE_POST: 2,
    GameEvent.COMMENT_POST: 5,
    # Classes
    GameEvent.JOIN_KELAS: 20,
    # Achievement bonuses
    GameEvent.PERFECT_SCORE: 30,
    GameEvent.STREAK_MILESTONE: 50,
}

# ---------------------------------------------------------------------------
# GameEvent → ActivityType (activity_log.type).  Must cover every event.
# ---------------------------------------------------------------------------
EVENT_ACTIVITY_TYPE: dict[GameEvent, ActivityType] = {
    GameEvent.COMPLETE_MATERI: ActivityType.COMPLETE_MATERI,
    GameEvent.COMPLETE_SOAL: ActivityType.COMPLETE_QUIZ,
    GameEvent.COMPLETE_VOCABULARY: ActivityType.VOCABULARY_PRACTICE,
    GameEvent.COMPLETE_ASSESSMENT: ActivityType.COMPLETE_QUIZ,
    GameEvent.DAILY_LOGIN: ActivityType.LOGIN,
    GameEvent.CREATE_POST: ActivityType.CREATE_POST,
    GameEvent.LIKE_POST: ActivityType.LIKE_POST,
    GameEvent.COMMENT_POST: ActivityType.COMMENT_POST,
    GameEvent.JOIN_KELAS: ActivityType.JOIN_CLASS,
    GameEvent.PERFECT_SCORE: ActivityType.ACHIEVEMENT,
    GameEvent.STREAK_MILESTONE: ActivityType.ACHIEVEMENT,
}

_DISPLAY_NAMES: dict[GameEvent, str] = {
    GameEvent.COMPLETE_MATERI: "Completed Material",
    GameEvent.COMPLETE_SOAL: "Completed Exercise",
    GameEvent.COMPLETE_VOCABULARY: "Completed Vocabulary",
    GameEvent.COMPLETE_ASSESSMENT: "Completed Assessment",
    GameEvent.DAILY_LOGIN: "Daily Login",
    GameEvent.CREATE_POST: "Created Post",
    GameEvent.LIKE_POST: "Liked Post",
    GameEvent.COMMENT_POST: "Commented on Post",
    GameEvent.JOIN_KELAS: "Joined Class",
    GameEvent.PERFECT_SCORE: "Perfect Score",
    GameEvent.STREAK_MILESTONE: "Streak Milestone",
}


def _check_complete(table: Mapping[GameEvent, object], name: str) -> None:
    missing = set(GameEvent) - set(table)
    if missing:
        raise RuntimeError(
            f"{name} is missing entries for: {', '.join(sorted(missing))}"
        )


_check_complete(DEFAULT_EVENT_XP, "DEFAULT_EVENT_XP")
_check_complete(EVENT_ACTIVITY_TYPE, "EVENT_ACTIVITY_TYPE")
_check_complete(_DISPLAY_NAMES, "_DISPLAY_NAMES")


# ---------------------------------------------------------------------------
# EventRegistry
# ---------------------------------------------------------------------------
class EventRegistry:
    """Validates event names and resolves their base XP.

    Pure lookups, no I/O.  ``event_xp`` overrides are keyed by event name
    and merged over :data:`DEFAULT_EVENT_XP`.
    """

    def __init__(self, event_xp: Mapping[str, int] | None = None) -> None:
        table = dict(DEFAULT_EVENT_XP)
        for name, xp in (event_xp or {}).items():
            event = self.parse(name)
            if int(xp) < 0:
                raise ValueError(f"Base XP for {event} must be >= 0, got {xp}")
            table[event] = int(xp)
        self._xp = table

    @staticmethod
    def is_valid_event(name: object) -> bool:
        return isinstance(name, str) and name in GameEvent.__members__

    @classmethod
    def parse(cls, name: object) -> GameEvent:
        """Return the :class:`GameEvent` for *name* or raise InvalidEventError."""
        if not cls.is_valid_event(name):
            raise InvalidEventError(name)
        return GameEvent(name)

    def base_xp(self, event: GameEvent) -> int:
        return self._xp[event]

    @staticmethod
    def activity_type(event: GameEvent) -> ActivityType:
        return EVENT_ACTIVITY_TYPE[event]

    @staticmethod
    def all_events() -> list[GameEvent]:
        return list(GameEvent)

    @staticmethod
    def display_name(event: GameEvent) -> str:
        return _DISPLAY_NAMES[event]

    @staticmethod
    def describe(event: GameEvent) -> str:
        """Activity-log description, e.g. ``"Completed daily login"``."""
        return f"Completed {event.value.replace('_', ' ').lower()}"

    def xp_table(self) -> dict[str, int]:
        """Effective base XP per event name (for display / API)."""
        return {event.value: xp for event, xp in self._xp.items()}
