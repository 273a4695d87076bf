"""
Hakgyo — Gamification Reward & Streak Engine
==============================================
Turns discrete learner actions (finishing a lesson, answering a quiz,
logging in, posting) into experience points, level changes, and
day-based streaks, while serializing per-user updates so rapid-fire or
concurrent actions can never corrupt a learner's aggregate.

Package layout::

    hakgyo/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # The leveling curve (single canonical copy)
    ├── errors.py          # Error taxonomy (validation / not-found / contention / persistence)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models (users, streak_history, activity_log, locks)
    ├── engine/
    │   ├── events.py      # GameEvent registry + base XP + log taxonomy
    │   ├── streak.py      # Streak calculator (timezone-anchored day math)
    │   ├── levels.py      # Level progress view over the curve
    │   ├── reward.py      # Reward composition (pure)
    │   └── guard.py       # Per-user concurrency guard (in-memory + DB lease)
    ├── services/
    │   ├── repositories.py         # Collaborator contracts + SQLAlchemy stores
    │   ├── reward_service.py       # Transaction coordinator
    │   ├── fanout.py               # One action → several events
    │   ├── profile_service.py      # Profile, activity feed, leaderboard reads
    │   ├── reconciliation_service.py  # Level re-derivation after curve changes
    │   └── log_buffer.py           # In-memory log tail for operators
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine / config / service / JWT dependencies
        └── routes/        # Gamification + admin endpoints
"""

__version__ = "0.1.0"
