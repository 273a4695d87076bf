"""
hakgyo.config — YAML Configuration Loader
==========================================

**Why this file exists:**
Reward tuning (base XP per event, streak milestones, the leveling curve
base, the guard timeout) is *versioned deployment configuration*, not code.
Changing the curve after launch requires re-deriving every stored level
(see :mod:`hakgyo.services.reconciliation_service`), so the values live in
one file with an explicit ``config_version``.

Secrets (``DATABASE_URL``, ``JWT_SECRET``) are read from the environment,
never from this file.

Usage::

    from hakgyo.config import load_config

    cfg = load_config()                 # reads ./config.yaml by default
    print(cfg.rewards.timezone)         # "Asia/Jakarta"
    print(cfg.rewards.level_base)       # 100
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from hakgyo.engine.events import GameEvent
from hakgyo.engine.streak import DEFAULT_STREAK_MILESTONES

LOCK_BACKENDS = ("memory", "database")


# ---------------------------------------------------------------------------
# Typed settings objects
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RewardConfig:
    """Gameplay tuning for the reward pipeline.

    ``event_xp`` holds only the overrides; :class:`EventRegistry` merges
    them over :data:`DEFAULT_EVENT_XP`.
    """

    config_version: str = "2024.1"
    timezone: str = "Asia/Jakarta"
    lock_timeout_seconds: float = 30.0
    lock_backend: str = "memory"         # "memory" (one process) or "database" (lease rows)
    event_xp: dict[str, int] = field(default_factory=dict)
    streak_milestones: tuple[int, ...] = DEFAULT_STREAK_MILESTONES
    streak_milestone_interval: int | None = 100
    milestone_xp_per_day: int = 10
    level_base: int = 100


@dataclass(frozen=True, slots=True)
class HakgyoConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    platform_name: str = "Hakgyo"
    api_port: int = 8000
    rewards: RewardConfig = field(default_factory=RewardConfig)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------
def _parse_rewards(raw: dict) -> RewardConfig:
    defaults = RewardConfig()

    tz_name = str(raw.get("timezone", defaults.timezone))
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone in gamification config: {tz_name!r}") from exc

    event_xp: dict[str, int] = {}
    for name, value in (raw.get("event_xp") or {}).items():
        if name not in GameEvent.__members__:
            raise ValueError(f"event_xp names an unknown event: {name!r}")
        xp = int(value)
        if xp < 0:
            raise ValueError(f"event_xp[{name}] must be >= 0, got {xp}")
        event_xp[name] = xp

    raw_milestones = raw.get("streak_milestones", DEFAULT_STREAK_MILESTONES)
    milestones = tuple(sorted({int(m) for m in raw_milestones}))
    if any(m < 1 for m in milestones):
        raise ValueError("streak_milestones must all be >= 1")

    interval = raw.get("streak_milestone_interval", defaults.streak_milestone_interval)
    interval = int(interval) if interval else None
    if interval is not None and interval < 1:
        raise ValueError("streak_milestone_interval must be >= 1")

    level_base = int(raw.get("level_base", defaults.level_base))
    if level_base < 1:
        raise ValueError("level_base must be >= 1")

    lock_timeout = float(raw.get("lock_timeout_seconds", defaults.lock_timeout_seconds))
    if lock_timeout <= 0:
        raise ValueError("lock_timeout_seconds must be > 0")

    lock_backend = str(raw.get("lock_backend", defaults.lock_backend))
    if lock_backend not in LOCK_BACKENDS:
        raise ValueError(f"lock_backend must be one of {LOCK_BACKENDS}, got {lock_backend!r}")

    per_day = int(raw.get("milestone_xp_per_day", defaults.milestone_xp_per_day))
    if per_day < 0:
        raise ValueError("milestone_xp_per_day must be >= 0")

    return RewardConfig(
        config_version=str(raw.get("config_version", defaults.config_version)),
        timezone=tz_name,
        lock_timeout_seconds=lock_timeout,
        lock_backend=lock_backend,
        event_xp=event_xp,
        streak_milestones=milestones,
        streak_milestone_interval=interval,
        milestone_xp_per_day=per_day,
        level_base=level_base,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> HakgyoConfig:
    """Read *path* and return a :class:`HakgyoConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    ValueError
        If a gameplay value is out of range or names an unknown event.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.example.yaml → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return HakgyoConfig(
        platform_name=raw.get("platform_name", "Hakgyo"),
        api_port=int(raw.get("api_port", 8000)),
        rewards=_parse_rewards(raw.get("gamification") or {}),
    )
