"""
hakgyo.services.reward_service — Reward Transaction Coordinator
================================================================

The only writer of a learner's gamification aggregate.  Every call runs
the same state machine::

    ACQUIRE_LOCK → VALIDATE_EVENT → LOAD_PROFILE → COMPUTE_REWARD → PERSIST
                                                                     ↓
                                 RELEASE_LOCK  (finally, from every state)

PERSIST is one transaction: profile patch, streak-history flip + new
current row (only when a new streak day was counted), and one activity-log
row.  All three commit or none do.

Errors are raised internally and converted at this boundary into a
:class:`GamificationResult`; callers never need a ``try``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hakgyo.config import RewardConfig
from hakgyo.database.engine import get_session, run_db
from hakgyo.engine.events import EventRegistry, GameEvent
from hakgyo.engine.guard import ConcurrencyGuard, InMemoryUserLock, hold
from hakgyo.engine.levels import has_leveled_up
from hakgyo.engine.reward import (
    RewardResult,
    compose_reward,
    compose_sequence,
    format_reward_summary,
)
from hakgyo.engine.streak import (
    StreakMilestones,
    StreakState,
    TimezonePolicy,
    hours_until_new_streak_day,
    hours_until_reset,
    update_streak,
)
from hakgyo.errors import (
    GamificationError,
    InvalidMetadataError,
    PersistenceCancelledError,
    PersistenceError,
    RequestInProgressError,
    UserNotFoundError,
)
from hakgyo.services.repositories import (
    ActivityEntry,
    ProfilePatch,
    Repositories,
    StreakEntry,
    sql_repositories,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _check_metadata(metadata: object) -> None:
    """Reject metadata the activity log cannot store as a JSON object."""
    if metadata is None:
        return
    if not isinstance(metadata, Mapping):
        raise InvalidMetadataError()
    try:
        json.dumps(dict(metadata), allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise InvalidMetadataError(f"Metadata is not JSON-serializable: {exc}") from exc


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class GamificationResult:
    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None
    error_kind: str | None = None
    retryable: bool = False
    retry_after: int | None = None

    @classmethod
    def ok(cls, data: dict[str, Any]) -> GamificationResult:
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, exc: GamificationError) -> GamificationResult:
        return cls(
            success=False,
            error=exc.public_message,
            error_kind=exc.kind,
            retryable=exc.retryable,
            retry_after=getattr(exc, "retry_after", None),
        )

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {
            "success": False,
            "error": self.error,
            "error_kind": self.error_kind,
            "retryable": self.retryable,
        }


@dataclass(slots=True)
class _CancelCheck:
    deadline: float | None = None
    signal: threading.Event | None = None
    clock: Callable[[], float] = field(default=time.monotonic)

    def raise_if_cancelled(self, user_id: str, stage: str) -> None:
        if self.signal is not None and self.signal.is_set():
            raise PersistenceCancelledError(f"Cancelled before {stage} for user {user_id}")
        if self.deadline is not None and self.clock() >= self.deadline:
            raise PersistenceCancelledError(f"Deadline passed before {stage} for user {user_id}")


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------
class GamificationService:
    """Owns the concurrency guard and every reward write.

    Created once at application start (see :mod:`hakgyo.api.main`).
    """

    def __init__(
        self,
        engine: Engine,
        *,
        config: RewardConfig | None = None,
        registry: EventRegistry | None = None,
        guard: ConcurrencyGuard | None = None,
        clock: Callable[[], datetime] = _utcnow,
        repositories: Callable[[Session], Repositories] = sql_repositories,
    ) -> None:
        self.engine = engine
        self.config = config or RewardConfig()
        self.registry = registry or EventRegistry(self.config.event_xp)
        self.guard = guard or InMemoryUserLock(self.config.lock_timeout_seconds)
        self.policy = TimezonePolicy(self.config.timezone)
        self.milestones = StreakMilestones(
            self.config.streak_milestones, self.config.streak_milestone_interval
        )
        self._clock = clock
        self._repositories = repositories

    # -- public entry points -------------------------------------------------
    def process_event(
        self,
        user_id: str,
        event_name: object,
        metadata: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> GamificationResult:
        """Apply one event for *user_id* and return the typed outcome."""
        check = _CancelCheck(
            deadline=time.monotonic() + timeout if timeout is not None else None,
            signal=cancel,
        )
        try:
            with hold(self.guard, user_id):
                logger.debug("[%s] ACQUIRE_LOCK ok", user_id)
                data = self._run(user_id, event_name, metadata, check)
        except RequestInProgressError as exc:
            logger.warning("Reward request for user %s rejected: lock held", user_id)
            return GamificationResult.failure(exc)
        except PersistenceCancelledError as exc:
            logger.warning("Reward for user %s rolled back: %s", user_id, exc)
            return GamificationResult.failure(exc)
        except PersistenceError as exc:
            return GamificationResult.failure(exc)
        except GamificationError as exc:
            logger.info("Reward for user %s rejected (%s): %s", user_id, exc.kind, exc)
            return GamificationResult.failure(exc)
        except SQLAlchemyError:
            logger.exception("Storage failure around reward lock for user %s", user_id)
            return GamificationResult.failure(PersistenceError())
        return GamificationResult.ok(data)

    async def aprocess_event(
        self,
        user_id: str,
        event_name: object,
        metadata: Mapping[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> GamificationResult:
        """Async wrapper; task cancellation rolls the worker's transaction back."""
        cancel = threading.Event()
        try:
            return await run_db(
                self.process_event, user_id, event_name, metadata,
                timeout=timeout, cancel=cancel,
            )
        except asyncio.CancelledError:
            cancel.set()
            raise

    def preview(
        self,
        user_id: str,
        event_names: Iterable[object],
        *,
        now: datetime | None = None,
    ) -> list[RewardResult]:
        """Compose rewards for *event_names* against the stored profile.  No writes."""
        events = [self.registry.parse(name) for name in event_names]
        at = now or self._clock()
        with Session(self.engine) as session:
            repos = self._repositories(session)
            profile = repos.users.load_profile(user_id)
            if profile is None:
                raise UserNotFoundError(user_id)
            state = StreakState(
                current_streak=profile.current_streak,
                last_active_date=profile.last_active_date,
                longest_streak=profile.longest_streak,
                streak_history=repos.streaks.recent_dates(user_id),
            )
        return compose_sequence(
            ((event, at) for event in events),
            registry=self.registry,
            state=state,
            total_xp=profile.total_xp,
            policy=self.policy,
            milestones=self.milestones,
            milestone_xp_per_day=self.config.milestone_xp_per_day,
            level_base=self.config.level_base,
        )

    # -- state machine -------------------------------------------------------
    def _run(
        self,
        user_id: str,
        event_name: object,
        metadata: Mapping[str, Any] | None,
        check: _CancelCheck,
    ) -> dict[str, Any]:
        # VALIDATE_EVENT: no transaction is opened for invalid input.
        event = self.registry.parse(event_name)
        _check_metadata(metadata)
        logger.debug("[%s] VALIDATE_EVENT ok: %s", user_id, event)

        now = self._clock()
        try:
            with get_session(self.engine) as session:
                repos = self._repositories(session)

                # LOAD_PROFILE
                profile = repos.users.load_profile(user_id)
                if profile is None:
                    raise UserNotFoundError(user_id)
                state = StreakState(
                    current_streak=profile.current_streak,
                    last_active_date=profile.last_active_date,
                    longest_streak=profile.longest_streak,
                    streak_history=repos.streaks.recent_dates(user_id),
                )
                logger.debug("[%s] LOAD_PROFILE ok: xp=%d streak=%d",
                             user_id, profile.total_xp, profile.current_streak)

                # COMPUTE_REWARD (pure)
                streak = update_streak(state, now, self.policy, self.milestones)
                result = compose_reward(
                    event,
                    self.registry.base_xp(event),
                    streak,
                    profile.total_xp,
                    milestone_xp_per_day=self.config.milestone_xp_per_day,
                    level_base=self.config.level_base,
                )
                logger.debug("[%s] COMPUTE_REWARD ok: %s", user_id, format_reward_summary(result))

                # PERSIST
                check.raise_if_cancelled(user_id, "persist")
                activity_id = self._persist(repos, user_id, event, result, metadata, now)
                check.raise_if_cancelled(user_id, "commit")
                # get_session commits on exit
        except GamificationError:
            raise
        except (SQLAlchemyError, LookupError) as exc:
            logger.exception("Reward transaction failed for user %s (%s)", user_id, event)
            raise PersistenceError() from exc

        logger.info(
            "Reward applied: user=%s event=%s xp=+%d (%d→%d) streak %d→%d level %d→%d",
            user_id, event, result.total_xp, result.previous_total_xp, result.new_total_xp,
            result.streak.previous_streak, result.streak.new_streak,
            result.previous_level, result.new_level,
        )
        if has_leveled_up(result.previous_total_xp, result.new_total_xp, self.config.level_base):
            logger.info("User %s reached level %d", user_id, result.new_level)
        return self._result_data(result, activity_id, now)

    def _persist(
        self,
        repos: Repositories,
        user_id: str,
        event: GameEvent,
        result: RewardResult,
        metadata: Mapping[str, Any] | None,
        now: datetime,
    ) -> int:
        streak = result.streak
        repos.users.save_profile(user_id, ProfilePatch(
            total_xp=result.new_total_xp,
            current_level=result.new_level,
            current_streak=streak.new_streak,
            longest_streak=streak.new_longest,
            last_active_date=streak.last_active_date,
            last_active_at=now,
        ))

        if streak.streak_updated:
            repos.streaks.close_current_and_open_new(user_id, StreakEntry(
                id=None,
                user_id=user_id,
                streak_date=streak.last_active_date,
                streak_length=streak.new_streak,
            ))

        return repos.activity.append(ActivityEntry(
            user_id=user_id,
            type=self.registry.activity_type(event).value,
            event_type=event.value,
            description=self.registry.describe(event),
            xp_earned=result.total_xp,
            base_xp=result.base_xp,
            streak_bonus=result.streak_bonus,
            previous_streak=streak.previous_streak,
            new_streak=streak.new_streak,
            previous_level=result.previous_level,
            new_level=result.new_level,
            streak_updated=streak.streak_updated,
            metadata=metadata,
            created_at=now,
        ))

    def _result_data(self, result: RewardResult, activity_id: int, now: datetime) -> dict[str, Any]:
        streak = result.streak
        return {
            "event": result.event.value,
            "base_xp": result.base_xp,
            "streak_bonus": result.streak_bonus,
            "total_xp": result.total_xp,
            "previous_level": result.previous_level,
            "new_level": result.new_level,
            "levels_gained": result.levels_gained,
            "leveled_up": result.leveled_up,
            "current_streak": streak.new_streak,
            "longest_streak": streak.new_longest,
            "streak_updated": streak.streak_updated,
            "streak_milestone_reached": result.streak_milestone_reached,
            "next_streak_milestone": self.milestones.next_milestone(streak.new_streak),
            "level_progress": result.level_progress.to_dict(),
            "streak_info": {
                "hours_until_reset": hours_until_reset(streak.last_active_date, now, self.policy),
                "hours_until_new_streak": hours_until_new_streak_day(
                    streak.last_active_date, now, self.policy
                ),
                "last_active": streak.last_active_date.isoformat(),
            },
            "activity_id": activity_id,
            "summary": format_reward_summary(result),
        }
