"""
hakgyo.services.reconciliation_service — Aggregate Reconciliation
==================================================================

Maintenance jobs that repair stored values derived from other columns.

``reconcile_levels``
    Re-derives every ``users.level`` from ``users.xp`` with the current
    curve.  Run once after changing ``level_base`` (the curve is versioned
    configuration, so a change must be followed by this migration).

``reconcile_current_streaks``
    Makes ``streak_history`` agree with ``users``: at most one current row
    per user (latest wins), and one current row for every user with a live
    streak but none recorded.

Both jobs repair one user per transaction.  The user row is re-read with
``SELECT ... FOR UPDATE`` and the fix is computed from that locked row, so
a reward committing between listing and repair is never overwritten.
When the coordinator's guard is passed in, each user is also held under
it; users whose lock is busy are skipped and reported.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from hakgyo.constants import DEFAULT_LEVEL_BASE, LEVEL_CURVE_VERSION, level_for_xp
from hakgyo.database.engine import get_session
from hakgyo.database.models import StreakHistory, User
from hakgyo.engine.guard import ConcurrencyGuard, hold
from hakgyo.errors import RequestInProgressError
from hakgyo.services.repositories import SqlStreakHistoryStore, StreakEntry

logger = logging.getLogger(__name__)

Repair = Callable[[Session, User], None]


def _user_ids(engine: Engine) -> list[str]:
    with Session(engine) as session:
        return list(session.scalars(select(User.id).order_by(User.id)))


def _for_each_user(
    engine: Engine, guard: ConcurrencyGuard | None, repair: Repair
) -> tuple[int, list[str]]:
    """Run ``repair(session, user)`` per user on a locked row.

    Returns ``(checked, skipped_user_ids)``.  Users deleted since the
    listing are ignored.
    """
    checked = 0
    skipped: list[str] = []
    for user_id in _user_ids(engine):
        try:
            if guard is None:
                found = _repair_one(engine, user_id, repair)
            else:
                with hold(guard, user_id):
                    found = _repair_one(engine, user_id, repair)
        except RequestInProgressError:
            logger.info("Reconciliation skipped user %s: reward in progress", user_id)
            skipped.append(user_id)
            continue
        checked += found
    return checked, skipped


def _repair_one(engine: Engine, user_id: str, repair: Repair) -> bool:
    with get_session(engine) as session:
        user = session.get(User, user_id, with_for_update=True)
        if user is None:
            return False
        repair(session, user)
    return True


def reconcile_levels(
    engine: Engine,
    level_base: int = DEFAULT_LEVEL_BASE,
    *,
    guard: ConcurrencyGuard | None = None,
) -> dict:
    """Recompute ``level`` from ``xp`` for every user and fix drift.

    Returns ``{"checked": N, "corrected": M, "corrections": [...], "skipped": [...]}``.
    """
    corrections: list[dict] = []

    def repair(session: Session, user: User) -> None:
        expected = level_for_xp(user.xp or 0, level_base)
        if user.level != expected:
            corrections.append({
                "user_id": user.id,
                "xp": user.xp,
                "stored": user.level,
                "actual": expected,
            })
            user.level = expected

    checked, skipped = _for_each_user(engine, guard, repair)

    if corrections:
        logger.warning(
            "Level reconciliation (%s, base=%d): corrected %d/%d users: %s",
            LEVEL_CURVE_VERSION, level_base, len(corrections), checked, corrections,
        )
    else:
        logger.info("Level reconciliation: all %d users match", checked)

    return {
        "checked": checked,
        "corrected": len(corrections),
        "corrections": corrections,
        "skipped": skipped,
        "curve": LEVEL_CURVE_VERSION,
        "level_base": level_base,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def reconcile_current_streaks(engine: Engine, *, guard: ConcurrencyGuard | None = None) -> dict:
    """Repair ``is_current`` flags in ``streak_history``.

    Returns ``{"checked": N, "closed": [...], "opened": [...], "skipped": [...]}``.
    """
    closed: list[dict] = []
    opened: list[dict] = []

    def repair(session: Session, user: User) -> None:
        streaks = SqlStreakHistoryStore(session)
        keep = streaks.latest_current_entry(user.id)
        if keep is None:
            if user.current_streak > 0 and user.last_active_date is not None:
                streaks.close_current_and_open_new(user.id, StreakEntry(
                    id=None,
                    user_id=user.id,
                    streak_date=user.last_active_date,
                    streak_length=user.current_streak,
                ))
                opened.append({
                    "user_id": user.id,
                    "streak_date": user.last_active_date.isoformat(),
                    "streak_length": user.current_streak,
                })
            return

        stale_rows = session.scalars(
            select(StreakHistory).where(
                StreakHistory.user_id == user.id,
                StreakHistory.is_current.is_(True),
                StreakHistory.id != keep.id,
            )
        ).all()
        for stale in stale_rows:
            stale.is_current = False
            closed.append({"user_id": user.id, "streak_date": stale.streak_date.isoformat()})

    checked, skipped = _for_each_user(engine, guard, repair)

    if closed or opened:
        logger.warning(
            "Streak reconciliation: closed %d, opened %d current rows across %d users",
            len(closed), len(opened), checked,
        )
    else:
        logger.info("Streak reconciliation: all %d users consistent", checked)

    return {"checked": checked, "closed": closed, "opened": opened, "skipped": skipped}
