"""
hakgyo.constants — Shared Constants & the Leveling Curve
==========================================================

Single source of truth for the XP → level curve.
Import from here instead of duplicating in services, routes, and tests.

Curve (version ``quadratic-v1``)::

    xp_for_level(L) = base * (L - 1) ** 2
    level_for_xp(X) = isqrt(X // base) + 1

Integer arithmetic only, so the two functions agree exactly at every
threshold: ``level_for_xp(xp_for_level(L)) == L`` and
``level_for_xp(xp_for_level(L) - 1) == L - 1`` for every ``L > 1``.

Changing the curve after launch requires re-deriving every stored
``users.level`` (see :func:`hakgyo.services.reconciliation_service.reconcile_levels`).
"""

from __future__ import annotations

from math import isqrt

LEVEL_CURVE_VERSION = "quadratic-v1"
DEFAULT_LEVEL_BASE = 100

# Every Nth level is a "milestone" level (badge colour change in the UI)
LEVEL_MILESTONE_EVERY = 5

# Activity feed pagination bounds
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

LEADERBOARD_SCOPES: tuple[str, ...] = ("weekly", "monthly", "alltime")


# ---------------------------------------------------------------------------
# Leveling formula — THE single canonical implementation
# ---------------------------------------------------------------------------
def xp_for_level(level: int, base: int = DEFAULT_LEVEL_BASE) -> int:
    """Total XP required to *reach* ``level`` (level 1 starts at 0)."""
    if level <= 1:
        return 0
    return base * (level - 1) ** 2


def level_for_xp(total_xp: int, base: int = DEFAULT_LEVEL_BASE) -> int:
    """Level held at ``total_xp`` cumulative XP.  Negative XP → level 1."""
    if total_xp <= 0:
        return 1
    return isqrt(total_xp // base) + 1
