"""
hakgyo.api.routes.admin — Operator endpoints (admin JWT required)
===================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from hakgyo.api.deps import get_config, get_current_admin, get_engine, get_service
from hakgyo.config import HakgyoConfig
from hakgyo.database.engine import run_db
from hakgyo.services.log_buffer import (
    VALID_LEVELS,
    get_capture_level,
    get_logs,
    set_capture_level,
)
from hakgyo.services.reconciliation_service import (
    reconcile_current_streaks,
    reconcile_levels,
)
from hakgyo.services.reward_service import GamificationService

router = APIRouter(prefix="/admin", tags=["admin"])


class LogLevelUpdate(BaseModel):
    level: str


# ---------------------------------------------------------------------------
# Live Logs
# ---------------------------------------------------------------------------
@router.get("/logs")
def get_live_logs(
    tail: int = Query(200, ge=1, le=2000),
    level: str | None = Query(None),
    logger_filter: str | None = Query(None, alias="logger"),
    admin: dict = Depends(get_current_admin),
):
    """Recent log entries from the in-memory ring buffer."""
    if level is not None and level.upper() not in VALID_LEVELS:
        raise HTTPException(400, detail=f"Invalid level. Must be one of: {', '.join(VALID_LEVELS)}")
    entries = get_logs(tail=tail, level=level, logger_filter=logger_filter)
    return {
        "entries": entries,
        "total": len(entries),
        "capture_level": get_capture_level(),
        "valid_levels": list(VALID_LEVELS),
    }


@router.put("/logs/level")
def change_log_level(
    body: LogLevelUpdate,
    admin: dict = Depends(get_current_admin),
):
    try:
        return {"level": set_capture_level(body.level)}
    except ValueError:
        raise HTTPException(400, detail=f"Invalid level. Must be one of: {', '.join(VALID_LEVELS)}")


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------
@router.post("/reconcile-levels")
async def run_level_reconciliation(
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    config: HakgyoConfig = Depends(get_config),
    service: GamificationService = Depends(get_service),
):
    """Re-derive every stored level from XP with the configured curve.

    Users with a reward in flight are skipped and listed under ``skipped``.
    """
    return await run_db(
        reconcile_levels, engine, config.rewards.level_base, guard=service.guard
    )


@router.post("/reconcile-streaks")
async def run_streak_reconciliation(
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
    service: GamificationService = Depends(get_service),
):
    return await run_db(reconcile_current_streaks, engine, guard=service.guard)


@router.get("/locks")
def list_active_locks(
    admin: dict = Depends(get_current_admin),
    service: GamificationService = Depends(get_service),
):
    """User ids currently holding the reward guard (in-memory guard only)."""
    active = getattr(service.guard, "active_locks", None)
    return {
        "backend": type(service.guard).__name__,
        "timeout_seconds": service.guard.timeout_seconds,
        "active": active() if active is not None else None,
    }
