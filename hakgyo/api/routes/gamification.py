"""
hakgyo.api.routes.gamification — Learner-facing reward endpoints
==================================================================
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from hakgyo.api.deps import (
    CurrentUser,
    get_config,
    get_engine,
    get_now,
    get_service,
)
from hakgyo.config import HakgyoConfig
from hakgyo.constants import DEFAULT_PAGE_SIZE, LEVEL_CURVE_VERSION, MAX_PAGE_SIZE
from hakgyo.database.engine import run_db
from hakgyo.engine.levels import level_table
from hakgyo.engine.reward import format_reward_summary
from hakgyo.errors import GamificationError
from hakgyo.services import fanout, profile_service
from hakgyo.services.reward_service import GamificationResult, GamificationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/gamification", tags=["gamification"])

# Request timeout handed to the coordinator; rollback if exceeded before commit.
EVENT_TIMEOUT_SECONDS = 10.0

_STATUS_BY_KIND = {
    "validation": 400,
    "not_found": 404,
    "contention": 429,
    "persistence": 500,
}


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class EventRequest(BaseModel):
    # Checked by the coordinator (400), not by pydantic (422).
    event: Any = None
    metadata: Any = None


class AssessmentRequest(BaseModel):
    correct: int = Field(ge=0)
    total: int = Field(gt=0)
    metadata: dict[str, Any] | None = None


class PreviewRequest(BaseModel):
    events: list[str] = Field(min_length=1, max_length=20)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _result_response(result: GamificationResult) -> JSONResponse:
    if result.success:
        return JSONResponse(result.to_dict())
    status_code = _STATUS_BY_KIND.get(result.error_kind or "", 500)
    headers = None
    if status_code == 429:
        headers = {"Retry-After": str(result.retry_after or 1)}
    return JSONResponse(result.to_dict(), status_code=status_code, headers=headers)


def _raise_http(exc: GamificationError) -> None:
    raise HTTPException(exc.http_status, detail=exc.public_message) from exc


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------
@router.post("/events")
async def post_event(
    body: EventRequest,
    user_id: CurrentUser,
    service: GamificationService = Depends(get_service),
):
    """Process one reward event for the authenticated learner."""
    result = await service.aprocess_event(
        user_id, body.event, body.metadata, timeout=EVENT_TIMEOUT_SECONDS
    )
    return _result_response(result)


@router.post("/assessments")
async def post_assessment(
    body: AssessmentRequest,
    user_id: CurrentUser,
    service: GamificationService = Depends(get_service),
):
    """Reward a graded submission (completion + perfect score at 100 %).

    Each event gets its own ``EVENT_TIMEOUT_SECONDS``; a client disconnect
    rolls back whichever event has not yet committed.
    """
    cancel = threading.Event()
    try:
        return await run_db(
            fanout.submit_assessment,
            service,
            user_id,
            correct=body.correct,
            total=body.total,
            metadata=body.metadata,
            timeout=EVENT_TIMEOUT_SECONDS,
            cancel=cancel,
        )
    except ValueError as exc:
        raise HTTPException(400, detail=str(exc))
    except asyncio.CancelledError:
        cancel.set()
        raise


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
@router.get("/profile")
async def get_profile(
    user_id: CurrentUser,
    engine: Engine = Depends(get_engine),
    config: HakgyoConfig = Depends(get_config),
    now: datetime = Depends(get_now),
):
    try:
        data = await run_db(
            profile_service.get_profile_summary, engine, user_id,
            now=now, config=config.rewards,
        )
    except GamificationError as exc:
        _raise_http(exc)
    return {"success": True, "data": data}


@router.get("/activity")
async def get_activity(
    user_id: CurrentUser,
    page: int = Query(1),
    limit: int = Query(DEFAULT_PAGE_SIZE),
    type: str | None = Query(None),
    date_from: datetime | None = Query(None, alias="from"),
    date_to: datetime | None = Query(None, alias="to"),
    engine: Engine = Depends(get_engine),
    config: HakgyoConfig = Depends(get_config),
    now: datetime = Depends(get_now),
):
    """Paginated activity history plus streak countdowns."""
    try:
        page_data = await run_db(
            profile_service.get_activity_page, engine, user_id,
            now=now, config=config.rewards, page=page, limit=limit,
            activity_type=type, date_from=date_from, date_to=date_to,
        )
    except ValueError as exc:
        raise HTTPException(400, detail=str(exc))
    except GamificationError as exc:
        _raise_http(exc)
    return {
        "success": True,
        "data": page_data["items"],
        "streak_info": page_data["streak_info"],
        "meta": page_data["meta"],
    }


@router.get("/leaderboard")
async def get_leaderboard(
    user_id: CurrentUser,
    scope: str = Query("alltime"),
    limit: int = Query(50),
    engine: Engine = Depends(get_engine),
    now: datetime = Depends(get_now),
):
    try:
        data = await run_db(
            profile_service.get_leaderboard, engine,
            now=now, scope=scope, limit=limit, user_id=user_id,
        )
    except ValueError as exc:
        raise HTTPException(400, detail=str(exc))
    except GamificationError as exc:
        _raise_http(exc)
    return {"success": True, "data": data}


@router.get("/levels")
def get_levels(
    max_level: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    config: HakgyoConfig = Depends(get_config),
):
    """Level thresholds and the reward table currently in force."""
    rewards = config.rewards
    return {
        "curve": LEVEL_CURVE_VERSION,
        "level_base": rewards.level_base,
        "config_version": rewards.config_version,
        "levels": level_table(max_level, rewards.level_base),
        "streak_milestones": list(rewards.streak_milestones),
        "milestone_xp_per_day": rewards.milestone_xp_per_day,
    }


@router.post("/preview")
async def post_preview(
    body: PreviewRequest,
    user_id: CurrentUser,
    service: GamificationService = Depends(get_service),
    now: datetime = Depends(get_now),
):
    """What the given events would award right now.  Nothing is written."""
    try:
        results = await run_db(service.preview, user_id, body.events, now=now)
    except GamificationError as exc:
        _raise_http(exc)
    return {
        "success": True,
        "data": [
            {
                "event": r.event.value,
                "base_xp": r.base_xp,
                "streak_bonus": r.streak_bonus,
                "total_xp": r.total_xp,
                "new_level": r.new_level,
                "current_streak": r.streak.new_streak,
                "streak_milestone_reached": r.streak_milestone_reached,
                "summary": format_reward_summary(r),
            }
            for r in results
        ],
        "xp_table": service.registry.xp_table(),
    }
