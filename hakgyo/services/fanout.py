"""
hakgyo.services.fanout — Event Fan-out Adapter
================================================

Entry points for workflows that raise gamification events as a side
effect of their own action (quiz submission, class join, ...).

Each event goes through the coordinator on its own lock cycle.  A failure
on a later event never undoes an earlier, already-committed one.

``timeout`` applies to each event separately; ``cancel`` is shared, so once
it is set every remaining event rolls back before commit.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from typing import Any

from hakgyo.engine.events import GameEvent
from hakgyo.services.reward_service import GamificationService

logger = logging.getLogger(__name__)

EventSpec = str | tuple[str, Mapping[str, Any] | None]


def trigger_event(
    service: GamificationService,
    user_id: str,
    event_name: str,
    metadata: Mapping[str, Any] | None = None,
    *,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> dict[str, Any]:
    """``{"success": True, "data": {...}}`` or ``{"success": False, "error": ...}``."""
    return service.process_event(
        user_id, event_name, metadata, timeout=timeout, cancel=cancel
    ).to_dict()


def _result_key(name: object, taken: Mapping[str, Any]) -> str:
    # Repeats of one event are keyed NAME#2, NAME#3, ... in call order.
    key, n = str(name), 1
    while key in taken:
        n += 1
        key = f"{name}#{n}"
    return key


def trigger_events(
    service: GamificationService,
    user_id: str,
    events: Iterable[EventSpec],
    *,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> dict[str, Any]:
    """Run *events* one after another; results keyed by event name.

    An event name that appears more than once gets one result per
    occurrence (``"LIKE_POST"``, ``"LIKE_POST#2"``, ...).  ``success`` is
    True only when every event succeeded.
    """
    results: dict[str, dict[str, Any]] = {}
    for item in events:
        if isinstance(item, str):
            name, metadata = item, None
        else:
            name, metadata = item
        outcome = trigger_event(
            service, user_id, name, metadata, timeout=timeout, cancel=cancel
        )
        if not outcome["success"]:
            logger.warning(
                "Fan-out event %s for user %s failed: %s", name, user_id, outcome["error"]
            )
        results[_result_key(name, results)] = outcome
    return {
        "success": all(r["success"] for r in results.values()),
        "results": results,
    }


def submit_assessment(
    service: GamificationService,
    user_id: str,
    *,
    correct: int,
    total: int,
    metadata: Mapping[str, Any] | None = None,
    event: GameEvent = GameEvent.COMPLETE_ASSESSMENT,
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> dict[str, Any]:
    """Reward a graded submission: completion, then PERFECT_SCORE at 100 %."""
    if total <= 0:
        raise ValueError("total must be > 0")
    if not 0 <= correct <= total:
        raise ValueError(f"correct must be between 0 and {total}")

    accuracy = round(correct / total * 100, 2)
    details = {**(metadata or {}), "correct": correct, "total": total, "accuracy": accuracy}
    perfect = correct == total

    events: list[EventSpec] = [(event.value, details)]
    if perfect:
        events.append((GameEvent.PERFECT_SCORE.value, details))

    outcome = trigger_events(service, user_id, events, timeout=timeout, cancel=cancel)
    outcome["accuracy"] = accuracy
    outcome["perfect"] = perfect
    return outcome
