"""
tests/test_fanout.py — Event Fan-out Tests
============================================
"""

from __future__ import annotations

import threading

import pytest
from conftest import make_user
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from hakgyo.config import RewardConfig
from hakgyo.database.models import ActivityLog, User
from hakgyo.engine.events import GameEvent
from hakgyo.services import fanout
from hakgyo.services.repositories import Repositories, sql_repositories
from hakgyo.services.reward_service import GamificationService


class _RejectPerfectScore:
    def __init__(self, inner):
        self.inner = inner

    def append(self, entry):
        if entry.event_type == "PERFECT_SCORE":
            raise OperationalError("INSERT INTO activity_log", {}, Exception("connection reset"))
        return self.inner.append(entry)


def _reject_perfect(session):
    repos = sql_repositories(session)
    return Repositories(users=repos.users, streaks=repos.streaks,
                        activity=_RejectPerfectScore(repos.activity))


@pytest.fixture
def service(db_engine, clock):
    make_user(db_engine)
    return GamificationService(db_engine, config=RewardConfig(timezone="Asia/Jakarta"), clock=clock)


def _activity(engine) -> list[ActivityLog]:
    with Session(engine) as session:
        return session.scalars(select(ActivityLog).order_by(ActivityLog.id)).all()


class TestTriggerEvent:
    def test_success_shape(self, service):
        outcome = fanout.trigger_event(service, "u1", "JOIN_KELAS", {"kelas_id": 3})
        assert outcome["success"]
        assert outcome["data"]["total_xp"] == 20

    def test_failure_shape(self, service):
        outcome = fanout.trigger_event(service, "u1", "NOPE")
        assert outcome == {
            "success": False,
            "error": "Invalid or missing event type",
            "error_kind": "validation",
            "retryable": False,
        }


class TestTriggerEvents:
    def test_partial_failure_reported(self, service):
        outcome = fanout.trigger_events(service, "u1", ["DAILY_LOGIN", "NOPE", ("LIKE_POST", None)])
        assert not outcome["success"]
        assert outcome["results"]["DAILY_LOGIN"]["success"]
        assert not outcome["results"]["NOPE"]["success"]
        assert outcome["results"]["LIKE_POST"]["success"]

    def test_repeated_event_keeps_every_outcome(self, service, db_engine):
        outcome = fanout.trigger_events(service, "u1", ["LIKE_POST", "LIKE_POST", ("LIKE_POST", {"post_id": 9})])
        assert outcome["success"]
        assert list(outcome["results"]) == ["LIKE_POST", "LIKE_POST#2", "LIKE_POST#3"]
        ids = [r["data"]["activity_id"] for r in outcome["results"].values()]
        assert len(set(ids)) == 3
        assert len(_activity(db_engine)) == 3
        with Session(db_engine) as session:
            assert session.get(User, "u1").xp == 6

    def test_timeout_reaches_every_event(self, service, db_engine):
        outcome = fanout.trigger_events(service, "u1", ["DAILY_LOGIN", "LIKE_POST"], timeout=0)
        assert not outcome["success"]
        assert [r["error_kind"] for r in outcome["results"].values()] == ["persistence", "persistence"]
        assert _activity(db_engine) == []

    def test_cancel_signal_stops_remaining_events(self, service, db_engine):
        cancel = threading.Event()
        cancel.set()
        outcome = fanout.submit_assessment(service, "u1", correct=2, total=2, cancel=cancel)
        assert not outcome["success"]
        assert set(outcome["results"]) == {"COMPLETE_ASSESSMENT", "PERFECT_SCORE"}
        assert _activity(db_engine) == []
        with Session(db_engine) as session:
            assert session.get(User, "u1").xp == 0


class TestSubmitAssessment:
    def test_perfect_score_emits_two_events(self, service, db_engine):
        outcome = fanout.submit_assessment(service, "u1", correct=10, total=10, metadata={"quiz_id": 7})

        assert outcome["success"]
        assert outcome["perfect"]
        assert outcome["accuracy"] == 100.0
        rows = _activity(db_engine)
        assert [r.event_type for r in rows] == ["COMPLETE_ASSESSMENT", "PERFECT_SCORE"]
        assert rows[0].metadata_ == {"quiz_id": 7, "correct": 10, "total": 10, "accuracy": 100.0}
        # Only the first event of the day counts toward the streak.
        assert [r.streak_updated for r in rows] == [True, False]
        with Session(db_engine) as session:
            assert session.get(User, "u1").xp == 25 + 30

    def test_partial_score_emits_one_event(self, service, db_engine):
        outcome = fanout.submit_assessment(service, "u1", correct=7, total=9)
        assert outcome["success"]
        assert not outcome["perfect"]
        assert outcome["accuracy"] == 77.78
        assert list(outcome["results"]) == ["COMPLETE_ASSESSMENT"]
        assert len(_activity(db_engine)) == 1

    def test_second_event_failure_keeps_first_committed(self, db_engine, clock):
        make_user(db_engine)
        service = GamificationService(
            db_engine, config=RewardConfig(timezone="Asia/Jakarta"),
            clock=clock, repositories=_reject_perfect,
        )
        outcome = fanout.submit_assessment(service, "u1", correct=5, total=5)

        assert not outcome["success"]
        assert outcome["results"]["COMPLETE_ASSESSMENT"]["success"]
        assert outcome["results"]["PERFECT_SCORE"]["error_kind"] == "persistence"
        assert [r.event_type for r in _activity(db_engine)] == ["COMPLETE_ASSESSMENT"]
        with Session(db_engine) as session:
            assert session.get(User, "u1").xp == 25

    def test_solo_exercise_event(self, service):
        outcome = fanout.submit_assessment(
            service, "u1", correct=3, total=4, event=GameEvent.COMPLETE_SOAL
        )
        assert outcome["results"]["COMPLETE_SOAL"]["data"]["base_xp"] == 15

    @pytest.mark.parametrize("correct, total", [(1, 0), (-1, 5), (6, 5)])
    def test_invalid_counts(self, service, correct, total):
        with pytest.raises(ValueError):
            fanout.submit_assessment(service, "u1", correct=correct, total=total)
