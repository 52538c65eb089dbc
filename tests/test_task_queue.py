"""
tests/test_task_queue.py — Evaluation Outbox Tests
===================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from cinelog.database.engine import get_session
from cinelog.database.models import EvaluationTask, TaskStatus, TriggerAction
from cinelog.services.task_queue import (
    claim_tasks,
    complete_task,
    enqueue_evaluation,
    fail_task,
    queue_stats,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _enqueue(engine, user_id="u1", action=TriggerAction.LOG_CREATED, delay=0.0) -> int:
    with get_session(engine) as session:
        task = enqueue_evaluation(session, user_id, action, T0, delay_seconds=delay)
        session.flush()
        return task.id


def _task(engine, task_id) -> EvaluationTask:
    with get_session(engine) as session:
        task = session.get(EvaluationTask, task_id)
        session.expunge(task)
        return task


class TestClaim:
    def test_enqueue_then_claim(self, db_engine):
        tid = _enqueue(db_engine)
        claimed = claim_tasks(db_engine, "w1", 10, 60, now=T0 + timedelta(seconds=1))

        assert [c.id for c in claimed] == [tid]
        assert claimed[0].user_id == "u1"
        assert claimed[0].attempts == 1
        assert claimed[0].trigger().action is TriggerAction.LOG_CREATED

        task = _task(db_engine, tid)
        assert task.status == TaskStatus.IN_PROGRESS.value
        assert task.lease_owner == "w1"

    def test_delay_respected(self, db_engine):
        _enqueue(db_engine, delay=5)
        assert claim_tasks(db_engine, "w1", 10, 60, now=T0 + timedelta(seconds=4)) == []
        assert len(claim_tasks(db_engine, "w1", 10, 60, now=T0 + timedelta(seconds=5))) == 1

    def test_batch_size(self, db_engine):
        for _ in range(3):
            _enqueue(db_engine)
        assert len(claim_tasks(db_engine, "w1", 2, 60, now=T0)) == 2

    def test_no_double_claim(self, db_engine):
        _enqueue(db_engine)
        _enqueue(db_engine, user_id="u2")
        first = claim_tasks(db_engine, "w1", 10, 60, now=T0)
        second = claim_tasks(db_engine, "w2", 10, 60, now=T0 + timedelta(seconds=1))
        assert len(first) == 2
        assert second == []

    def test_expired_lease_is_redelivered(self, db_engine):
        tid = _enqueue(db_engine)
        claim_tasks(db_engine, "w1", 10, 60, now=T0)

        assert claim_tasks(db_engine, "w2", 10, 60, now=T0 + timedelta(seconds=30)) == []
        again = claim_tasks(db_engine, "w2", 10, 60, now=T0 + timedelta(seconds=61))
        assert [c.id for c in again] == [tid]
        assert again[0].attempts == 2

    def test_trigger_without_action(self, db_engine):
        _enqueue(db_engine, action=None)
        claimed = claim_tasks(db_engine, "w1", 10, 60, now=T0)
        assert claimed[0].trigger().action is None


class TestComplete:
    def test_complete(self, db_engine):
        tid = _enqueue(db_engine)
        claim_tasks(db_engine, "w1", 10, 60, now=T0)
        assert complete_task(db_engine, tid, "w1") is True
        task = _task(db_engine, tid)
        assert task.status == TaskStatus.DONE.value
        assert task.lease_owner is None
        assert task.completed_at is not None

    def test_complete_by_other_worker_rejected(self, db_engine):
        tid = _enqueue(db_engine)
        claim_tasks(db_engine, "w1", 10, 60, now=T0)
        assert complete_task(db_engine, tid, "w2") is False
        assert _task(db_engine, tid).status == TaskStatus.IN_PROGRESS.value

    def test_done_tasks_not_reclaimed(self, db_engine):
        tid = _enqueue(db_engine)
        claim_tasks(db_engine, "w1", 10, 60, now=T0)
        complete_task(db_engine, tid, "w1")
        assert claim_tasks(db_engine, "w1", 10, 60, now=T0 + timedelta(days=1)) == []


class TestFail:
    def test_retry_with_backoff(self, db_engine):
        tid = _enqueue(db_engine)
        claim_tasks(db_engine, "w1", 10, 60, now=T0)

        status = fail_task(
            db_engine, tid, "w1", "boom", max_attempts=3, backoff_seconds=30, now=T0,
        )
        assert status is TaskStatus.PENDING
        task = _task(db_engine, tid)
        assert task.status == TaskStatus.PENDING.value
        assert task.last_error == "boom"
        assert task.lease_owner is None

        assert claim_tasks(db_engine, "w1", 10, 60, now=T0 + timedelta(seconds=29)) == []
        assert len(claim_tasks(db_engine, "w1", 10, 60, now=T0 + timedelta(seconds=30))) == 1

    def test_dead_after_max_attempts(self, db_engine, caplog):
        tid = _enqueue(db_engine)
        now = T0
        for _ in range(2):
            claim_tasks(db_engine, "w1", 10, 60, now=now)
            fail_task(db_engine, tid, "w1", "boom", max_attempts=3, backoff_seconds=1, now=now)
            now += timedelta(minutes=1)

        claim_tasks(db_engine, "w1", 10, 60, now=now)
        with caplog.at_level("ERROR", logger="cinelog.services.task_queue"):
            status = fail_task(
                db_engine, tid, "w1", "boom", max_attempts=3, backoff_seconds=1, now=now,
            )

        assert status is TaskStatus.DEAD
        assert "dead after 3 attempts" in caplog.text
        assert claim_tasks(db_engine, "w1", 10, 60, now=now + timedelta(days=1)) == []

    def test_error_truncated(self, db_engine):
        tid = _enqueue(db_engine)
        claim_tasks(db_engine, "w1", 10, 60, now=T0)
        fail_task(db_engine, tid, "w1", "x" * 5000, max_attempts=5, backoff_seconds=1, now=T0)
        assert len(_task(db_engine, tid).last_error) == 2000

    def test_lost_lease(self, db_engine):
        tid = _enqueue(db_engine)
        claim_tasks(db_engine, "w1", 10, 60, now=T0)
        assert fail_task(
            db_engine, tid, "w2", "boom", max_attempts=5, backoff_seconds=1, now=T0,
        ) is None


class TestStats:
    def test_every_status_reported(self, db_engine):
        assert queue_stats(db_engine) == {
            "PENDING": 0, "IN_PROGRESS": 0, "DONE": 0, "DEAD": 0,
        }

    def test_counts(self, db_engine):
        done = _enqueue(db_engine)
        _enqueue(db_engine, delay=3600)
        claim_tasks(db_engine, "w1", 1, 60, now=T0)
        complete_task(db_engine, done, "w1")
        stats = queue_stats(db_engine)
        assert stats["DONE"] == 1
        assert stats["PENDING"] == 1
