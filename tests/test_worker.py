"""
tests/test_worker.py — Evaluation Worker Tests
===============================================
"""

from __future__ import annotations

import asyncio
from datetime import date
from unittest.mock import patch

from sqlalchemy import select

from cinelog.config import WorkerConfig
from cinelog.database.engine import get_session
from cinelog.database.models import EvaluationTask, TaskStatus
from cinelog.services.achievement_service import get_granted_ids
from cinelog.services.activity_service import create_log
from cinelog.worker.core import EvaluationWorker


# Helper to run async tests without pytest-asyncio
def run_async(coro):
    """Run an async coroutine in a new event loop."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


def _only_task(engine) -> EvaluationTask:
    with get_session(engine) as session:
        task = session.scalars(select(EvaluationTask)).one()
        session.expunge(task)
        return task


def _log_movie(engine, user_id="u1"):
    return create_log(
        engine, user_id, content_type="movie", content_id=13,
        watched_date=date(2026, 5, 1), rating=7.5, evaluation_delay=0,
    )


class TestRunOnce:
    def test_grants_and_completes(self, db_engine, make_users):
        make_users("u1")
        _log_movie(db_engine)
        worker = EvaluationWorker(db_engine, worker_id="w-test")

        assert run_async(worker.run_once()) == 1
        assert "FIRST_LOG" in get_granted_ids(db_engine, "u1")
        task = _only_task(db_engine)
        assert task.status == TaskStatus.DONE.value
        assert task.attempts == 1

    def test_empty_queue(self, db_engine):
        worker = EvaluationWorker(db_engine, worker_id="w-test")
        assert run_async(worker.run_once()) == 0

    def test_evaluation_error_reschedules(self, db_engine, make_users, caplog):
        make_users("u1")
        _log_movie(db_engine)
        worker = EvaluationWorker(db_engine, worker_id="w-test")

        with patch("cinelog.worker.core.evaluate", side_effect=RuntimeError("db gone")):
            run_async(worker.run_once())

        task = _only_task(db_engine)
        assert task.status == TaskStatus.PENDING.value
        assert task.attempts == 1
        assert "db gone" in task.last_error
        assert "Evaluation task" in caplog.text

    def test_failed_grant_reschedules(self, db_engine, make_users):
        from cinelog.services.achievement_service import EvaluationResult

        make_users("u1")
        _log_movie(db_engine)
        worker = EvaluationWorker(db_engine, worker_id="w-test")

        result = EvaluationResult(granted=["LOG_MOVIE_1"], failed=["FIRST_LOG"])
        with patch("cinelog.worker.core.evaluate", return_value=result):
            run_async(worker.run_once())

        task = _only_task(db_engine)
        assert task.status == TaskStatus.PENDING.value
        assert "FIRST_LOG" in task.last_error

    def test_last_attempt_goes_dead(self, db_engine, make_users):
        make_users("u1")
        _log_movie(db_engine)
        worker = EvaluationWorker(db_engine, WorkerConfig(max_attempts=1), worker_id="w-test")

        with patch("cinelog.worker.core.evaluate", side_effect=RuntimeError("boom")):
            run_async(worker.run_once())

        assert _only_task(db_engine).status == TaskStatus.DEAD.value


class TestReconcileInterval:
    def test_first_call_runs_then_waits(self, db_engine):
        worker = EvaluationWorker(
            db_engine, WorkerConfig(reconciliation_interval_hours=1), worker_id="w-test",
        )
        with patch("cinelog.worker.core.reconcile_counters", return_value={"checked": 0}) as rec:
            assert run_async(worker.maybe_reconcile(now=1000.0)) == {"checked": 0}
            assert run_async(worker.maybe_reconcile(now=1000.0 + 3599)) is None
            assert run_async(worker.maybe_reconcile(now=1000.0 + 3600)) == {"checked": 0}
        assert rec.call_count == 2


class TestRunForever:
    def test_returns_when_stopped(self, db_engine):
        worker = EvaluationWorker(db_engine, worker_id="w-test")

        async def _go():
            stop = asyncio.Event()
            stop.set()
            await worker.run_forever(stop)

        run_async(_go())

    def test_stops_while_idle(self, db_engine):
        worker = EvaluationWorker(
            db_engine, WorkerConfig(poll_interval_seconds=0.05), worker_id="w-test",
        )

        async def _go():
            stop = asyncio.Event()
            asyncio.get_running_loop().call_later(0.2, stop.set)
            with patch("cinelog.worker.core.reconcile_counters", return_value={}):
                await asyncio.wait_for(worker.run_forever(stop), timeout=5)

        run_async(_go())

    def test_default_worker_id(self, db_engine):
        assert ":" in EvaluationWorker(db_engine).worker_id
