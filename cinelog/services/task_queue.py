"""
cinelog.services.task_queue — At-Least-Once Evaluation Queue
=============================================================

An outbox table (``evaluation_tasks``) drained by
:class:`~cinelog.worker.core.EvaluationWorker`.

Lifecycle::

    PENDING ──claim──▶ IN_PROGRESS ──complete──▶ DONE
       ▲                    │
       └──── fail (retry) ──┤
                            └── fail (attempts exhausted) ──▶ DEAD

A claim is a conditional ``UPDATE`` that only succeeds while the row is
still claimable, so two workers can never hold the same lease.  A worker
that dies mid-task leaves an expired lease behind; the task becomes
claimable again and is redelivered.  Redelivery is harmless because
grants are idempotent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, and_, func, or_, select, update
from sqlalchemy.orm import Session

from cinelog.database.engine import get_session
from cinelog.database.models import EvaluationTask, TaskStatus, TriggerAction
from cinelog.engine.achievements import Trigger

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True, slots=True)
class ClaimedTask:
    id: int
    user_id: str
    action: str | None
    occurred_at: datetime
    attempts: int

    def trigger(self) -> Trigger:
        action = TriggerAction(self.action) if self.action else None
        return Trigger(action=action, occurred_at=self.occurred_at)


# ---------------------------------------------------------------------------
# Producer side
# ---------------------------------------------------------------------------
def enqueue_evaluation(
    session: Session,
    user_id: str,
    action: TriggerAction | str | None = None,
    occurred_at: datetime | None = None,
    *,
    delay_seconds: float = 0.0,
) -> EvaluationTask:
    """Add an evaluation task inside the caller's transaction.

    The task commits (or rolls back) together with the primary write,
    which is what makes delivery at-least-once.  It becomes claimable
    *delay_seconds* after *occurred_at*.
    """
    occurred = occurred_at or datetime.now(UTC)
    task = EvaluationTask(
        user_id=user_id,
        action=str(action) if action else None,
        occurred_at=occurred,
        status=TaskStatus.PENDING.value,
        attempts=0,
        available_at=occurred + timedelta(seconds=delay_seconds),
    )
    session.add(task)
    return task


# ---------------------------------------------------------------------------
# Consumer side
# ---------------------------------------------------------------------------
def _claimable(now: datetime):
    return or_(
        and_(
            EvaluationTask.status == TaskStatus.PENDING.value,
            EvaluationTask.available_at <= now,
        ),
        and_(
            EvaluationTask.status == TaskStatus.IN_PROGRESS.value,
            EvaluationTask.lease_expires_at < now,
        ),
    )


def claim_tasks(
    engine: Engine,
    worker_id: str,
    batch_size: int,
    lease_seconds: int,
    *,
    now: datetime | None = None,
) -> list[ClaimedTask]:
    """Lease up to *batch_size* claimable tasks for *worker_id*.

    Each candidate is claimed with its own conditional update; a
    candidate another worker claimed first is skipped.  ``attempts`` is
    incremented at claim time so a task whose worker keeps crashing
    still runs out of attempts.
    """
    now = now or datetime.now(UTC)
    lease_until = now + timedelta(seconds=lease_seconds)
    claimed: list[ClaimedTask] = []

    with get_session(engine) as session:
        candidate_ids = session.scalars(
            select(EvaluationTask.id)
            .where(_claimable(now))
            .order_by(EvaluationTask.available_at, EvaluationTask.id)
            .limit(batch_size)
        ).all()

        for task_id in candidate_ids:
            res = session.execute(
                update(EvaluationTask)
                .where(EvaluationTask.id == task_id, _claimable(now))
                .values(
                    status=TaskStatus.IN_PROGRESS.value,
                    lease_owner=worker_id,
                    lease_expires_at=lease_until,
                    attempts=EvaluationTask.attempts + 1,
                ),
                execution_options={"synchronize_session": False},
            )
            if res.rowcount != 1:
                logger.debug("Task %s claimed by another worker", task_id)
                continue

            row = session.execute(
                select(
                    EvaluationTask.user_id,
                    EvaluationTask.action,
                    EvaluationTask.occurred_at,
                    EvaluationTask.attempts,
                ).where(EvaluationTask.id == task_id)
            ).one()
            claimed.append(ClaimedTask(
                id=task_id,
                user_id=row.user_id,
                action=row.action,
                occurred_at=row.occurred_at,
                attempts=row.attempts,
            ))

    if claimed:
        logger.debug("Worker %s claimed %d tasks", worker_id, len(claimed))
    return claimed


def complete_task(engine: Engine, task_id: int, worker_id: str) -> bool:
    """Mark a leased task DONE.  Returns ``False`` if the lease was lost."""
    with get_session(engine) as session:
        res = session.execute(
            update(EvaluationTask)
            .where(
                EvaluationTask.id == task_id,
                EvaluationTask.lease_owner == worker_id,
                EvaluationTask.status == TaskStatus.IN_PROGRESS.value,
            )
            .values(
                status=TaskStatus.DONE.value,
                completed_at=datetime.now(UTC),
                lease_owner=None,
                lease_expires_at=None,
            ),
            execution_options={"synchronize_session": False},
        )
    if res.rowcount != 1:
        logger.warning("Task %s: lease lost before completion by %s", task_id, worker_id)
        return False
    return True


def fail_task(
    engine: Engine,
    task_id: int,
    worker_id: str,
    error: str,
    *,
    max_attempts: int,
    backoff_seconds: int,
    now: datetime | None = None,
) -> TaskStatus | None:
    """Record a failure and either reschedule or bury the task.

    Retries back off linearly (``backoff_seconds × attempts``).  Once
    ``attempts`` reaches *max_attempts* the task goes to DEAD.

    Returns the new status, or ``None`` if the lease was lost.
    """
    now = now or datetime.now(UTC)
    with get_session(engine) as session:
        task = session.scalar(
            select(EvaluationTask).where(
                EvaluationTask.id == task_id,
                EvaluationTask.lease_owner == worker_id,
                EvaluationTask.status == TaskStatus.IN_PROGRESS.value,
            )
        )
        if task is None:
            logger.warning("Task %s: lease lost before failure by %s", task_id, worker_id)
            return None

        task.last_error = error[:_MAX_ERROR_LENGTH]
        task.lease_owner = None
        task.lease_expires_at = None

        if task.attempts >= max_attempts:
            task.status = TaskStatus.DEAD.value
            task.completed_at = now
            logger.error(
                "Task %s for user %s is dead after %d attempts: %s",
                task_id, task.user_id, task.attempts, error,
            )
            return TaskStatus.DEAD

        task.status = TaskStatus.PENDING.value
        task.available_at = now + timedelta(seconds=backoff_seconds * task.attempts)
        logger.warning(
            "Task %s for user %s failed (attempt %d/%d), retrying: %s",
            task_id, task.user_id, task.attempts, max_attempts, error,
        )
        return TaskStatus.PENDING


def queue_stats(engine: Engine) -> dict[str, int]:
    """Task count per status (every status present, zero when empty)."""
    with get_session(engine) as session:
        rows = session.execute(
            select(EvaluationTask.status, func.count().label("n"))
            .group_by(EvaluationTask.status)
        ).all()
    stats = {status.value: 0 for status in TaskStatus}
    stats.update({row.status: row.n for row in rows})
    return stats
