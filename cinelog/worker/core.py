"""
cinelog.worker.core — Evaluation Queue Worker
==============================================

Drains ``evaluation_tasks``: claim a batch, evaluate each user on a worker
thread, ack or fail each task.  Also runs counter reconciliation on its
own, much slower, interval.

Several workers may run side by side; leases keep them off each other's
tasks and idempotent grants make any overlap harmless.
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
import time

from sqlalchemy import Engine

from cinelog.config import WorkerConfig
from cinelog.database.engine import run_db
from cinelog.services.achievement_service import evaluate
from cinelog.services.reconciliation_service import reconcile_counters
from cinelog.services.task_queue import ClaimedTask, claim_tasks, complete_task, fail_task

logger = logging.getLogger(__name__)


class EvaluationWorker:
    """Poll the evaluation queue until told to stop."""

    def __init__(
        self,
        engine: Engine,
        cfg: WorkerConfig | None = None,
        worker_id: str | None = None,
    ) -> None:
        self.engine = engine
        self.cfg = cfg or WorkerConfig()
        self.worker_id = worker_id or f"{socket.gethostname()}:{os.getpid()}"
        self._last_reconcile: float | None = None

    async def run_once(self) -> int:
        """Claim and process one batch.  Returns the number of tasks claimed."""
        tasks = await run_db(
            claim_tasks,
            self.engine,
            self.worker_id,
            self.cfg.batch_size,
            self.cfg.lease_seconds,
        )
        for task in tasks:
            await self._process(task)
        return len(tasks)

    async def _process(self, task: ClaimedTask) -> None:
        try:
            result = await run_db(evaluate, self.engine, task.user_id, task.trigger())
        except Exception as exc:
            logger.exception("Evaluation task %s for user %s failed", task.id, task.user_id)
            await run_db(
                fail_task,
                self.engine,
                task.id,
                self.worker_id,
                repr(exc),
                max_attempts=self.cfg.max_attempts,
                backoff_seconds=self.cfg.retry_backoff_seconds,
            )
            return

        if result.failed:
            # Some grants hit storage errors; retry the whole evaluation.
            await run_db(
                fail_task,
                self.engine,
                task.id,
                self.worker_id,
                f"grant failed: {result.failed}",
                max_attempts=self.cfg.max_attempts,
                backoff_seconds=self.cfg.retry_backoff_seconds,
            )
            return

        await run_db(complete_task, self.engine, task.id, self.worker_id)

    async def maybe_reconcile(self, now: float | None = None) -> dict | None:
        """Run reconciliation if the interval has elapsed (or never ran)."""
        now = time.monotonic() if now is None else now
        interval = self.cfg.reconciliation_interval_hours * 3600
        if self._last_reconcile is not None and now - self._last_reconcile < interval:
            return None
        self._last_reconcile = now
        return await run_db(reconcile_counters, self.engine)

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Loop until *stop_event* is set.  A failed cycle is logged and retried."""
        logger.info("Evaluation worker %s started", self.worker_id)
        while not stop_event.is_set():
            claimed = 0
            try:
                claimed = await self.run_once()
                await self.maybe_reconcile()
            except Exception:
                logger.exception("Worker cycle failed")

            if claimed == 0:
                try:
                    await asyncio.wait_for(
                        stop_event.wait(), timeout=self.cfg.poll_interval_seconds
                    )
                except TimeoutError:
                    pass
        logger.info("Evaluation worker %s stopped", self.worker_id)
