"""
cinelog.api.routes.admin — Operational endpoints (admin JWT)
=============================================================
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import Engine

from cinelog.api.deps import get_current_admin, get_engine
from cinelog.database.engine import run_db
from cinelog.services.reconciliation_service import reconcile_counters
from cinelog.services.task_queue import queue_stats

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.post("/reconcile")
async def run_reconciliation(
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    """Recompute all counters from primary entities and fix drift now."""
    logger.info("Counter reconciliation requested by admin %s", admin.get("sub"))
    return await run_db(reconcile_counters, engine)


@router.get("/queue")
async def get_queue_stats(
    admin: dict = Depends(get_current_admin),
    engine: Engine = Depends(get_engine),
):
    """Evaluation task counts per status."""
    return await run_db(queue_stats, engine)
