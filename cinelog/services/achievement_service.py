"""
cinelog.services.achievement_service — Achievement Evaluation & Grant Ledger
=============================================================================

Reads a counter snapshot and the grant set, asks the pure engine which
definitions are now satisfied, and writes each grant with an insert-only
conditional write.  The ``(user_id, achievement_id)`` primary key is the
only serialisation point: when two evaluations for the same user race,
the loser's insert fails with ``IntegrityError`` and is logged at INFO.

Evaluation is never coupled to the transaction of the action that
triggered it.  Callers either enqueue a task (see :mod:`task_queue`) or
fire :func:`on_user_activity` and forget about it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import Engine, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from cinelog.database.engine import get_session, run_db
from cinelog.database.models import UserAchievement
from cinelog.engine.achievements import Trigger, check_achievements
from cinelog.engine.catalog import (
    ACHIEVEMENTS,
    CATALOG_VERSION,
    AchievementDefinition,
    get_definition,
)
from cinelog.services.counter_service import get_snapshot

logger = logging.getLogger(__name__)

# Strong references to in-flight fire-and-forget evaluations.
_background_tasks: set[asyncio.Task] = set()


@dataclass(slots=True)
class EvaluationResult:
    """What one :func:`evaluate` call did.  Informational only."""

    granted: list[str] = field(default_factory=list)
    raced: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Grant ledger
# ---------------------------------------------------------------------------
def get_granted_ids(engine: Engine, user_id: str) -> set[str]:
    """Achievement ids the user already holds."""
    with get_session(engine) as session:
        return set(session.scalars(
            select(UserAchievement.achievement_id)
            .where(UserAchievement.user_id == user_id)
        ).all())


def list_grants(engine: Engine, user_id: str) -> list[dict]:
    """The user's grants joined with catalog text, most recent first.

    Grants whose id is no longer in the catalog are still listed, with the
    raw id as display name.
    """
    with get_session(engine) as session:
        rows = session.execute(
            select(UserAchievement.achievement_id, UserAchievement.earned_at)
            .where(UserAchievement.user_id == user_id)
            .order_by(UserAchievement.earned_at.desc(), UserAchievement.achievement_id)
        ).all()

    grants = []
    for row in rows:
        definition = get_definition(row.achievement_id)
        grants.append({
            "achievement_id": row.achievement_id,
            "earned_at": row.earned_at.isoformat() if row.earned_at else None,
            "display_name": definition.display_name if definition else row.achievement_id,
            "description": definition.description if definition else None,
            "icon": definition.icon if definition else None,
        })
    return grants


def _grant_exists(engine: Engine, user_id: str, achievement_id: str) -> bool:
    with get_session(engine) as session:
        return session.get(UserAchievement, (user_id, achievement_id)) is not None


def try_grant(engine: Engine, user_id: str, achievement_id: str) -> bool:
    """Insert the grant unless it already exists.

    Returns ``True`` if this call created the row, ``False`` if another
    writer got there first.  Other storage errors propagate, including
    an ``IntegrityError`` that is not a duplicate grant (e.g. the user
    row is missing).
    """
    try:
        with get_session(engine) as session:
            session.add(UserAchievement(
                user_id=user_id,
                achievement_id=achievement_id,
                earned_at=datetime.now(UTC),
            ))
    except IntegrityError:
        if not _grant_exists(engine, user_id, achievement_id):
            raise
        logger.info(
            "Achievement %s already granted to %s (concurrent evaluation)",
            achievement_id, user_id,
        )
        return False

    logger.info("Granted achievement %s to %s", achievement_id, user_id)
    return True


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------
def evaluate(
    engine: Engine,
    user_id: str,
    trigger: Trigger | None = None,
    *,
    definitions: Iterable[AchievementDefinition] = ACHIEVEMENTS,
) -> EvaluationResult:
    """Grant every definition the user now qualifies for.

    Safe to call any number of times, concurrently, for the same user.
    A storage error while granting one definition is logged and the
    remaining grants are still attempted.

    Raises
    ------
    SQLAlchemyError
        If the snapshot or the grant set cannot be read; nothing was
        granted and the caller may retry.
    """
    snapshot = get_snapshot(engine, user_id)
    already = get_granted_ids(engine, user_id)
    due = check_achievements(definitions, snapshot, already, trigger)

    result = EvaluationResult()
    for achievement_id in due:
        try:
            if try_grant(engine, user_id, achievement_id):
                result.granted.append(achievement_id)
            else:
                result.raced.append(achievement_id)
        except SQLAlchemyError:
            logger.exception("Failed to grant %s to %s", achievement_id, user_id)
            result.failed.append(achievement_id)

    if result.granted:
        logger.info("User %s earned %s", user_id, result.granted)
    return result


async def on_user_activity(
    engine: Engine,
    user_id: str,
    trigger: Trigger | None = None,
) -> EvaluationResult | None:
    """Evaluate on a worker thread; failures are logged, never raised."""
    try:
        return await run_db(evaluate, engine, user_id, trigger)
    except Exception:
        logger.exception("Achievement evaluation failed for %s", user_id)
        return None


def schedule_evaluation(
    engine: Engine,
    user_id: str,
    trigger: Trigger | None = None,
) -> asyncio.Task:
    """Start :func:`on_user_activity` in the background and return at once."""
    task = asyncio.get_running_loop().create_task(
        on_user_activity(engine, user_id, trigger)
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


# ---------------------------------------------------------------------------
# Catalog projection for clients
# ---------------------------------------------------------------------------
def catalog_projection() -> dict:
    return {
        "version": CATALOG_VERSION,
        "definitions": [d.to_dict() for d in ACHIEVEMENTS],
    }
