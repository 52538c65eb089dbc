"""
cinelog.services.counter_service — Per-User Counter Store
==========================================================

The only module that mutates ``user_counters`` / ``user_genre_counters``
outside of reconciliation.  Every mutation is a single atomic
``UPDATE … SET col = CASE WHEN col + :d < 0 THEN 0 ELSE col + :d END`` so
concurrent increments never lose updates and no counter goes negative.

Readers never see ORM rows; they get an immutable
:class:`~cinelog.engine.achievements.CounterSnapshot`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from sqlalchemy import Engine, case, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cinelog.database.engine import get_session
from cinelog.database.models import COUNTER_FIELDS, UserCounters, UserGenreCounter
from cinelog.engine.achievements import CounterSnapshot

logger = logging.getLogger(__name__)


def _floored(column, delta: int):
    return case((column + delta < 0, 0), else_=column + delta)


def _ensure_row(session: Session, model: type, **key) -> None:
    """Insert a zeroed row for *key* unless one exists.

    Two writers may race on the first insert; the loser's SAVEPOINT is
    rolled back and the outer transaction carries on.
    """
    ident = tuple(key.values()) if len(key) > 1 else next(iter(key.values()))
    if session.get(model, ident) is not None:
        return
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(model(**key))
            session.flush()
    except IntegrityError:
        logger.debug("%s row for %s created concurrently", model.__tablename__, key)


# ---------------------------------------------------------------------------
# Mutation
# ---------------------------------------------------------------------------
def adjust_counters(
    session: Session,
    user_id: str,
    deltas: Mapping[str, int],
    genre_deltas: Mapping[int, int] | None = None,
) -> None:
    """Apply *deltas* to the user's counters inside *session*.

    Parameters
    ----------
    session:
        Open session; the caller owns the transaction.
    deltas:
        Counter name → signed delta.  Zero deltas are skipped.
    genre_deltas:
        Genre id → signed delta for the per-genre counters.

    Raises
    ------
    ValueError
        If a counter name is not one of ``COUNTER_FIELDS``.
    """
    unknown = set(deltas) - set(COUNTER_FIELDS)
    if unknown:
        raise ValueError(f"Unknown counters: {sorted(unknown)}")

    values = {
        name: _floored(getattr(UserCounters, name), delta)
        for name, delta in deltas.items()
        if delta
    }
    if values:
        _ensure_row(session, UserCounters, user_id=user_id)
        session.execute(
            update(UserCounters)
            .where(UserCounters.user_id == user_id)
            .values(**values),
            execution_options={"synchronize_session": False},
        )

    for genre_id, delta in (genre_deltas or {}).items():
        if not delta:
            continue
        _ensure_row(session, UserGenreCounter, user_id=user_id, genre_id=genre_id)
        session.execute(
            update(UserGenreCounter)
            .where(
                UserGenreCounter.user_id == user_id,
                UserGenreCounter.genre_id == genre_id,
            )
            .values(count=_floored(UserGenreCounter.count, delta)),
            execution_options={"synchronize_session": False},
        )


def increment(engine: Engine, user_id: str, counter: str, by: int = 1) -> None:
    """Atomically add *by* to one counter."""
    with get_session(engine) as session:
        adjust_counters(session, user_id, {counter: by})


def decrement(engine: Engine, user_id: str, counter: str, by: int = 1) -> None:
    """Atomically subtract *by* from one counter, flooring at zero."""
    with get_session(engine) as session:
        adjust_counters(session, user_id, {counter: -by})


def best_effort_adjust(
    engine: Engine,
    user_id: str,
    deltas: Mapping[str, int],
    genre_deltas: Mapping[int, int] | None = None,
    *,
    reason: str,
) -> bool:
    """Adjust counters in their own transaction; never raise on DB errors.

    Used after a primary write has already committed.  A failure leaves
    the counters stale until the next reconciliation run.

    Returns ``True`` when the adjustment was committed.
    """
    try:
        with get_session(engine) as session:
            adjust_counters(session, user_id, deltas, genre_deltas)
    except SQLAlchemyError:
        logger.exception(
            "Counter adjustment failed for user %s after %s (deltas=%s, genres=%s)",
            user_id, reason, dict(deltas), dict(genre_deltas or {}),
        )
        return False
    return True


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------
def get_snapshot(engine: Engine, user_id: str) -> CounterSnapshot:
    """Read an immutable snapshot; a user without a row reads as all zeros."""
    with get_session(engine) as session:
        row = session.get(UserCounters, user_id)
        genre_rows = session.execute(
            select(UserGenreCounter.genre_id, UserGenreCounter.count)
            .where(UserGenreCounter.user_id == user_id)
        ).all()

        if row is None and not genre_rows:
            return CounterSnapshot.empty(user_id)

        return CounterSnapshot(
            user_id=user_id,
            counters=row.as_dict() if row is not None else {},
            genre_counts={r.genre_id: r.count for r in genre_rows},
        )
