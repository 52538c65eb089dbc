"""
cinelog.services.reconciliation_service — Counter Reconciliation
=================================================================

Periodic job that recomputes every user's counters from the primary
entities and corrects drift left behind by failed best-effort counter
writes.

How it works:
    1. Compute ground truth per user from ``log_entries``, ``follows``,
       ``user_lists``, ``watchlist_items`` and ``log_likes``.
    2. Compare against the stored ``user_counters`` / ``user_genre_counters``.
    3. Overwrite every mismatch with the true value.
    4. Log all corrections for audit and enqueue an evaluation for each
       corrected user (a correction can newly satisfy a threshold).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import UTC, datetime

from sqlalchemy import Engine, and_, func, select
from sqlalchemy.orm import Session

from cinelog.constants import WIRED_GENRE_IDS
from cinelog.database.engine import get_session
from cinelog.database.models import (
    COUNTER_FIELDS,
    ContentType,
    Follow,
    LogEntry,
    LogLike,
    PostType,
    TriggerAction,
    User,
    UserCounters,
    UserGenreCounter,
    UserList,
    WatchlistItem,
)
from cinelog.services.task_queue import enqueue_evaluation

logger = logging.getLogger(__name__)


def _count_by(session: Session, user_col, *where) -> dict[str, int]:
    q = select(user_col, func.count().label("n")).group_by(user_col)
    if where:
        q = q.where(and_(*where))
    return {row[0]: row.n for row in session.execute(q).all()}


def _ground_truth(session: Session) -> tuple[dict[str, dict[str, int]], dict[str, dict[int, int]]]:
    """Counters and wired-genre counts per user, computed from primary rows."""
    is_log = LogEntry.post_type == PostType.LOG.value
    sources = {
        "items_logged": _count_by(session, LogEntry.user_id, is_log),
        "reviews_written": _count_by(
            session, LogEntry.user_id,
            is_log, LogEntry.review.is_not(None), LogEntry.review != "",
        ),
        "movies_logged": _count_by(
            session, LogEntry.user_id, is_log, LogEntry.content_type == ContentType.MOVIE.value,
        ),
        "episodes_logged": _count_by(
            session, LogEntry.user_id,
            is_log,
            LogEntry.content_type == ContentType.TV.value,
            LogEntry.episode_number.is_not(None),
        ),
        "following": _count_by(session, Follow.follower_id),
        "followers": _count_by(session, Follow.followee_id),
        "lists_created": _count_by(session, UserList.user_id),
        "watchlist_size": _count_by(session, WatchlistItem.user_id),
        "likes_given": _count_by(session, LogLike.user_id),
    }

    counters: dict[str, dict[str, int]] = defaultdict(lambda: dict.fromkeys(COUNTER_FIELDS, 0))
    for name, per_user in sources.items():
        for user_id, n in per_user.items():
            counters[user_id][name] = n

    # genre_ids is a JSON list; count it in Python so the query stays portable.
    genres: dict[str, dict[int, int]] = defaultdict(dict)
    rows = session.execute(
        select(LogEntry.user_id, LogEntry.genre_ids)
        .where(is_log, LogEntry.genre_ids.is_not(None))
    ).all()
    for row in rows:
        for gid in set(row.genre_ids or []):
            if gid in WIRED_GENRE_IDS:
                genres[row.user_id][gid] = genres[row.user_id].get(gid, 0) + 1

    return counters, genres


def reconcile_counters(engine: Engine) -> dict:
    """Recompute all counters from primary entities and fix drift.

    Returns ``{"checked": N, "corrected": M, "corrections": [...],
    "timestamp": iso8601}``.  ``checked`` counts users examined.
    """
    corrections: list[dict] = []
    corrected_users: set[str] = set()
    now = datetime.now(UTC)

    with get_session(engine) as session:
        truth, genre_truth = _ground_truth(session)

        stored_rows = {c.user_id: c for c in session.scalars(select(UserCounters)).all()}
        genre_rows = {
            (g.user_id, g.genre_id): g
            for g in session.scalars(select(UserGenreCounter)).all()
        }
        known_users = set(session.scalars(select(User.id)).all())

        user_ids = (set(truth) | set(stored_rows)) & known_users
        for user_id in sorted(user_ids):
            actual = truth.get(user_id) or dict.fromkeys(COUNTER_FIELDS, 0)
            row = stored_rows.get(user_id)
            if row is None:
                row = UserCounters(user_id=user_id, **dict.fromkeys(COUNTER_FIELDS, 0))
                session.add(row)
            for name in COUNTER_FIELDS:
                stored = getattr(row, name) or 0
                if stored != actual[name]:
                    corrections.append({
                        "user_id": user_id,
                        "counter": name,
                        "stored": stored,
                        "actual": actual[name],
                        "diff": actual[name] - stored,
                    })
                    setattr(row, name, actual[name])
                    corrected_users.add(user_id)

        genre_keys = {
            (uid, gid) for uid, per in genre_truth.items() for gid in per
        } | set(genre_rows)
        for user_id, genre_id in sorted(genre_keys):
            if user_id not in known_users:
                continue
            actual = genre_truth.get(user_id, {}).get(genre_id, 0)
            row = genre_rows.get((user_id, genre_id))
            stored = row.count if row is not None else 0
            if stored == actual:
                continue
            corrections.append({
                "user_id": user_id,
                "counter": f"genre:{genre_id}",
                "stored": stored,
                "actual": actual,
                "diff": actual - stored,
            })
            if row is None:
                session.add(UserGenreCounter(user_id=user_id, genre_id=genre_id, count=actual))
            else:
                row.count = actual
            corrected_users.add(user_id)

        for user_id in sorted(corrected_users):
            enqueue_evaluation(session, user_id, TriggerAction.RECONCILED, now)

        checked = len(user_ids)

    if corrections:
        logger.warning(
            "Counter reconciliation: corrected %d counters for %d/%d users: %s",
            len(corrections), len(corrected_users), checked, corrections,
        )
    else:
        logger.info("Counter reconciliation: all counters match for %d users", checked)

    return {
        "checked": checked,
        "corrected": len(corrections),
        "corrections": corrections,
        "timestamp": now.isoformat(),
    }
