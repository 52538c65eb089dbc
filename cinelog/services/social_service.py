"""
cinelog.services.social_service — Relation, Activity & Identity Reads
======================================================================

Synchronous query helpers the feed aggregator fans out over.  Each helper
opens its own short session so it can run on its own worker thread via
:func:`~cinelog.database.engine.run_db`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from cinelog.database.engine import get_session
from cinelog.database.models import Follow, LogEntry, User
from cinelog.engine.feed import ActivityEntry, ActorSummary

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Identity store
# ---------------------------------------------------------------------------
def get_or_create_user(
    session: Session,
    user_id: str,
    username: str,
    avatar_url: str | None = None,
    is_verified: bool = False,
) -> User:
    """Fetch or insert a User row, refreshing its public identity."""
    user = session.get(User, user_id)
    if user is None:
        user = User(
            id=user_id,
            username=username,
            avatar_url=avatar_url,
            is_verified=is_verified,
        )
        session.add(user)
        session.flush()
    else:
        user.username = username
        user.avatar_url = avatar_url
        user.is_verified = is_verified
    return user


def resolve_identities(engine: Engine, user_ids: Iterable[str]) -> dict[str, ActorSummary]:
    """Batch-resolve public identities.  Unknown ids are simply absent."""
    ids = list(dict.fromkeys(user_ids))
    if not ids:
        return {}
    with get_session(engine) as session:
        rows = session.execute(
            select(User.id, User.username, User.avatar_url, User.is_verified)
            .where(User.id.in_(ids))
        ).all()
    return {
        row.id: ActorSummary(
            handle=row.username,
            avatar_url=row.avatar_url,
            verified=bool(row.is_verified),
        )
        for row in rows
    }


# ---------------------------------------------------------------------------
# Relation store
# ---------------------------------------------------------------------------
def get_followee_ids(engine: Engine, user_id: str) -> list[str]:
    """Users that *user_id* follows."""
    with get_session(engine) as session:
        return list(session.scalars(
            select(Follow.followee_id).where(Follow.follower_id == user_id)
        ).all())


def get_follower_ids(engine: Engine, user_id: str) -> list[str]:
    """Users that follow *user_id* (reverse index)."""
    with get_session(engine) as session:
        return list(session.scalars(
            select(Follow.follower_id).where(Follow.followee_id == user_id)
        ).all())


# ---------------------------------------------------------------------------
# Activity store
# ---------------------------------------------------------------------------
def entry_payload(log: LogEntry) -> dict:
    """Public, JSON-safe body of an entry as shown in feeds."""
    return {
        "post_type": log.post_type,
        "content_type": log.content_type,
        "content_id": log.content_id,
        "season_number": log.season_number,
        "episode_number": log.episode_number,
        "watched_date": log.watched_date.isoformat() if log.watched_date else None,
        "is_rewatch": bool(log.is_rewatch),
        "rating": log.rating,
        "review": log.review,
        "post_text": log.post_text,
        "image_url": log.image_url,
        "linked_content": log.linked_content,
        "like_count": log.like_count,
    }


def to_activity_entry(log: LogEntry) -> ActivityEntry:
    return ActivityEntry(
        entry_id=log.id,
        owner_id=log.user_id,
        created_at=log.created_at,
        payload=entry_payload(log),
    )


def get_recent_activity(engine: Engine, owner_id: str, limit: int) -> list[ActivityEntry]:
    """Most recent *limit* feed-eligible entries by *owner_id*, newest first."""
    with get_session(engine) as session:
        logs = session.scalars(
            select(LogEntry)
            .where(LogEntry.user_id == owner_id, LogEntry.is_activity.is_(True))
            .order_by(LogEntry.created_at.desc(), LogEntry.id.desc())
            .limit(limit)
        ).all()
        return [to_activity_entry(log) for log in logs]


def get_content_activity_entries(
    engine: Engine,
    content_type: str,
    content_id: int,
    limit: int,
) -> list[ActivityEntry]:
    """Most recent feed-eligible logs about one catalog item."""
    with get_session(engine) as session:
        logs = session.scalars(
            select(LogEntry)
            .where(
                LogEntry.content_type == content_type,
                LogEntry.content_id == content_id,
                LogEntry.is_activity.is_(True),
            )
            .order_by(LogEntry.created_at.desc(), LogEntry.id.desc())
            .limit(limit)
        ).all()
        return [to_activity_entry(log) for log in logs]
