"""
cinelog.services.activity_service — State-Changing Actions
===========================================================

Every action here follows the same contract:

    1. Primary write + evaluation task enqueue, in ONE transaction.
    2. Counter adjustment, in its own transaction, best-effort.

Step 2 failing never undoes step 1; the counters stay stale until the
reconciliation job repairs them, and the queued evaluation still runs.

Validation errors raise :class:`ActivityValidationError` (a
``ValueError``).  Acting on an entity that does not exist raises
``LookupError``; acting on someone else's raises ``PermissionError``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, date, datetime

from sqlalchemy import Engine, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cinelog.config import WorkerConfig
from cinelog.constants import MAX_RATING, MIN_RATING, WIRED_GENRE_IDS
from cinelog.database.engine import get_session
from cinelog.database.models import (
    ContentType,
    Follow,
    LogEntry,
    LogLike,
    PostType,
    TriggerAction,
    User,
    UserList,
    WatchlistItem,
)
from cinelog.engine.feed import is_activity_eligible
from cinelog.services.counter_service import best_effort_adjust
from cinelog.services.social_service import entry_payload
from cinelog.services.task_queue import enqueue_evaluation

logger = logging.getLogger(__name__)

_DEFAULT_DELAY = WorkerConfig().evaluation_delay_seconds

# Sentinel for "field not supplied" in partial updates (None means clear).
_UNSET = object()


class ActivityValidationError(ValueError):
    """The caller supplied an invalid action payload."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _enqueue(
    session: Session,
    evaluations: Iterable[tuple[str, TriggerAction]],
    occurred_at: datetime,
    delay: float | None,
) -> None:
    for user_id, action in evaluations:
        enqueue_evaluation(
            session, user_id, action, occurred_at,
            delay_seconds=_DEFAULT_DELAY if delay is None else delay,
        )


def _clean_review(review: str | None) -> str | None:
    if review is None:
        return None
    text = review.strip()
    return text or None


def _check_rating(rating: float | None) -> float | None:
    if rating is None:
        return None
    try:
        value = float(rating)
    except (TypeError, ValueError):
        raise ActivityValidationError("Rating must be a number") from None
    if not MIN_RATING <= value <= MAX_RATING:
        raise ActivityValidationError(
            f"Rating must be between {MIN_RATING} and {MAX_RATING}"
        )
    return value


def _check_episode(
    content_type: ContentType,
    season_number: int | None,
    episode_number: int | None,
) -> tuple[int | None, int | None]:
    """Movies carry no season/episode; an episode needs a season."""
    if content_type is ContentType.MOVIE:
        if season_number is not None or episode_number is not None:
            raise ActivityValidationError("Movies cannot have a season or episode number")
        return None, None

    if season_number is None:
        if episode_number is not None:
            logger.warning("Episode number without season ignored for series log")
        return None, None
    if not isinstance(season_number, int) or season_number < 0:
        raise ActivityValidationError("Season number must be a non-negative integer")
    if episode_number is not None and (
        not isinstance(episode_number, int) or episode_number < 1
    ):
        raise ActivityValidationError("Episode number must be a positive integer")
    return season_number, episode_number


def _check_linked_content(linked: dict | None) -> dict | None:
    if not linked:
        return None
    content_id = linked.get("content_id")
    content_type = linked.get("content_type")
    title = (linked.get("title") or "").strip()
    if not isinstance(content_id, int):
        raise ActivityValidationError("Linked content id must be an integer")
    if content_type not in (ContentType.MOVIE, ContentType.TV):
        raise ActivityValidationError("Linked content type must be 'movie' or 'tv'")
    if not title:
        raise ActivityValidationError("Linked content title must not be empty")
    return {"content_id": content_id, "content_type": str(content_type), "title": title}


def _log_deltas(
    post_type: str,
    content_type: str | None,
    episode_number: int | None,
    review: str | None,
    genre_ids: list | None,
    sign: int = 1,
) -> tuple[dict[str, int], dict[int, int]]:
    """Counter deltas contributed by one entry (standalone posts count for nothing)."""
    if post_type != PostType.LOG:
        return {}, {}
    deltas = {"items_logged": sign}
    if review:
        deltas["reviews_written"] = sign
    if content_type == ContentType.MOVIE:
        deltas["movies_logged"] = sign
    elif content_type == ContentType.TV and episode_number is not None:
        deltas["episodes_logged"] = sign
    genre_deltas = {
        gid: sign for gid in set(genre_ids or []) if gid in WIRED_GENRE_IDS
    }
    return deltas, genre_deltas


def _require_users(session: Session, *user_ids: str) -> None:
    for user_id in user_ids:
        if session.get(User, user_id) is None:
            raise LookupError(f"User {user_id} not found")


def _owned_log(session: Session, user_id: str, log_id: str) -> LogEntry:
    log = session.get(LogEntry, log_id)
    if log is None:
        raise LookupError(f"Entry {log_id} not found")
    if log.user_id != user_id:
        raise PermissionError(f"Entry {log_id} does not belong to {user_id}")
    return log


# ---------------------------------------------------------------------------
# Logs and posts
# ---------------------------------------------------------------------------
def create_log(
    engine: Engine,
    user_id: str,
    *,
    post_type: str = PostType.LOG,
    content_type: str | None = None,
    content_id: int | None = None,
    watched_date: date | None = None,
    rating: float | None = None,
    review: str | None = None,
    is_rewatch: bool = False,
    season_number: int | None = None,
    episode_number: int | None = None,
    genre_ids: list[int] | None = None,
    post_text: str | None = None,
    image_url: str | None = None,
    linked_content: dict | None = None,
    evaluation_delay: float | None = None,
) -> str:
    """Create a diary log or a standalone text/quote post.

    Returns the new entry id.

    Raises
    ------
    ActivityValidationError
        Unknown post type, missing subject for a log, rating outside
        0.5–10, season/episode on a movie, or an empty standalone post.
    """
    try:
        kind = PostType(post_type)
    except ValueError:
        raise ActivityValidationError(f"Invalid post type: {post_type!r}") from None

    if kind is PostType.LOG:
        try:
            ctype = ContentType(content_type)
        except ValueError:
            raise ActivityValidationError("Content type must be 'movie' or 'tv'") from None
        if not isinstance(content_id, int):
            raise ActivityValidationError("A log needs an integer content id")
        if watched_date is None:
            raise ActivityValidationError("A log needs a watched date")
        season_number, episode_number = _check_episode(ctype, season_number, episode_number)
        rating = _check_rating(rating)
        review = _clean_review(review)
        fields = {
            "content_type": ctype.value,
            "content_id": content_id,
            "watched_date": watched_date,
            "is_rewatch": bool(is_rewatch),
            "season_number": season_number,
            "episode_number": episode_number,
            "rating": rating,
            "review": review,
            "genre_ids": list(genre_ids) if genre_ids else None,
        }
    else:
        text = (post_text or "").strip()
        if not text and not image_url:
            raise ActivityValidationError("A post needs text or an image")
        fields = {
            "post_text": text or None,
            "image_url": image_url,
            "linked_content": _check_linked_content(linked_content),
        }

    now = datetime.now(UTC)
    with get_session(engine) as session:
        log = LogEntry(
            user_id=user_id,
            post_type=kind.value,
            is_activity=is_activity_eligible(kind, fields.get("rating"), fields.get("review")),
            created_at=now,
            updated_at=now,
            **fields,
        )
        session.add(log)
        session.flush()
        log_id = log.id
        if kind is PostType.LOG:
            _enqueue(session, [(user_id, TriggerAction.LOG_CREATED)], now, evaluation_delay)

    deltas, genre_deltas = _log_deltas(
        kind, fields.get("content_type"), fields.get("episode_number"),
        fields.get("review"), fields.get("genre_ids"),
    )
    if deltas:
        best_effort_adjust(engine, user_id, deltas, genre_deltas, reason="log created")

    logger.info("User %s created %s %s", user_id, kind.value, log_id)
    return log_id


def update_log(
    engine: Engine,
    user_id: str,
    log_id: str,
    *,
    rating=_UNSET,
    review=_UNSET,
    watched_date=_UNSET,
    is_rewatch=_UNSET,
    season_number=_UNSET,
    episode_number=_UNSET,
    evaluation_delay: float | None = None,
) -> dict:
    """Edit a diary log.  Omitted fields are untouched; ``None`` clears.

    ``is_activity`` is recomputed, so removing the rating and review
    demotes the entry out of every feed.

    Returns the entry's updated public payload.
    """
    now = datetime.now(UTC)
    with get_session(engine) as session:
        log = _owned_log(session, user_id, log_id)
        if log.post_type != PostType.LOG:
            raise ActivityValidationError("Only diary logs can be edited")

        before = _log_deltas(
            log.post_type, log.content_type, log.episode_number, log.review, log.genre_ids,
        )[0]

        if rating is not _UNSET:
            log.rating = _check_rating(rating)
        if review is not _UNSET:
            log.review = _clean_review(review)
        if watched_date is not _UNSET:
            if watched_date is None:
                raise ActivityValidationError("A log needs a watched date")
            log.watched_date = watched_date
        if is_rewatch is not _UNSET:
            log.is_rewatch = bool(is_rewatch)
        if season_number is not _UNSET or episode_number is not _UNSET:
            season = log.season_number if season_number is _UNSET else season_number
            episode = log.episode_number if episode_number is _UNSET else episode_number
            if season_number is None and episode_number is _UNSET:
                episode = None
            log.season_number, log.episode_number = _check_episode(
                ContentType(log.content_type), season, episode,
            )

        log.is_activity = is_activity_eligible(log.post_type, log.rating, log.review)
        log.updated_at = now

        after = _log_deltas(
            log.post_type, log.content_type, log.episode_number, log.review, log.genre_ids,
        )[0]
        _enqueue(session, [(user_id, TriggerAction.LOG_UPDATED)], now, evaluation_delay)
        payload = entry_payload(log)

    deltas = {
        name: after.get(name, 0) - before.get(name, 0)
        for name in set(before) | set(after)
        if after.get(name, 0) != before.get(name, 0)
    }
    if deltas:
        best_effort_adjust(engine, user_id, deltas, reason="log updated")
    return payload


def delete_log(
    engine: Engine,
    user_id: str,
    log_id: str,
    *,
    evaluation_delay: float | None = None,
) -> None:
    """Delete an entry together with the likes it received."""
    now = datetime.now(UTC)
    with get_session(engine) as session:
        log = _owned_log(session, user_id, log_id)
        deltas, genre_deltas = _log_deltas(
            log.post_type, log.content_type, log.episode_number,
            log.review, log.genre_ids, sign=-1,
        )
        liker_ids = list(session.scalars(
            select(LogLike.user_id).where(LogLike.log_id == log_id)
        ).all())
        session.execute(delete(LogLike).where(LogLike.log_id == log_id))
        session.delete(log)
        _enqueue(
            session,
            [(user_id, TriggerAction.LOG_DELETED),
             *((liker, TriggerAction.LOG_UNLIKED) for liker in liker_ids)],
            now, evaluation_delay,
        )

    if deltas:
        best_effort_adjust(engine, user_id, deltas, genre_deltas, reason="log deleted")
    for liker in liker_ids:
        best_effort_adjust(engine, liker, {"likes_given": -1}, reason="liked log deleted")
    logger.info("User %s deleted entry %s", user_id, log_id)


# ---------------------------------------------------------------------------
# Follows
# ---------------------------------------------------------------------------
def follow(
    engine: Engine,
    follower_id: str,
    followee_id: str,
    *,
    evaluation_delay: float | None = None,
) -> bool:
    """Create the edge.  Returns ``False`` if it already existed.

    Raises ``LookupError`` if either user does not exist.
    """
    if follower_id == followee_id:
        raise ActivityValidationError("Users cannot follow themselves")

    now = datetime.now(UTC)
    with get_session(engine) as session:
        _require_users(session, follower_id, followee_id)
        if session.get(Follow, (follower_id, followee_id)) is not None:
            return False
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(Follow(
                    follower_id=follower_id, followee_id=followee_id, followed_at=now,
                ))
                session.flush()
        except IntegrityError:
            if session.get(Follow, (follower_id, followee_id)) is None:
                raise
            logger.info("Follow %s -> %s created concurrently", follower_id, followee_id)
            return False
        _enqueue(
            session,
            [(follower_id, TriggerAction.FOLLOWED),
             (followee_id, TriggerAction.GAINED_FOLLOWER)],
            now, evaluation_delay,
        )

    best_effort_adjust(engine, follower_id, {"following": 1}, reason="follow")
    best_effort_adjust(engine, followee_id, {"followers": 1}, reason="follow")
    return True


def unfollow(
    engine: Engine,
    follower_id: str,
    followee_id: str,
    *,
    evaluation_delay: float | None = None,
) -> bool:
    """Remove the edge.  Returns ``False`` if there was none."""
    now = datetime.now(UTC)
    with get_session(engine) as session:
        res = session.execute(
            delete(Follow).where(
                Follow.follower_id == follower_id,
                Follow.followee_id == followee_id,
            )
        )
        if res.rowcount == 0:
            return False
        _enqueue(
            session,
            [(follower_id, TriggerAction.UNFOLLOWED),
             (followee_id, TriggerAction.LOST_FOLLOWER)],
            now, evaluation_delay,
        )

    best_effort_adjust(engine, follower_id, {"following": -1}, reason="unfollow")
    best_effort_adjust(engine, followee_id, {"followers": -1}, reason="unfollow")
    return True


# ---------------------------------------------------------------------------
# Lists
# ---------------------------------------------------------------------------
def create_list(
    engine: Engine,
    user_id: str,
    name: str,
    description: str | None = None,
    *,
    evaluation_delay: float | None = None,
) -> int:
    """Create a list and return its id.

    The evaluation is tagged ``LIST_CREATED`` with the creation time, which
    is what date-bound awards match against.
    """
    clean_name = (name or "").strip()
    if not clean_name:
        raise ActivityValidationError("List name must not be empty")

    now = datetime.now(UTC)
    with get_session(engine) as session:
        user_list = UserList(
            user_id=user_id,
            name=clean_name,
            description=(description or "").strip() or None,
            created_at=now,
        )
        session.add(user_list)
        session.flush()
        list_id = user_list.id
        _enqueue(session, [(user_id, TriggerAction.LIST_CREATED)], now, evaluation_delay)

    best_effort_adjust(engine, user_id, {"lists_created": 1}, reason="list created")
    return list_id


def delete_list(
    engine: Engine,
    user_id: str,
    list_id: int,
    *,
    evaluation_delay: float | None = None,
) -> None:
    now = datetime.now(UTC)
    with get_session(engine) as session:
        user_list = session.get(UserList, list_id)
        if user_list is None:
            raise LookupError(f"List {list_id} not found")
        if user_list.user_id != user_id:
            raise PermissionError(f"List {list_id} does not belong to {user_id}")
        session.delete(user_list)
        _enqueue(session, [(user_id, TriggerAction.LIST_DELETED)], now, evaluation_delay)

    best_effort_adjust(engine, user_id, {"lists_created": -1}, reason="list deleted")


# ---------------------------------------------------------------------------
# Watchlist
# ---------------------------------------------------------------------------
def add_to_watchlist(
    engine: Engine,
    user_id: str,
    content_type: str,
    content_id: int,
    *,
    evaluation_delay: float | None = None,
) -> bool:
    """Returns ``False`` if the item was already on the watchlist."""
    try:
        ctype = ContentType(content_type)
    except ValueError:
        raise ActivityValidationError("Content type must be 'movie' or 'tv'") from None

    now = datetime.now(UTC)
    with get_session(engine) as session:
        _require_users(session, user_id)
        if session.get(WatchlistItem, (user_id, ctype.value, content_id)) is not None:
            return False
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(WatchlistItem(
                    user_id=user_id, content_type=ctype.value,
                    content_id=content_id, added_at=now,
                ))
                session.flush()
        except IntegrityError:
            if session.get(WatchlistItem, (user_id, ctype.value, content_id)) is None:
                raise
            return False
        _enqueue(session, [(user_id, TriggerAction.WATCHLIST_ADDED)], now, evaluation_delay)

    best_effort_adjust(engine, user_id, {"watchlist_size": 1}, reason="watchlist add")
    return True


def remove_from_watchlist(
    engine: Engine,
    user_id: str,
    content_type: str,
    content_id: int,
    *,
    evaluation_delay: float | None = None,
) -> bool:
    now = datetime.now(UTC)
    with get_session(engine) as session:
        res = session.execute(
            delete(WatchlistItem).where(
                WatchlistItem.user_id == user_id,
                WatchlistItem.content_type == content_type,
                WatchlistItem.content_id == content_id,
            )
        )
        if res.rowcount == 0:
            return False
        _enqueue(session, [(user_id, TriggerAction.WATCHLIST_REMOVED)], now, evaluation_delay)

    best_effort_adjust(engine, user_id, {"watchlist_size": -1}, reason="watchlist remove")
    return True


# ---------------------------------------------------------------------------
# Likes
# ---------------------------------------------------------------------------
def like_log(
    engine: Engine,
    user_id: str,
    log_id: str,
    *,
    evaluation_delay: float | None = None,
) -> bool:
    """Like an entry.  Returns ``False`` if already liked.

    Raises ``LookupError`` if the entry or the user does not exist.
    """
    now = datetime.now(UTC)
    with get_session(engine) as session:
        if session.get(LogEntry, log_id) is None:
            raise LookupError(f"Entry {log_id} not found")
        _require_users(session, user_id)
        if session.get(LogLike, (user_id, log_id)) is not None:
            return False
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(LogLike(user_id=user_id, log_id=log_id, created_at=now))
                session.flush()
        except IntegrityError:
            if session.get(LogLike, (user_id, log_id)) is None:
                raise
            return False
        session.execute(
            update(LogEntry)
            .where(LogEntry.id == log_id)
            .values(like_count=LogEntry.like_count + 1),
            execution_options={"synchronize_session": False},
        )
        _enqueue(session, [(user_id, TriggerAction.LOG_LIKED)], now, evaluation_delay)

    best_effort_adjust(engine, user_id, {"likes_given": 1}, reason="like")
    return True


def unlike_log(
    engine: Engine,
    user_id: str,
    log_id: str,
    *,
    evaluation_delay: float | None = None,
) -> bool:
    """Remove a like.  Returns ``False`` if there was none."""
    now = datetime.now(UTC)
    with get_session(engine) as session:
        res = session.execute(
            delete(LogLike).where(LogLike.user_id == user_id, LogLike.log_id == log_id)
        )
        if res.rowcount == 0:
            return False
        session.execute(
            update(LogEntry)
            .where(LogEntry.id == log_id, LogEntry.like_count > 0)
            .values(like_count=LogEntry.like_count - 1),
            execution_options={"synchronize_session": False},
        )
        _enqueue(session, [(user_id, TriggerAction.LOG_UNLIKED)], now, evaluation_delay)

    best_effort_adjust(engine, user_id, {"likes_given": -1}, reason="unlike")
    return True
