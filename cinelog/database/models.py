"""
cinelog.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- users                — Public identity (handle, avatar, verified flag)
- user_counters        — Per-user aggregate counters (read as snapshots)
- user_genre_counters  — Per-user, per-genre log counters
- follows              — Directed follow edges with reverse index
- log_entries          — Diary entries and standalone posts (activity store)
- log_likes            — Likes given on entries
- user_lists           — User-curated lists
- watchlist_items      — Items a user plans to watch
- user_achievements    — Grant ledger, unique per (user, achievement)
- evaluation_tasks     — At-least-once achievement evaluation queue
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Cinelog ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PostType(enum.StrEnum):
    """Kinds of entries a user can author."""
    LOG = "log"
    TEXT = "text"
    QUOTE = "quote"


class ContentType(enum.StrEnum):
    """Catalog item kinds."""
    MOVIE = "movie"
    TV = "tv"


class TriggerAction(enum.StrEnum):
    """State-changing actions that schedule an achievement evaluation."""
    LOG_CREATED = "LOG_CREATED"
    LOG_UPDATED = "LOG_UPDATED"
    LOG_DELETED = "LOG_DELETED"
    LOG_LIKED = "LOG_LIKED"
    LOG_UNLIKED = "LOG_UNLIKED"
    FOLLOWED = "FOLLOWED"
    UNFOLLOWED = "UNFOLLOWED"
    GAINED_FOLLOWER = "GAINED_FOLLOWER"
    LOST_FOLLOWER = "LOST_FOLLOWER"
    LIST_CREATED = "LIST_CREATED"
    LIST_DELETED = "LIST_DELETED"
    WATCHLIST_ADDED = "WATCHLIST_ADDED"
    WATCHLIST_REMOVED = "WATCHLIST_REMOVED"
    RECONCILED = "RECONCILED"


class TaskStatus(enum.StrEnum):
    """Lifecycle of a queued evaluation task."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    DEAD = "DEAD"


# Every integer column on UserCounters.  The evaluator reads these by name.
COUNTER_FIELDS: tuple[str, ...] = (
    "items_logged",
    "reviews_written",
    "lists_created",
    "followers",
    "following",
    "watchlist_size",
    "movies_logged",
    "episodes_logged",
    "likes_given",
)


# ---------------------------------------------------------------------------
# Users — public identity
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    avatar_url: Mapped[str | None] = mapped_column(String(500), default=None)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    counters: Mapped[UserCounters | None] = relationship(
        back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r}>"


# ---------------------------------------------------------------------------
# UserCounters — aggregate counters, mutated only via counter_service
# ---------------------------------------------------------------------------
class UserCounters(Base):
    __tablename__ = "user_counters"

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    items_logged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reviews_written: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lists_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    followers: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    following: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    watchlist_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    movies_logged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    episodes_logged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    likes_given: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    user: Mapped[User] = relationship(back_populates="counters")

    __table_args__ = tuple(
        CheckConstraint(f"{name} >= 0", name=f"ck_user_counters_{name}_nonneg")
        for name in COUNTER_FIELDS
    )

    def as_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) or 0 for name in COUNTER_FIELDS}

    def __repr__(self) -> str:
        return f"<UserCounters user={self.user_id}>"


# ---------------------------------------------------------------------------
# UserGenreCounter — per-genre log counts
# ---------------------------------------------------------------------------
class UserGenreCounter(Base):
    __tablename__ = "user_genre_counters"

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    genre_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("count >= 0", name="ck_user_genre_counters_nonneg"),
    )

    def __repr__(self) -> str:
        return f"<UserGenreCounter user={self.user_id} genre={self.genre_id} count={self.count}>"


# ---------------------------------------------------------------------------
# Follow — directed edge (follower → followee)
# ---------------------------------------------------------------------------
class Follow(Base):
    __tablename__ = "follows"

    follower_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    followee_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    followed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("follower_id <> followee_id", name="ck_follows_no_self"),
        # Reverse lookup: who follows this user?
        Index("ix_follows_followee", "followee_id", "follower_id"),
    )

    def __repr__(self) -> str:
        return f"<Follow {self.follower_id} -> {self.followee_id}>"


# ---------------------------------------------------------------------------
# LogEntry — the activity store
# ---------------------------------------------------------------------------
class LogEntry(Base):
    """A diary log of a movie/episode, or a standalone text/quote post.

    ``is_activity`` is derived on every write: standalone posts are always
    feed-eligible, logs only when they carry a rating or review text.
    """
    __tablename__ = "log_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    post_type: Mapped[str] = mapped_column(
        String(10), nullable=False, default=PostType.LOG.value
    )

    # Catalog subject (logs) — nullable for standalone posts
    content_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    content_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    season_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    episode_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    watched_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_rewatch: Mapped[bool] = mapped_column(Boolean, default=False)
    genre_ids: Mapped[list | None] = mapped_column(JSONB, nullable=True)

    # Opinion / post body
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    review: Mapped[str | None] = mapped_column(Text, nullable=True)
    post_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    linked_content: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    is_activity: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    like_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_log_entries_user_time", "user_id", "created_at"),
        # Feed query: newest eligible entries per owner
        Index(
            "ix_log_entries_user_activity",
            "user_id",
            "created_at",
            postgresql_where=is_activity.is_(True),
        ),
        Index("ix_log_entries_content", "content_type", "content_id", "created_at"),
        CheckConstraint(
            "rating IS NULL OR (rating >= 0.5 AND rating <= 10)",
            name="ck_log_entries_rating_range",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<LogEntry id={self.id} user={self.user_id} "
            f"type={self.post_type} activity={self.is_activity}>"
        )


# ---------------------------------------------------------------------------
# LogLike — one like per (user, entry)
# ---------------------------------------------------------------------------
class LogLike(Base):
    __tablename__ = "log_likes"

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    log_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("log_entries.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<LogLike user={self.user_id} log={self.log_id}>"


# ---------------------------------------------------------------------------
# UserList — user-curated lists
# ---------------------------------------------------------------------------
class UserList(Base):
    __tablename__ = "user_lists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_user_lists_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<UserList id={self.id} name={self.name!r}>"


# ---------------------------------------------------------------------------
# WatchlistItem — planned viewing
# ---------------------------------------------------------------------------
class WatchlistItem(Base):
    __tablename__ = "watchlist_items"

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    content_type: Mapped[str] = mapped_column(String(10), primary_key=True)
    content_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<WatchlistItem user={self.user_id} {self.content_type}/{self.content_id}>"


# ---------------------------------------------------------------------------
# UserAchievement — the grant ledger
# ---------------------------------------------------------------------------
class UserAchievement(Base):
    """One row per earned achievement.

    The composite primary key is the conditional-insert target: a second
    insert for the same pair fails with ``IntegrityError``.
    """
    __tablename__ = "user_achievements"

    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    achievement_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("ix_user_achievements_user_earned", "user_id", "earned_at"),
    )

    def __repr__(self) -> str:
        return f"<UserAchievement user={self.user_id} achievement={self.achievement_id}>"


# ---------------------------------------------------------------------------
# EvaluationTask — at-least-once evaluation queue (outbox)
# ---------------------------------------------------------------------------
class EvaluationTask(Base):
    __tablename__ = "evaluation_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str | None] = mapped_column(String(30), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TaskStatus.PENDING.value
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    lease_owner: Mapped[str | None] = mapped_column(String(100), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        Index("ix_evaluation_tasks_status_available", "status", "available_at"),
        Index("ix_evaluation_tasks_user", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<EvaluationTask id={self.id} user={self.user_id} "
            f"status={self.status} attempts={self.attempts}>"
        )
