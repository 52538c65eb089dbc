"""Initial Cinelog schema: identity, counters, activity, grants, evaluation queue

Revision ID: 5c2e8d41a7f3
Revises:
Create Date: 2026-10-19 09:12:31.418207

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c2e8d41a7f3'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_COUNTERS = (
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


def _user_fk(**kw) -> sa.Column:
    return sa.Column(
        "user_id", sa.String(64),
        sa.ForeignKey("users.id", ondelete="CASCADE"), **kw,
    )


def upgrade() -> None:
    """Create all tables."""

    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("username", sa.String(50), nullable=False, unique=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("is_verified", sa.Boolean, nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            nullable=True, server_default=sa.func.now(),
        ),
    )

    # --- user_counters ---
    op.create_table(
        "user_counters",
        _user_fk(primary_key=True),
        *(sa.Column(name, sa.Integer, nullable=False) for name in _COUNTERS),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        *(
            sa.CheckConstraint(f"{name} >= 0", name=f"ck_user_counters_{name}_nonneg")
            for name in _COUNTERS
        ),
    )

    # --- user_genre_counters ---
    op.create_table(
        "user_genre_counters",
        _user_fk(primary_key=True),
        sa.Column("genre_id", sa.Integer, primary_key=True),
        sa.Column("count", sa.Integer, nullable=False),
        sa.CheckConstraint("count >= 0", name="ck_user_genre_counters_nonneg"),
    )

    # --- follows ---
    op.create_table(
        "follows",
        sa.Column(
            "follower_id", sa.String(64),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "followee_id", sa.String(64),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "followed_at", sa.DateTime(timezone=True),
            nullable=True, server_default=sa.func.now(),
        ),
        sa.CheckConstraint("follower_id <> followee_id", name="ck_follows_no_self"),
    )
    op.create_index("ix_follows_followee", "follows", ["followee_id", "follower_id"])

    # --- log_entries ---
    op.create_table(
        "log_entries",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(nullable=False),
        sa.Column("post_type", sa.String(10), nullable=False),
        sa.Column("content_type", sa.String(10), nullable=True),
        sa.Column("content_id", sa.Integer, nullable=True),
        sa.Column("season_number", sa.Integer, nullable=True),
        sa.Column("episode_number", sa.Integer, nullable=True),
        sa.Column("watched_date", sa.Date, nullable=True),
        sa.Column("is_rewatch", sa.Boolean, nullable=True),
        sa.Column("genre_ids", postgresql.JSONB, nullable=True),
        sa.Column("rating", sa.Float, nullable=True),
        sa.Column("review", sa.Text, nullable=True),
        sa.Column("post_text", sa.Text, nullable=True),
        sa.Column("image_url", sa.String(500), nullable=True),
        sa.Column("linked_content", postgresql.JSONB, nullable=True),
        sa.Column("is_activity", sa.Boolean, nullable=False),
        sa.Column("like_count", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "rating IS NULL OR (rating >= 0.5 AND rating <= 10)",
            name="ck_log_entries_rating_range",
        ),
    )
    op.create_index("ix_log_entries_user_time", "log_entries", ["user_id", "created_at"])
    op.create_index(
        "ix_log_entries_user_activity",
        "log_entries",
        ["user_id", "created_at"],
        postgresql_where=sa.text("is_activity IS true"),
    )
    op.create_index(
        "ix_log_entries_content",
        "log_entries",
        ["content_type", "content_id", "created_at"],
    )

    # --- log_likes ---
    op.create_table(
        "log_likes",
        _user_fk(primary_key=True),
        sa.Column(
            "log_id", sa.String(36),
            sa.ForeignKey("log_entries.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            nullable=True, server_default=sa.func.now(),
        ),
    )

    # --- user_lists ---
    op.create_table(
        "user_lists",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        _user_fk(nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            nullable=True, server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_user_lists_user", "user_lists", ["user_id"])

    # --- watchlist_items ---
    op.create_table(
        "watchlist_items",
        _user_fk(primary_key=True),
        sa.Column("content_type", sa.String(10), primary_key=True),
        sa.Column("content_id", sa.Integer, primary_key=True),
        sa.Column(
            "added_at", sa.DateTime(timezone=True),
            nullable=True, server_default=sa.func.now(),
        ),
    )

    # --- user_achievements (grant ledger) ---
    op.create_table(
        "user_achievements",
        _user_fk(primary_key=True),
        sa.Column("achievement_id", sa.String(64), primary_key=True),
        sa.Column("earned_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_user_achievements_user_earned",
        "user_achievements",
        ["user_id", "earned_at"],
    )

    # --- evaluation_tasks (outbox) ---
    op.create_table(
        "evaluation_tasks",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(30), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("attempts", sa.Integer, nullable=False),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("lease_owner", sa.String(100), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_evaluation_tasks_status_available",
        "evaluation_tasks",
        ["status", "available_at"],
    )
    op.create_index("ix_evaluation_tasks_user", "evaluation_tasks", ["user_id"])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table("evaluation_tasks")
    op.drop_table("user_achievements")
    op.drop_table("watchlist_items")
    op.drop_table("user_lists")
    op.drop_table("log_likes")
    op.drop_table("log_entries")
    op.drop_table("follows")
    op.drop_table("user_genre_counters")
    op.drop_table("user_counters")
    op.drop_table("users")
