"""
cinelog.engine.feed — Feed Merge, Ranking & Enrichment
========================================================

Pure functions behind the fan-out-on-read feed.  The service layer fetches
per-followee batches concurrently; this module merges them, ranks them
newest-first, truncates, and pairs each entry with its actor.

This module is pure calculation — no database I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from cinelog.constants import UNKNOWN_USER_HANDLE
from cinelog.database.models import PostType


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ActivityEntry:
    """A feed-eligible entry as read from the activity store.

    ``payload`` is opaque here: title, rating, text, media ref…
    """

    entry_id: str
    owner_id: str
    created_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ActorSummary:
    """Minimal public identity shown next to a feed entry."""

    handle: str
    avatar_url: str | None = None
    verified: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "handle": self.handle,
            "avatar_url": self.avatar_url,
            "verified": self.verified,
        }


UNKNOWN_ACTOR = ActorSummary(handle=UNKNOWN_USER_HANDLE)


@dataclass(frozen=True, slots=True)
class FeedItem:
    """An :class:`ActivityEntry` joined with its resolved actor."""

    entry: ActivityEntry
    actor: ActorSummary

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry.entry_id,
            "owner_id": self.entry.owner_id,
            "created_at": self.entry.created_at.isoformat(),
            "payload": dict(self.entry.payload),
            "actor": self.actor.to_dict(),
        }


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------
def is_activity_eligible(
    post_type: str,
    rating: float | None = None,
    review: str | None = None,
) -> bool:
    """Whether an entry belongs in feeds.

    Standalone posts (text / quote) always do.  A log only does when it
    carries a rating or non-blank review text; "watched, no opinion" logs
    never surface.
    """
    if post_type in (PostType.TEXT, PostType.QUOTE):
        return True
    if post_type != PostType.LOG:
        return False
    has_review = review is not None and review.strip() != ""
    return rating is not None or has_review


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------
def _rank_key(entry: ActivityEntry) -> tuple[datetime, str]:
    return entry.created_at, entry.entry_id


def rank_entries(
    batches: Iterable[Iterable[ActivityEntry]],
    max_items: int,
) -> list[ActivityEntry]:
    """Merge per-followee batches, newest first, truncated to *max_items*.

    Ties on ``created_at`` fall back to ``entry_id`` (descending) so the
    order is deterministic across requests.  An entry id that shows up in
    more than one batch is kept once.
    """
    if max_items <= 0:
        return []

    seen: set[str] = set()
    merged: list[ActivityEntry] = []
    for batch in batches:
        for entry in batch:
            if entry.entry_id in seen:
                continue
            seen.add(entry.entry_id)
            merged.append(entry)

    merged.sort(key=_rank_key, reverse=True)
    return merged[:max_items]


def distinct_actor_ids(entries: Iterable[ActivityEntry]) -> list[str]:
    """Owner ids in first-seen order, without duplicates or blanks."""
    ids: dict[str, None] = {}
    for entry in entries:
        if entry.owner_id:
            ids.setdefault(entry.owner_id, None)
    return list(ids)


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------
def enrich(
    entries: Iterable[ActivityEntry],
    identities: Mapping[str, ActorSummary],
) -> list[FeedItem]:
    """Pair each entry with its actor; unresolved actors get a placeholder."""
    return [
        FeedItem(entry=entry, actor=identities.get(entry.owner_id, UNKNOWN_ACTOR))
        for entry in entries
    ]
