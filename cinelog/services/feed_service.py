"""
cinelog.services.feed_service — Fan-out-on-Read Feed Aggregator
================================================================

Builds a viewer's feed at request time:

    1. Resolve the followee set (failure here is fatal → FeedUnavailableError).
    2. Fetch the K most recent eligible entries per followee, concurrently,
       each query under its own timeout and a shared concurrency cap.
       A failing or slow followee contributes nothing.
    3. Merge, rank newest-first, truncate.
    4. Resolve the surviving actors in one batch (failure → placeholders).

A degraded feed looks exactly like a complete one to the viewer; the
degradation only shows up in the logs.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy import Engine

from cinelog.config import FeedConfig
from cinelog.database.engine import run_db
from cinelog.engine.feed import (
    ActivityEntry,
    ActorSummary,
    FeedItem,
    distinct_actor_ids,
    enrich,
    rank_entries,
)
from cinelog.services.social_service import (
    get_content_activity_entries,
    get_followee_ids,
    get_recent_activity,
    resolve_identities,
)

logger = logging.getLogger(__name__)


class FeedUnavailableError(RuntimeError):
    """The relation store could not be read, so no feed can be built."""


class FeedAggregator:
    """Assemble feeds from the relation, activity and identity stores.

    Parameters
    ----------
    engine:
        SQLAlchemy engine; every query runs on a worker thread.
    cfg:
        Fan-out bounds (``per_followee_limit``, ``max_items``,
        ``query_timeout_seconds``, ``max_concurrency``).
    """

    def __init__(self, engine: Engine, cfg: FeedConfig | None = None) -> None:
        self._engine = engine
        self._cfg = cfg or FeedConfig()

    @property
    def config(self) -> FeedConfig:
        return self._cfg

    async def build_feed(self, viewer_id: str) -> list[FeedItem]:
        """Return the viewer's feed, most recent first, at most ``max_items``.

        Raises
        ------
        FeedUnavailableError
            If the followee set cannot be read.
        """
        try:
            followee_ids = await run_db(get_followee_ids, self._engine, viewer_id)
        except Exception as exc:
            logger.exception("Followee lookup failed for viewer %s", viewer_id)
            raise FeedUnavailableError("Relation store unavailable") from exc

        if not followee_ids:
            return []

        semaphore = asyncio.Semaphore(self._cfg.max_concurrency)
        results = await asyncio.gather(
            *(self._fetch_followee(semaphore, fid) for fid in followee_ids),
            return_exceptions=True,
        )

        batches: list[list[ActivityEntry]] = []
        failed = 0
        for followee_id, result in zip(followee_ids, results):
            if isinstance(result, BaseException):
                failed += 1
                logger.warning(
                    "Dropping followee %s from feed of %s: %r",
                    followee_id, viewer_id, result,
                )
                continue
            batches.append(result)

        if failed:
            logger.warning(
                "Feed for %s degraded: %d/%d followee queries failed",
                viewer_id, failed, len(followee_ids),
            )

        ranked = rank_entries(batches, self._cfg.max_items)
        identities = await self._resolve_actors(ranked)
        return enrich(ranked, identities)

    async def _fetch_followee(
        self,
        semaphore: asyncio.Semaphore,
        followee_id: str,
    ) -> list[ActivityEntry]:
        # The slot is held until the worker thread returns, not until the
        # timeout fires: a timed-out query still holds its connection.
        await semaphore.acquire()
        query = asyncio.ensure_future(run_db(
            get_recent_activity,
            self._engine,
            followee_id,
            self._cfg.per_followee_limit,
        ))

        def _release(done: asyncio.Future) -> None:
            semaphore.release()
            if not done.cancelled():
                done.exception()  # mark retrieved after a timeout

        query.add_done_callback(_release)
        return await asyncio.wait_for(
            asyncio.shield(query),
            timeout=self._cfg.query_timeout_seconds,
        )

    async def _resolve_actors(self, entries: list[ActivityEntry]) -> dict[str, ActorSummary]:
        actor_ids = distinct_actor_ids(entries)
        if not actor_ids:
            return {}
        try:
            return await run_db(resolve_identities, self._engine, actor_ids)
        except Exception:
            logger.warning(
                "Identity lookup failed for %d actors, using placeholders",
                len(actor_ids), exc_info=True,
            )
            return {}


# ---------------------------------------------------------------------------
# Profile / content activity (same enrichment rules as the feed)
# ---------------------------------------------------------------------------
def _enrich_sync(engine: Engine, entries: list[ActivityEntry]) -> list[FeedItem]:
    try:
        identities = resolve_identities(engine, distinct_actor_ids(entries))
    except Exception:
        logger.warning("Identity lookup failed, using placeholders", exc_info=True)
        identities = {}
    return enrich(entries, identities)


def get_user_activity(engine: Engine, owner_id: str, limit: int) -> list[FeedItem]:
    """A user's public activity, newest first."""
    return _enrich_sync(engine, get_recent_activity(engine, owner_id, limit))


def get_content_activity(
    engine: Engine,
    content_type: str,
    content_id: int,
    limit: int,
) -> list[FeedItem]:
    """Recent public activity about one catalog item, newest first."""
    entries = get_content_activity_entries(engine, content_type, content_id, limit)
    return _enrich_sync(engine, entries)
