"""
cinelog.api.routes.feed — Social feed & public activity
========================================================
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import Engine

from cinelog.api.deps import get_current_user_id, get_engine, get_feed_aggregator
from cinelog.constants import DEFAULT_ACTIVITY_PAGE, MAX_ACTIVITY_PAGE
from cinelog.database.engine import run_db
from cinelog.database.models import ContentType
from cinelog.engine.feed import FeedItem
from cinelog.services.feed_service import (
    FeedAggregator,
    get_content_activity,
    get_user_activity,
)

router = APIRouter(tags=["feed"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ActorOut(BaseModel):
    handle: str
    avatar_url: str | None = None
    verified: bool = False


class FeedItemOut(BaseModel):
    entry_id: str
    owner_id: str
    created_at: datetime
    payload: dict[str, Any]
    actor: ActorOut


class FeedOut(BaseModel):
    feed: list[FeedItemOut]


def _to_out(items: list[FeedItem]) -> FeedOut:
    return FeedOut(feed=[FeedItemOut(**item.to_dict()) for item in items])


# ---------------------------------------------------------------------------
# GET /feed
# ---------------------------------------------------------------------------
@router.get("/feed", response_model=FeedOut)
async def get_feed(
    viewer_id: str = Depends(get_current_user_id),
    aggregator: FeedAggregator = Depends(get_feed_aggregator),
):
    """The viewer's feed: recent rated/reviewed entries by people they follow."""
    return _to_out(await aggregator.build_feed(viewer_id))


# ---------------------------------------------------------------------------
# GET /users/{user_id}/activity
# ---------------------------------------------------------------------------
@router.get("/users/{user_id}/activity", response_model=FeedOut)
async def user_activity(
    user_id: str,
    limit: int = Query(DEFAULT_ACTIVITY_PAGE, ge=1, le=MAX_ACTIVITY_PAGE),
    engine: Engine = Depends(get_engine),
):
    """A user's public activity, newest first."""
    return _to_out(await run_db(get_user_activity, engine, user_id, limit))


# ---------------------------------------------------------------------------
# GET /content/{content_type}/{content_id}/activity
# ---------------------------------------------------------------------------
@router.get("/content/{content_type}/{content_id}/activity", response_model=FeedOut)
async def content_activity(
    content_type: str,
    content_id: int,
    limit: int = Query(DEFAULT_ACTIVITY_PAGE, ge=1, le=MAX_ACTIVITY_PAGE),
    engine: Engine = Depends(get_engine),
):
    """Recent public activity about one movie or show."""
    if content_type not in (ContentType.MOVIE, ContentType.TV):
        raise HTTPException(400, "content_type must be 'movie' or 'tv'")
    return _to_out(
        await run_db(get_content_activity, engine, content_type, content_id, limit)
    )
