"""
cinelog.api.routes.achievements — Achievement catalog & user grants
====================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import Engine

from cinelog.api.deps import get_engine
from cinelog.database.engine import run_db
from cinelog.services import achievement_service

router = APIRouter(prefix="/achievements", tags=["achievements"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class DefinitionOut(BaseModel):
    id: str
    display_name: str
    description: str
    icon: str
    predicate_type: str
    threshold: int | None = None


class CatalogOut(BaseModel):
    version: str
    definitions: list[DefinitionOut]


class GrantOut(BaseModel):
    achievement_id: str
    earned_at: str | None = None
    display_name: str
    description: str | None = None
    icon: str | None = None


class GrantsOut(BaseModel):
    achievements: list[GrantOut]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@router.get("/definitions", response_model=CatalogOut)
def get_definitions():
    """The full static catalog with its version tag."""
    return achievement_service.catalog_projection()


@router.get("/user/{user_id}", response_model=GrantsOut)
async def get_user_achievements(user_id: str, engine: Engine = Depends(get_engine)):
    """Achievements a user has earned, most recent first."""
    grants = await run_db(achievement_service.list_grants, engine, user_id)
    return {"achievements": grants}
