"""
cinelog.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn cinelog.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from cinelog.api.deps import get_config, get_engine  # noqa: E402
from cinelog.api.routes.achievements import router as achievements_router  # noqa: E402
from cinelog.api.routes.admin import router as admin_router  # noqa: E402
from cinelog.api.routes.feed import router as feed_router  # noqa: E402
from cinelog.services.feed_service import FeedUnavailableError  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """``CORS_ALLOW_ORIGINS`` (comma-separated) wins over ``FRONTEND_URL``;
    neither set means no cross-origin access.
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine and load config before the first request."""
    engine = get_engine()
    cfg = get_config()
    logger.info(
        "Cinelog API started — engine ready (%s), feed max_items=%d",
        engine.url.database, cfg.feed.max_items,
    )
    yield
    logger.info("Cinelog API shutting down")


app = FastAPI(
    title="Cinelog API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(FeedUnavailableError)
async def feed_unavailable_handler(request: Request, exc: FeedUnavailableError):
    return JSONResponse(status_code=500, content={"detail": "Feed is temporarily unavailable"})


# Mount routers
app.include_router(feed_router, prefix="/api")
app.include_router(achievements_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
