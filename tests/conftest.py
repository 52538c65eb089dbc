"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of cinelog.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine, event  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite renders JSONB as TEXT; SQLAlchemy's JSON processing still applies.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.ext.compiler import compiles  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import NullPool, StaticPool  # noqa: E402

from cinelog.database.engine import get_session  # noqa: E402
from cinelog.database.models import Base  # noqa: E402
from cinelog.services.social_service import get_or_create_user  # noqa: E402


@compiles(PG_JSONB, "sqlite")
def _compile_jsonb_as_text(type_, compiler, **kw):
    return "TEXT"


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Cinelog tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``run_db`` / ``asyncio.to_thread``).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def fk_engine() -> Engine:
    """In-memory SQLite with foreign keys enforced, as PostgreSQL does."""
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enforce_foreign_keys(dbapi_conn, _record):
        dbapi_conn.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite with a real connection per checkout.

    Needed where several threads must hold independent transactions,
    e.g. concurrent grant races.  Transactions start with BEGIN IMMEDIATE
    so concurrent writers wait on the busy timeout instead of failing a
    lock upgrade.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'cinelog.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=NullPool,
    )

    @event.listens_for(engine, "connect")
    def _no_implicit_begin(dbapi_conn, _record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


def add_users(engine: Engine, *user_ids: str, verified: bool = False) -> None:
    """Insert users whose handle is ``@<id>``."""
    with get_session(engine) as session:
        for uid in user_ids:
            get_or_create_user(
                session, uid, f"@{uid}",
                avatar_url=f"https://img.example/{uid}.png",
                is_verified=verified,
            )


@pytest.fixture
def make_users(db_engine):
    def _make(*user_ids: str, verified: bool = False) -> None:
        add_users(db_engine, *user_ids, verified=verified)
    return _make


def make_token(sub: str = "viewer", *, is_admin: bool = False, username: str = "Fixture") -> str:
    """Create a JWT.  Usable as both a fixture helper and a factory function."""
    import jwt

    from cinelog.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


@pytest.fixture
def admin_token():
    return make_token("admin-1", is_admin=True, username="FixtureAdmin")


@pytest.fixture
def client(db_engine):
    """TestClient bound to the in-memory engine.

    Feed fan-out is serialised (``max_concurrency=1``) because every
    thread shares the single StaticPool connection.
    """
    from fastapi.testclient import TestClient

    from cinelog.api.deps import get_config, get_engine
    from cinelog.api.main import app
    from cinelog.config import CinelogConfig, FeedConfig

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: CinelogConfig(
        feed=FeedConfig(max_concurrency=1)
    )
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
