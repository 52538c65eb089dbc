"""
tests/test_counter_service.py — Counter Store Tests
====================================================
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from cinelog.database.engine import get_session
from cinelog.services.counter_service import (
    adjust_counters,
    best_effort_adjust,
    decrement,
    get_snapshot,
    increment,
)


class TestAdjust:
    def test_increment_creates_row(self, db_engine, make_users):
        make_users("u1")
        increment(db_engine, "u1", "items_logged")
        increment(db_engine, "u1", "items_logged", by=2)
        assert get_snapshot(db_engine, "u1").get("items_logged") == 3

    def test_decrement_floors_at_zero(self, db_engine, make_users):
        make_users("u1")
        increment(db_engine, "u1", "followers")
        decrement(db_engine, "u1", "followers", by=5)
        assert get_snapshot(db_engine, "u1").get("followers") == 0

    def test_decrement_without_row(self, db_engine, make_users):
        make_users("u1")
        decrement(db_engine, "u1", "following")
        assert get_snapshot(db_engine, "u1").get("following") == 0

    def test_unknown_counter_rejected(self, db_engine, make_users):
        make_users("u1")
        with pytest.raises(ValueError):
            increment(db_engine, "u1", "xp")

    def test_several_counters_and_genres(self, db_engine, make_users):
        make_users("u1")
        with get_session(db_engine) as session:
            adjust_counters(
                session, "u1",
                {"items_logged": 2, "movies_logged": 1, "reviews_written": 0},
                {27: 2, 99: 1},
            )
        snap = get_snapshot(db_engine, "u1")
        assert snap.get("items_logged") == 2
        assert snap.get("movies_logged") == 1
        assert snap.get("reviews_written") == 0
        assert snap.genre(27) == 2
        assert snap.genre(99) == 1

    def test_genre_floor(self, db_engine, make_users):
        make_users("u1")
        with get_session(db_engine) as session:
            adjust_counters(session, "u1", {}, {27: -3})
        assert get_snapshot(db_engine, "u1").genre(27) == 0

    def test_concurrent_increments_not_lost(self, file_engine):
        from conftest import add_users

        add_users(file_engine, "u1")
        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(lambda _: increment(file_engine, "u1", "likes_given"), range(20)))
        assert get_snapshot(file_engine, "u1").get("likes_given") == 20


class TestSnapshot:
    def test_missing_user_is_all_zero(self, db_engine):
        snap = get_snapshot(db_engine, "nobody")
        assert snap.user_id == "nobody"
        assert dict(snap.counters) == {}
        assert snap.get("items_logged") == 0


class TestBestEffort:
    def test_success(self, db_engine, make_users):
        make_users("u1")
        assert best_effort_adjust(db_engine, "u1", {"lists_created": 1}, reason="test") is True
        assert get_snapshot(db_engine, "u1").get("lists_created") == 1

    def test_failure_is_logged_not_raised(self, db_engine, caplog):
        err = OperationalError("UPDATE", {}, Exception("disk full"))
        with patch("cinelog.services.counter_service.adjust_counters", side_effect=err):
            with caplog.at_level("ERROR", logger="cinelog.services.counter_service"):
                ok = best_effort_adjust(db_engine, "u1", {"lists_created": 1}, reason="test")
        assert ok is False
        assert "Counter adjustment failed" in caplog.text
