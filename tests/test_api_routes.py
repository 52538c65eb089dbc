"""
tests/test_api_routes.py — HTTP Surface Tests
==============================================

Auth guards, response shapes and error mapping for every router, using
the ``client`` fixture from conftest (in-memory SQLite behind the app).
"""

from __future__ import annotations

from datetime import date

import pytest

from cinelog.api.deps import get_feed_aggregator
from cinelog.api.main import app
from cinelog.services.achievement_service import try_grant
from cinelog.services.activity_service import create_log, follow
from cinelog.services.counter_service import increment
from cinelog.services.feed_service import FeedUnavailableError
from conftest import make_token


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _review(engine, user_id: str, content_id: int, text: str) -> str:
    return create_log(
        engine, user_id, content_type="movie", content_id=content_id,
        watched_date=date(2026, 6, 1), review=text,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------
class TestHealth:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------
class TestFeed:
    def test_rejects_no_auth(self, client):
        resp = client.get("/api/feed")
        assert resp.status_code == 401

    def test_rejects_invalid_token(self, client):
        resp = client.get("/api/feed", headers={"Authorization": "Bearer invalid"})
        assert resp.status_code == 401

    def test_empty_for_new_viewer(self, client, make_users):
        make_users("viewer")
        resp = client.get("/api/feed", headers=_auth(make_token("viewer")))
        assert resp.status_code == 200
        assert resp.json() == {"feed": []}

    def test_followed_activity(self, client, db_engine, make_users):
        make_users("viewer", "ana", "ben")
        follow(db_engine, "viewer", "ana")
        _review(db_engine, "ana", 1, "first")
        _review(db_engine, "ben", 2, "not followed")
        newest = _review(db_engine, "ana", 3, "second")

        resp = client.get("/api/feed", headers=_auth(make_token("viewer")))
        assert resp.status_code == 200
        feed = resp.json()["feed"]
        assert [item["payload"]["review"] for item in feed] == ["second", "first"]
        assert feed[0]["entry_id"] == newest
        assert feed[0]["actor"] == {
            "handle": "@ana",
            "avatar_url": "https://img.example/ana.png",
            "verified": False,
        }

    def test_relation_store_failure_maps_to_500(self, client):
        class _Broken:
            async def build_feed(self, viewer_id):
                raise FeedUnavailableError("relation store down")

        app.dependency_overrides[get_feed_aggregator] = lambda: _Broken()
        resp = client.get("/api/feed", headers=_auth(make_token("viewer")))
        assert resp.status_code == 500
        assert resp.json() == {"detail": "Feed is temporarily unavailable"}


# ---------------------------------------------------------------------------
# Profile / content activity
# ---------------------------------------------------------------------------
class TestPublicActivity:
    def test_user_activity(self, client, db_engine, make_users):
        make_users("ana")
        for i in range(3):
            _review(db_engine, "ana", i, f"review {i}")

        resp = client.get("/api/users/ana/activity", params={"limit": 2})
        assert resp.status_code == 200
        assert [i["payload"]["review"] for i in resp.json()["feed"]] == ["review 2", "review 1"]

    def test_limit_bounds(self, client):
        assert client.get("/api/users/ana/activity", params={"limit": 0}).status_code == 422
        assert client.get("/api/users/ana/activity", params={"limit": 51}).status_code == 422

    def test_content_activity(self, client, db_engine, make_users):
        make_users("ana", "ben")
        _review(db_engine, "ana", 550, "rules")
        _review(db_engine, "ben", 550, "first rule")
        _review(db_engine, "ben", 551, "elsewhere")

        resp = client.get("/api/content/movie/550/activity")
        assert resp.status_code == 200
        assert len(resp.json()["feed"]) == 2

    def test_invalid_content_type(self, client):
        resp = client.get("/api/content/book/1/activity")
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------
class TestAchievements:
    def test_definitions(self, client):
        resp = client.get("/api/achievements/definitions")
        assert resp.status_code == 200
        data = resp.json()
        assert data["version"]
        log_10 = next(d for d in data["definitions"] if d["id"] == "LOG_10")
        assert log_10["predicate_type"] == "counter_threshold"
        assert log_10["threshold"] == 10

    def test_user_grants(self, client, db_engine, make_users):
        make_users("ana")
        try_grant(db_engine, "ana", "FIRST_LOG")
        resp = client.get("/api/achievements/user/ana")
        assert resp.status_code == 200
        grants = resp.json()["achievements"]
        assert [g["achievement_id"] for g in grants] == ["FIRST_LOG"]
        assert grants[0]["display_name"]

    def test_user_without_grants(self, client):
        resp = client.get("/api/achievements/user/nobody")
        assert resp.json() == {"achievements": []}


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------
class TestAdmin:
    @pytest.mark.parametrize("method,endpoint", [
        ("post", "/api/admin/reconcile"),
        ("get", "/api/admin/queue"),
    ])
    def test_rejects_no_auth(self, client, method, endpoint):
        assert getattr(client, method)(endpoint).status_code == 401

    @pytest.mark.parametrize("method,endpoint", [
        ("post", "/api/admin/reconcile"),
        ("get", "/api/admin/queue"),
    ])
    def test_rejects_non_admin(self, client, method, endpoint):
        resp = getattr(client, method)(endpoint, headers=_auth(make_token("viewer")))
        assert resp.status_code == 403

    def test_reconcile(self, client, db_engine, make_users, admin_token):
        make_users("ana")
        increment(db_engine, "ana", "followers", by=2)
        resp = client.post("/api/admin/reconcile", headers=_auth(admin_token))
        assert resp.status_code == 200
        body = resp.json()
        assert body["checked"] == 1
        assert body["corrected"] == 1

    def test_queue_stats(self, client, db_engine, make_users, admin_token):
        make_users("ana")
        _review(db_engine, "ana", 1, "queued")
        resp = client.get("/api/admin/queue", headers=_auth(admin_token))
        assert resp.status_code == 200
        assert resp.json()["PENDING"] == 1
