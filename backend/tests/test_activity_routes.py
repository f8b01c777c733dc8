"""
Activity log endpoints: public append, admin listing with a bounded limit.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest


@pytest.fixture
def db():
    db = MagicMock()
    db.user_activities.insert_one = AsyncMock()
    cursor = MagicMock()
    cursor.sort = MagicMock(return_value=cursor)
    cursor.limit = MagicMock(return_value=cursor)
    cursor.to_list = AsyncMock(return_value=[
        {"activity_id": "a2", "action": "logout", "username": "ada"},
        {"activity_id": "a1", "action": "login", "username": "ada"},
    ])
    db.user_activities.find = MagicMock(return_value=cursor)
    with patch("services.activity_service.database.get_db", return_value=db):
        yield db


def test_log_activity_is_public(client, db):
    response = client.post(
        "/api/activity/log",
        json={"action": "login", "username": "ada", "userId": "user-1", "details": "web"},
        headers={"User-Agent": "pytest-agent"},
    )

    assert response.status_code == 201
    stored = db.user_activities.insert_one.await_args.args[0]
    assert response.json()["activity_id"] == stored["activity_id"]
    assert stored["action"] == "login"
    assert stored["user_id"] == "user-1"
    assert stored["user_agent"] == "pytest-agent"
    assert stored["ip"] == "testclient"


def test_unknown_action_rejected(client, db):
    response = client.post("/api/activity/log", json={"action": "teleport"})
    assert response.status_code == 422
    db.user_activities.insert_one.assert_not_awaited()


def test_storage_failure_returns_500(client, db):
    db.user_activities.insert_one = AsyncMock(side_effect=RuntimeError("mongo down"))
    response = client.post("/api/activity/log", json={"action": "logout"})
    assert response.status_code == 500


def test_admin_listing_newest_first(client, db, admin_headers):
    response = client.get("/api/activity", params={"limit": 2}, headers=admin_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert body["activities"][0]["activity_id"] == "a2"
    cursor = db.user_activities.find.return_value
    cursor.sort.assert_called_with("timestamp", -1)
    cursor.limit.assert_called_with(2)


def test_listing_limit_bounds(client, db, admin_headers):
    assert client.get("/api/activity", params={"limit": 501}, headers=admin_headers).status_code == 422
    assert client.get("/api/activity", params={"limit": 0}, headers=admin_headers).status_code == 422


def test_listing_requires_admin(client, db, user_headers):
    assert client.get("/api/activity", headers=user_headers).status_code == 403
    assert client.get("/api/activity").status_code == 401
