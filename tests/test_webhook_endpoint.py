"""Tests for the signed webhook endpoint and its error mapping."""

import json
import os
from contextlib import asynccontextmanager
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from conftest import FakeChatPlatform, make_rfd
from rfd_discussions.chat.base import ChatUser
from rfd_discussions.config import AppConfig
from rfd_discussions.main import app, get_app_config
from rfd_discussions.webhooks import SIGNATURE_HEADER, signature_header

SECRET = "whsec-test-secret"


def _config(**env):
    values = {
        "RFD_PARENT_CHANNEL": "rfd",
        "RFD_WEBHOOK_SECRET": SECRET,
        "RFD_SITE_URL": "https://chat.example.com",
        "RFD_USE_DEEP_LINKS": "false",
    }
    values.update(env)
    with patch.dict(os.environ, values):
        return AppConfig()


@pytest.fixture
def fake_chat():
    platform = FakeChatPlatform()
    alice = ChatUser(id="alice-id", username="alice", emails=["alice@x.com"])
    platform.add_room("PARENT", "rfd", members=[alice, platform.app_user])
    return platform


@pytest.fixture
def client(fake_chat):
    app.dependency_overrides[get_app_config] = lambda: _config()
    with TestClient(app) as c:
        app.state.chat = fake_chat
        yield c
    app.dependency_overrides.clear()


def _post(client, payload, secret=SECRET, headers=None):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    sent = {"Content-Type": "application/json"}
    if secret is not None:
        sent[SIGNATURE_HEADER] = signature_header(body, secret)
    sent.update(headers or {})
    return client.post("/api/v1/webhook", content=body, headers=sent)


def _created(**rfd):
    return {
        "event": "rfd.created",
        "timestamp": "2026-01-01T00:00:00Z",
        "rfd": make_rfd(**rfd),
        "link": "https://rfd.example.com/rfd/42",
    }


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------


def test_health(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


def test_missing_configuration_is_server_error(client, fake_chat):
    app.dependency_overrides[get_app_config] = lambda: _config(RFD_WEBHOOK_SECRET="")
    resp = _post(client, _created())
    assert resp.status_code == 500
    body = resp.json()
    assert body["success"] is False
    assert "webhook_secret" in body["error"]
    assert fake_chat.calls == []


def test_missing_signature_is_rejected(client, fake_chat):
    resp = _post(client, _created(), secret=None)
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Invalid signature"}
    assert fake_chat.calls == []


def test_wrong_signature_is_rejected(client, fake_chat):
    resp = _post(client, _created(), secret="not-the-secret")
    assert resp.status_code == 401
    assert fake_chat.calls == []


def test_signature_checked_before_body_is_parsed(client):
    resp = _post(client, b"{not json", secret=None)
    assert resp.status_code == 401


def test_body_that_is_not_json(client):
    resp = _post(client, b"{not json")
    assert resp.status_code == 400
    assert resp.json()["error"].startswith("Invalid payload")


def test_payload_without_rfd(client):
    resp = _post(client, {"event": "rfd.created", "timestamp": "t"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid payload"


def test_unknown_event(client, fake_chat):
    payload = _created()
    payload["event"] = "rfd.deleted"
    resp = _post(client, payload)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Unknown event type: rfd.deleted"
    assert fake_chat.calls == []


def test_chat_platform_not_configured(client):
    app.state.chat = None
    resp = _post(client, _created())
    assert resp.status_code == 500
    assert resp.json()["error"] == "Chat platform not configured"


# ---------------------------------------------------------------------------
# Reconciliation through HTTP
# ---------------------------------------------------------------------------


def test_created_event_creates_discussion(client, fake_chat):
    resp = _post(client, _created())
    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "discussion": {"id": "ROOM1", "url": "https://chat.example.com/group/ROOM1"},
    }
    assert fake_chat.call_names().count("create_discussion") == 1
    assert ("ROOM1", "alice") in fake_chat.added


def test_duplicate_created_delivery_returns_first_room(client, fake_chat):
    first = _post(client, _created())
    second = _post(client, _created())
    assert second.status_code == 200
    assert second.json() == first.json()
    assert fake_chat.call_names().count("create_discussion") == 1


def test_numeric_rfd_id_is_accepted(client):
    resp = _post(client, _created(id=42))
    assert resp.status_code == 200
    assert resp.json()["discussion"]["id"] == "ROOM1"


def test_update_without_changes_is_noop(client, fake_chat):
    payload = {
        "event": "rfd.updated",
        "timestamp": "2026-01-02T00:00:00Z",
        "rfd": make_rfd(discussion="https://chat.example.com/group/ROOM9"),
        "link": "https://rfd.example.com/rfd/42",
        "changes": {},
    }
    resp = _post(client, payload)
    assert resp.status_code == 200
    assert resp.json()["discussion"] == {
        "id": "ROOM9",
        "url": "https://chat.example.com/group/ROOM9",
    }
    assert fake_chat.calls == []


def test_update_posts_change_summary(client, fake_chat):
    fake_chat.add_room("ROOM9", "rfd-42", parent_id="PARENT")
    payload = {
        "event": "rfd.updated",
        "timestamp": "2026-01-02T00:00:00Z",
        "rfd": make_rfd(discussion="https://chat.example.com/group/ROOM9"),
        "link": "https://rfd.example.com/rfd/42",
        "changes": {"tags": {"old": ["db"], "new": ["db", "infra"]}},
    }
    resp = _post(client, payload)
    assert resp.status_code == 200
    assert fake_chat.messages == [("ROOM9", "**RFD Updated**\n\n**Tags changed:** +infra")]


def test_missing_parent_channel_is_server_error(client, fake_chat):
    fake_chat.rooms.clear()
    resp = _post(client, _created())
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Parent channel 'rfd' not found"}


# ---------------------------------------------------------------------------
# Collaborator and store failures
# ---------------------------------------------------------------------------


@pytest.fixture
def lenient_client(fake_chat):
    """Client that returns 500 responses instead of re-raising server errors."""
    app.dependency_overrides[get_app_config] = lambda: _config()
    with TestClient(app, raise_server_exceptions=False) as c:
        app.state.chat = fake_chat
        yield c
    app.dependency_overrides.clear()


def test_unexpected_collaborator_error_is_internal_error(lenient_client, fake_chat):
    """A non-service exception is logged and answered with a generic 500."""
    async def exploding_create(*args):
        raise RuntimeError("socket closed mid-request")

    fake_chat.create_discussion = exploding_create
    resp = _post(lenient_client, _created())
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Internal error"}


def test_chat_platform_error_is_internal_error(client, fake_chat):
    """A failing chat platform call surfaces as a 500 with its message."""
    fake_chat.fail.add("create_discussion")
    resp = _post(client, _created())
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "create_discussion failed"}


def test_store_failure_is_internal_error(client, fake_chat):
    """An unavailable store surfaces as a 500 without driver details."""
    @asynccontextmanager
    async def broken_session():
        raise OperationalError("SELECT key FROM rfd_discussions", {}, Exception("disk I/O error"))
        yield

    with patch("rfd_discussions.repositories.get_db_session", broken_session):
        resp = _post(client, _created())
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Discussion store unavailable"}
    assert "create_discussion" not in fake_chat.call_names()
