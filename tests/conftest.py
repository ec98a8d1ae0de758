import asyncio
import importlib
import itertools
from typing import Dict, List, Optional

import pytest

import rfd_discussions.db as db_module
from rfd_discussions.chat.base import ChatPlatform, ChatUser, Room
from rfd_discussions.config import DiscussionSettings
from rfd_discussions.exceptions import ChatPlatformError
from rfd_discussions.repositories import KeyedLocks


@pytest.fixture(autouse=True)
def setup_default_db_env(monkeypatch):
    """
    Ensures that the default DATABASE_URL for tests is always in-memory SQLite.
    This runs before any other fixture, setting the environment variable.
    """
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    # Reload db module so the engine picks up the in-memory URL
    importlib.reload(db_module)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeChatPlatform(ChatPlatform):
    """In-memory chat platform that records every call.

    Put a method name in ``fail`` to make that method raise ChatPlatformError.
    """

    def __init__(self, site_url: Optional[str] = "https://chat.example.com") -> None:
        self.calls: List[tuple] = []
        self.rooms: Dict[str, Room] = {}
        self.members: Dict[str, List[ChatUser]] = {}
        self.users: Dict[str, ChatUser] = {}
        self.app_user: Optional[ChatUser] = ChatUser(id="bot-id", username="rfd.bot")
        self.site_url = site_url
        self.descriptions: Dict[str, str] = {}
        self.messages: List[tuple] = []
        self.added: List[tuple] = []
        self.fail: set = set()
        self._ids = itertools.count(1)

    # -- setup helpers --

    def add_room(self, room_id: str, name: str, parent_id: Optional[str] = None,
                 members: Optional[List[ChatUser]] = None) -> Room:
        room = Room(id=room_id, name=name, display_name=name, parent_id=parent_id)
        self.rooms[room_id] = room
        self.members[room_id] = list(members or [])
        return room

    def add_user(self, username: str, *emails: str) -> ChatUser:
        user = ChatUser(id=f"{username}-id", username=username, emails=list(emails))
        self.users[username] = user
        return user

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.fail:
            raise ChatPlatformError(f"{name} failed")

    # -- ChatPlatform --

    async def get_room_by_name(self, name):
        self._record("get_room_by_name", name)
        return next((r for r in self.rooms.values() if r.name == name), None)

    async def get_room_by_id(self, room_id):
        self._record("get_room_by_id", room_id)
        return self.rooms.get(room_id)

    async def get_app_user(self):
        self._record("get_app_user")
        return self.app_user

    async def get_user_by_username(self, username):
        self._record("get_user_by_username", username)
        return self.users.get(username)

    async def get_room_members(self, room):
        self._record("get_room_members", room.id)
        return list(self.members.get(room.id, []))

    async def create_discussion(self, parent, display_name, slug, creator):
        self._record("create_discussion", parent.id, display_name, slug)
        await asyncio.sleep(0)
        room = self.add_room(f"ROOM{next(self._ids)}", slug, parent_id=parent.id)
        room.display_name = display_name
        return room

    async def set_room_description(self, room, text, acting_user):
        self._record("set_room_description", room.id, text)
        self.descriptions[room.id] = text

    async def add_member(self, room, username, acting_user):
        self._record("add_member", room.id, username)
        self.added.append((room.id, username))

    async def post_message(self, room, sender, text):
        self._record("post_message", room.id, text)
        self.messages.append((room.id, text))

    async def get_site_url(self):
        return self.site_url


class InMemoryStore:
    """Discussion store double with the same interface as DiscussionRepository."""

    def __init__(self) -> None:
        self.records: Dict[str, dict] = {}
        self.put_count = 0
        self._locks = KeyedLocks()

    async def get(self, rfd_id):
        await asyncio.sleep(0)
        record = self.records.get(rfd_id)
        return dict(record) if record else None

    async def put(self, rfd_id, room_id, room_url):
        await asyncio.sleep(0)
        self.put_count += 1
        record = self.records.setdefault(
            rfd_id,
            {"rfd_id": rfd_id, "room_id": room_id, "room_url": room_url, "created_at": 0.0},
        )
        return dict(record)

    async def exists(self, rfd_id):
        return rfd_id in self.records

    def lock(self, rfd_id):
        return self._locks.hold(rfd_id)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def chat():
    platform = FakeChatPlatform()
    alice = ChatUser(id="alice-id", username="alice", emails=["Alice@X.com"])
    bob = ChatUser(id="bob-id", username="bob", emails=["bob@x.com"])
    platform.add_room("PARENT", "rfd", members=[alice, bob, platform.app_user])
    return platform


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def settings():
    return DiscussionSettings(parent_channel="rfd", site_url="https://chat.example.com")


def make_rfd(**overrides) -> dict:
    rfd = {
        "id": "42",
        "title": "Use Postgres",
        "authors": ["alice@x.com"],
        "state": "discussion",
        "tags": ["db", "infra"],
        "content": "<p>body</p>",
        "contentMD": "body",
        "createdAt": "2026-01-01T00:00:00Z",
        "modifiedAt": "2026-01-02T00:00:00Z",
    }
    rfd.update(overrides)
    return rfd
