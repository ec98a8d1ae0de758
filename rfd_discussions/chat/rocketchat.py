"""Rocket.Chat implementation of :class:`ChatPlatform` (uses httpx.AsyncClient).

Every call is made as the bot user whose credentials are configured, so the
``acting_user`` / ``sender`` arguments only need to match that identity.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from rfd_discussions.chat.base import ChatPlatform, ChatUser, Room
from rfd_discussions.exceptions import ChatPlatformError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


def _room_from_api(data: Dict[str, Any]) -> Room:
    return Room(
        id=data.get("_id") or data.get("rid") or "",
        name=data.get("name", ""),
        display_name=data.get("fname", "") or data.get("name", ""),
        parent_id=data.get("prid"),
        type=data.get("t", "p"),
    )


def _user_from_api(data: Dict[str, Any]) -> ChatUser:
    emails = [e.get("address", "") for e in data.get("emails") or [] if e.get("address")]
    return ChatUser(id=data.get("_id", ""), username=data.get("username", ""), emails=emails)


def _room_api(room: Room) -> str:
    """REST namespace for a room: public channels and private groups differ."""
    return "channels" if room.type == "c" else "groups"


class RocketChatClient(ChatPlatform):
    """Async Rocket.Chat REST client.

    Usage::

        async with RocketChatClient("https://chat.example.com", user_id, token) as chat:
            room = await chat.get_room_by_name("rfd")
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        auth_token: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/api/v1",
            headers={
                "Content-Type": "application/json",
                "X-User-Id": user_id,
                "X-Auth-Token": auth_token,
            },
            timeout=timeout,
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "RocketChatClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ChatPlatformError(f"Rocket.Chat request {path} failed: {exc}") from exc

        try:
            body = resp.json()
        except ValueError:
            body = {"error": resp.text}

        if resp.status_code >= 400 or body.get("success") is False:
            detail = body.get("error") or body.get("message") or f"HTTP {resp.status_code}"
            raise ChatPlatformError(f"Rocket.Chat {path} returned {resp.status_code}: {detail}")
        return body

    async def _lookup(self, path: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """GET that maps Rocket.Chat's 'not found' answers (400/404) to None."""
        try:
            resp = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            raise ChatPlatformError(f"Rocket.Chat request {path} failed: {exc}") from exc
        if resp.status_code in (400, 404):
            return None
        if resp.status_code >= 400:
            raise ChatPlatformError(f"Rocket.Chat {path} returned {resp.status_code}")
        return resp.json()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_room_by_name(self, name: str) -> Optional[Room]:
        body = await self._lookup("/rooms.info", {"roomName": name})
        return _room_from_api(body["room"]) if body and body.get("room") else None

    async def get_room_by_id(self, room_id: str) -> Optional[Room]:
        body = await self._lookup("/rooms.info", {"roomId": room_id})
        return _room_from_api(body["room"]) if body and body.get("room") else None

    async def get_app_user(self) -> Optional[ChatUser]:
        body = await self._lookup("/me", {})
        return _user_from_api(body) if body and body.get("_id") else None

    async def get_user_by_username(self, username: str) -> Optional[ChatUser]:
        body = await self._lookup("/users.info", {"username": username})
        return _user_from_api(body["user"]) if body and body.get("user") else None

    async def get_room_members(self, room: Room) -> List[ChatUser]:
        body = await self._request(
            "GET", f"/{_room_api(room)}.members", params={"roomId": room.id, "count": 0}
        )
        return [_user_from_api(m) for m in body.get("members", [])]

    async def get_site_url(self) -> Optional[str]:
        return self.base_url or None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_discussion(
        self,
        parent: Room,
        display_name: str,
        slug: str,
        creator: ChatUser,
    ) -> Room:
        # The REST API derives the room name itself; the slug is only logged.
        logger.info(f"Creating discussion '{display_name}' ({slug}) under room {parent.id}")
        body = await self._request(
            "POST", "/rooms.createDiscussion", json={"prid": parent.id, "t_name": display_name}
        )
        data = body.get("discussion") or {}
        room_id = data.get("rid") or data.get("_id")
        if not room_id:
            raise ChatPlatformError("Rocket.Chat did not return the new discussion id")
        return Room(
            id=room_id,
            name=data.get("name", slug),
            display_name=data.get("fname", display_name),
            parent_id=parent.id,
            type=data.get("t", "p"),
        )

    async def set_room_description(self, room: Room, text: str, acting_user: ChatUser) -> None:
        await self._request(
            "POST",
            f"/{_room_api(room)}.setDescription",
            json={"roomId": room.id, "description": text},
        )

    async def add_member(self, room: Room, username: str, acting_user: ChatUser) -> None:
        user = await self.get_user_by_username(username)
        if user is None:
            raise ChatPlatformError(f"User '{username}' not found")
        await self._request(
            "POST", f"/{_room_api(room)}.invite", json={"roomId": room.id, "userId": user.id}
        )

    async def post_message(self, room: Room, sender: ChatUser, text: str) -> None:
        await self._request("POST", "/chat.postMessage", json={"roomId": room.id, "text": text})
