"""Abstract chat platform interface used by the discussion reconciler."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Room:
    """A chat room as seen by the reconciler."""

    id: str
    name: str = ""
    display_name: str = ""
    parent_id: Optional[str] = None
    type: str = "p"  # c = public channel, p = private group


@dataclass
class ChatUser:
    """A chat platform user."""

    id: str
    username: str
    emails: List[str] = field(default_factory=list)


class ChatPlatform(ABC):
    """Capabilities the reconciler needs from the chat platform.

    Lookups return ``None`` when the target does not exist.  Any other
    failure is raised, normally as :class:`~rfd_discussions.exceptions.ChatPlatformError`.
    """

    @abstractmethod
    async def get_room_by_name(self, name: str) -> Optional[Room]:
        """Resolve a room by its name."""

    @abstractmethod
    async def get_room_by_id(self, room_id: str) -> Optional[Room]:
        """Resolve a room by its id."""

    @abstractmethod
    async def get_app_user(self) -> Optional[ChatUser]:
        """Return the identity this service acts as."""

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[ChatUser]:
        """Look a user up by username, regardless of room membership."""

    @abstractmethod
    async def get_room_members(self, room: Room) -> List[ChatUser]:
        """List the members of *room*."""

    @abstractmethod
    async def create_discussion(
        self,
        parent: Room,
        display_name: str,
        slug: str,
        creator: ChatUser,
    ) -> Room:
        """Create a discussion room under *parent* and return it."""

    @abstractmethod
    async def set_room_description(self, room: Room, text: str, acting_user: ChatUser) -> None:
        """Replace the description of *room*."""

    @abstractmethod
    async def add_member(self, room: Room, username: str, acting_user: ChatUser) -> None:
        """Add the user named *username* to *room*."""

    @abstractmethod
    async def post_message(self, room: Room, sender: ChatUser, text: str) -> None:
        """Post *text* to *room* as *sender*."""

    async def get_site_url(self) -> Optional[str]:
        """Public base URL of the chat server, if the platform knows it."""
        return None
