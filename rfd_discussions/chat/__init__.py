"""Chat platform boundary for RFD Discussions."""

from .base import ChatPlatform, ChatUser, Room
from .rocketchat import RocketChatClient

__all__ = [
    "ChatPlatform",
    "ChatUser",
    "Room",
    "RocketChatClient",
]
