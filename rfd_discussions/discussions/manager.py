"""
Discussion reconciliation: decide whether a webhook delivery creates a new
discussion room or updates the existing one, then drive the chat platform.

Creation is idempotent per RFD id.  The stored mapping is checked under a
per-record lock before a room is created, so a retried or concurrent
``rfd.created`` delivery returns the first room instead of making another.

Failures before the discussion room exists propagate.  Failures in cosmetic
follow-up steps (description, membership, intro message) are logged and
skipped so the room still gets recorded.
"""
from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from rfd_discussions.chat.base import ChatPlatform, ChatUser, Room
from rfd_discussions.config import DEFAULT_SITE_URL, DiscussionSettings
from rfd_discussions.discussions.links import (
    build_discussion_url,
    extract_room_id,
    is_valid_discussion_url,
    slugify,
)
from rfd_discussions.exceptions import InvalidPayloadError, ResourceNotFoundError
from rfd_discussions.models import RFDChanges, RFDModel, describe_state
from rfd_discussions.repositories import DiscussionRepository, DiscussionStore

_ANGLE_EMAIL_RE = re.compile(r"<([^>]+)>")

EVENT_CREATED = "rfd.created"
EVENT_UPDATED = "rfd.updated"


def _difference(items: List[str], exclude: List[str]) -> List[str]:
    """Entries of *items* not in *exclude*, each once, in first-seen order."""
    return list(dict.fromkeys(i for i in items if i not in exclude))


@dataclass
class ReconcileResult:
    """Outcome of one webhook delivery."""

    action: str  # created, existing, updated, noop
    room_id: str
    url: str


class DiscussionManager:
    """Reconciles RFD webhook events with chat discussion rooms.

    Parameters
    ----------
    chat:
        Chat platform the rooms live on.
    settings:
        Parent channel, prefix, link style and URL trust policy.
    store:
        Discussion store (see :class:`DiscussionStore`).  Defaults to
        :class:`DiscussionRepository`.
    logger:
        Where progress and swallowed failures are reported.
    """

    def __init__(
        self,
        chat: ChatPlatform,
        settings: DiscussionSettings,
        store: DiscussionStore = DiscussionRepository,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.chat = chat
        self.settings = settings
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

    # -- Entry point ------------------------------------------------------

    async def reconcile(
        self,
        event: str,
        rfd: RFDModel,
        link: str,
        changes: Optional[RFDChanges] = None,
    ) -> ReconcileResult:
        """Apply one ``rfd.created`` / ``rfd.updated`` delivery."""
        if event not in (EVENT_CREATED, EVENT_UPDATED):
            raise InvalidPayloadError(f"Unknown event type: {event}")

        reference = await self._trusted_reference(rfd)

        if event == EVENT_CREATED and reference:
            self.logger.info(f"RFD {rfd.id} already has discussion {reference}")
            return ReconcileResult("existing", extract_room_id(reference) or "", reference)

        if not reference:
            async with self.store.lock(rfd.id):
                stored = await self.store.get(rfd.id)
                if stored is None:
                    return await self._create(rfd, link)
            if event == EVENT_CREATED:
                self.logger.info(f"RFD {rfd.id} was already reconciled to room {stored['room_id']}")
                return ReconcileResult("existing", stored["room_id"], stored["room_url"])
            reference = stored["room_url"]

        return await self._update(reference, rfd, link, changes)

    async def _trusted_reference(self, rfd: RFDModel) -> Optional[str]:
        """The incoming discussion URL, unless policy says to replace an invalid one."""
        reference = rfd.discussion
        if not reference or not self.settings.overwrite_invalid_discussion_url:
            return reference
        if is_valid_discussion_url(reference, await self._site_url()):
            return reference
        self.logger.warning(
            f"RFD {rfd.id} points at {reference}, which is not a discussion on this server; "
            "a replacement will be used"
        )
        return None

    # -- Create path ------------------------------------------------------

    async def _create(self, rfd: RFDModel, link: str) -> ReconcileResult:
        prefix = self.settings.prefix

        parent = await self.chat.get_room_by_name(self.settings.parent_channel)
        if parent is None:
            raise ResourceNotFoundError(
                f"Parent channel '{self.settings.parent_channel}' not found"
            )

        app_user = await self.chat.get_app_user()
        if app_user is None:
            raise ResourceNotFoundError("App user not found")

        display_name = f"{prefix}-{rfd.id}: {rfd.title}"
        slug = slugify(f"{prefix.lower()}-{rfd.id}-{rfd.title}")
        self.logger.info(f"Creating discussion for RFD {rfd.id}: {rfd.title}")
        room = await self.chat.create_discussion(parent, display_name, slug, app_user)

        async with self._best_effort(f"set description of room {room.id}"):
            await self.chat.set_room_description(room, self._description(rfd, link), app_user)

        await self._add_authors(room, parent, rfd.authors, app_user)

        async with self._best_effort(f"post intro message to room {room.id}"):
            await self.chat.post_message(room, app_user, self._intro_message(rfd, link))

        url = build_discussion_url(await self._site_url(), room.id, self.settings.use_deep_links)
        stored = await self.store.put(rfd.id, room.id, url)
        if stored["room_id"] != room.id:
            self.logger.warning(
                f"RFD {rfd.id} was mapped to room {stored['room_id']} by another worker; "
                f"room {room.id} is left unrecorded"
            )
            return ReconcileResult("existing", stored["room_id"], stored["room_url"])
        self.logger.info(f"Discussion created for RFD {rfd.id}: {url}")
        return ReconcileResult("created", room.id, url)

    def _description(self, rfd: RFDModel, link: str) -> str:
        tags = ", ".join(rfd.tags) or "none"
        return f"{describe_state(rfd.state)} | Tags: {tags}\n\nView record: {link}"

    def _intro_message(self, rfd: RFDModel, link: str) -> str:
        prefix = self.settings.prefix
        return (
            f"**New {prefix} Created**\n\n"
            f"**{rfd.title}**\n\n"
            f"{describe_state(rfd.state)}\n\n"
            f"[Read the full {prefix}]({link})\n\n"
            f"_Authors: {', '.join(rfd.authors)}_"
        )

    # -- Update path ------------------------------------------------------

    async def _update(
        self,
        reference: str,
        rfd: RFDModel,
        link: str,
        changes: Optional[RFDChanges],
    ) -> ReconcileResult:
        room_id = extract_room_id(reference)

        if changes is None or changes.is_empty():
            self.logger.info(f"No changes to process for RFD {rfd.id}")
            return ReconcileResult("noop", room_id or "", reference)

        if not room_id:
            raise ResourceNotFoundError(f"Could not extract room ID from URL: {reference}")

        room = await self.chat.get_room_by_id(room_id)
        if room is None:
            raise ResourceNotFoundError(f"Discussion room with ID '{room_id}' not found")

        app_user = await self.chat.get_app_user()
        if app_user is None:
            raise ResourceNotFoundError("App user not found")

        lines: List[str] = []

        if changes.state:
            async with self._best_effort(f"set description of room {room.id}"):
                await self.chat.set_room_description(room, self._description(rfd, link), app_user)
            lines.append(
                f"**Status changed:** {describe_state(changes.state.old)} → "
                f"{describe_state(changes.state.new)}"
            )

        if changes.title:
            # Renaming the room needs permissions the bot may not have; report only.
            lines.append(f'**Title changed:** "{changes.title.old}" → "{changes.title.new}"')

        if changes.content:
            lines.append(f"**Content updated** — view the latest version: {link}")

        if changes.authors:
            added = _difference(changes.authors.new, changes.authors.old)
            if added:
                parent = await self._parent_of(room)
                if parent is not None:
                    await self._add_authors(room, parent, added, app_user)
                lines.append(f"**New authors added:** {', '.join(added)}")

        if changes.tags:
            added = _difference(changes.tags.new, changes.tags.old)
            removed = _difference(changes.tags.old, changes.tags.new)
            if added or removed:
                fragments = [f"+{t}" for t in added] + [f"-{t}" for t in removed]
                lines.append(f"**Tags changed:** {', '.join(fragments)}")

        if not lines:
            self.logger.info(f"Changes for RFD {rfd.id} need no announcement")
            return ReconcileResult("updated", room.id, reference)

        message = f"**{self.settings.prefix} Updated**\n\n" + "\n\n".join(lines)
        await self.chat.post_message(room, app_user, message)
        self.logger.info(f"Posted update for RFD {rfd.id} to room {room.id}")
        return ReconcileResult("updated", room.id, reference)

    async def _parent_of(self, room: Room) -> Optional[Room]:
        if not room.parent_id:
            self.logger.warning(f"Room {room.id} has no parent room; new authors not added")
            return None
        parent = None
        async with self._best_effort(f"resolve parent room {room.parent_id}"):
            parent = await self.chat.get_room_by_id(room.parent_id)
        return parent

    # -- Authors ----------------------------------------------------------

    async def _add_authors(
        self,
        room: Room,
        parent: Room,
        authors: List[str],
        acting_user: ChatUser,
    ) -> None:
        """Add each resolvable author to *room*; unresolvable ones are skipped."""
        members: Optional[List[ChatUser]] = None
        async with self._best_effort(f"list members of room {parent.id}"):
            members = await self.chat.get_room_members(parent)
        if members is None:
            return
        self.logger.info(f"Adding authors {authors} to room {room.id} ({len(members)} candidates)")

        for token in authors:
            user = None
            async with self._best_effort(f"resolve author '{token}'"):
                user = await self.resolve_author(token, members)
            if user is None:
                self.logger.info(f"No user found for author: {token.strip()}")
                continue
            async with self._best_effort(f"add {user.username} to room {room.id}"):
                await self.chat.add_member(room, user.username, acting_user)
                self.logger.info(f"Added {user.username} to room {room.id}")

    async def resolve_author(self, token: str, members: List[ChatUser]) -> Optional[ChatUser]:
        """Match an author token ("email", "Name <email>" or "username") to a user.

        Order: member email, member username, then a direct username lookup
        when the token is not an email address.
        """
        trimmed = token.strip()
        if not trimmed:
            return None
        match = _ANGLE_EMAIL_RE.search(trimmed)
        derived = (match.group(1) if match else trimmed).strip().lower()

        for member in members:
            if any(email.lower() == derived for email in member.emails):
                return member

        for member in members:
            username = member.username.lower()
            if username == derived or username == trimmed.lower():
                return member

        if "@" not in derived:
            return await self.chat.get_user_by_username(trimmed)
        return None

    # -- Helpers ----------------------------------------------------------

    async def _site_url(self) -> str:
        if self.settings.site_url:
            return self.settings.site_url
        return await self.chat.get_site_url() or DEFAULT_SITE_URL

    @asynccontextmanager
    async def _best_effort(self, step: str) -> AsyncIterator[None]:
        """Log and continue past a failure in a non-critical step."""
        try:
            yield
        except Exception as e:
            self.logger.warning(f"Could not {step}: {e}", exc_info=True)
