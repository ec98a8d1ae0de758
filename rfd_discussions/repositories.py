"""
Discussion store: persistent mapping from RFD id to its discussion room.

A mapping is written once, when the discussion is first created, and is the
guard against creating a second room for a retried or reordered delivery.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncContextManager, AsyncIterator, Dict, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from rfd_discussions.db import advisory_lock, get_db_session
from rfd_discussions.exceptions import StoreUnavailableError
from rfd_discussions.models import DiscussionRecord, discussion_key

logger = logging.getLogger(__name__)

STORE_UNAVAILABLE = "Discussion store unavailable"


class DiscussionStore(Protocol):
    """What the reconciler needs from a discussion store."""

    async def get(self, rfd_id: str) -> Optional[Dict]: ...

    async def put(self, rfd_id: str, room_id: str, room_url: str) -> Dict: ...

    def lock(self, rfd_id: str) -> AsyncContextManager[None]: ...


class KeyedLocks:
    """asyncio locks handed out per key and dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# Shared by every request handled in this process
_record_locks = KeyedLocks()


class DiscussionRepository:
    """Repository for RFD → discussion mappings."""

    @staticmethod
    async def get(rfd_id: str) -> Optional[Dict]:
        """Return the stored mapping for *rfd_id*, or None."""
        try:
            async with get_db_session() as session:
                record = await session.get(DiscussionRecord, discussion_key(rfd_id))
                return record.to_dict() if record else None
        except SQLAlchemyError as e:
            logger.error(f"Discussion store read failed for RFD {rfd_id}: {e}")
            raise StoreUnavailableError(STORE_UNAVAILABLE) from e

    @staticmethod
    async def put(rfd_id: str, room_id: str, room_url: str) -> Dict:
        """Record the mapping for *rfd_id* unless one exists; return the stored mapping.

        The first mapping written for an RFD is never replaced.
        """
        try:
            async with get_db_session() as session:
                key = discussion_key(rfd_id)
                record = await session.get(DiscussionRecord, key)
                if record is None:
                    record = DiscussionRecord(
                        key=key,
                        rfd_id=rfd_id,
                        room_id=room_id,
                        room_url=room_url,
                        created_at=time.time(),
                    )
                    session.add(record)
                elif record.room_id != room_id:
                    logger.warning(
                        f"RFD {rfd_id} is already mapped to room {record.room_id}; "
                        f"not recording room {room_id}"
                    )
                return record.to_dict()
        except SQLAlchemyError as e:
            logger.error(f"Discussion store write failed for RFD {rfd_id}: {e}")
            raise StoreUnavailableError(STORE_UNAVAILABLE) from e

    @staticmethod
    async def exists(rfd_id: str) -> bool:
        return await DiscussionRepository.get(rfd_id) is not None

    @staticmethod
    @asynccontextmanager
    async def lock(rfd_id: str) -> AsyncIterator[None]:
        """Serialise the check-then-create sequence for one RFD id.

        Coroutines in this process queue on an asyncio lock; on PostgreSQL a
        session advisory lock also serialises other workers and replicas.
        """
        key = discussion_key(rfd_id)
        async with _record_locks.hold(key):
            try:
                async with advisory_lock(key):
                    yield
            except SQLAlchemyError as e:
                logger.error(f"Could not lock discussion record for RFD {rfd_id}: {e}")
                raise StoreUnavailableError(STORE_UNAVAILABLE) from e
