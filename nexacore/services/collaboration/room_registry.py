"""
Presence Room Registry - owns collaboration rooms and their mutation locks.

Every operation that changes a room's membership, version or lock state
runs under that room's asyncio.Lock, so operations on one room are
serialized while different rooms proceed independently. A lock lives while
its room exists or while a task holds or awaits it.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from nexacore.errors import ValidationError
from nexacore.infrastructure.observability.logging import get_logger
from nexacore.models.domain.collaboration_domain import (
    ENTITY_TYPES,
    CollaborationRoom,
    room_id_for,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RoomRegistry:
    """In-memory room map, per-room locks and user -> room connection tracking."""

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._rooms: dict[str, CollaborationRoom] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._user_rooms: dict[str, set[str]] = {}

    def get(self, room_id: str) -> CollaborationRoom | None:
        return self._rooms.get(room_id)

    def get_or_create(self, entity_type: str, entity_id: str, company_id: str) -> CollaborationRoom:
        """Return the room for the entity, creating it (version 0, no users) if absent."""
        if entity_type not in ENTITY_TYPES:
            raise ValidationError(
                f"Unsupported entity type: {entity_type}",
                context={"entity_type": entity_type, "allowed": list(ENTITY_TYPES)},
            )
        if not entity_id or not company_id:
            raise ValidationError("entity_id and company_id are required")

        room_id = room_id_for(entity_type, entity_id)
        room = self._rooms.get(room_id)
        if room is None:
            room = CollaborationRoom(
                id=room_id,
                entity_type=entity_type,
                entity_id=entity_id,
                company_id=company_id,
                last_activity=self._clock(),
            )
            self._rooms[room_id] = room
            logger.info("Collaboration room created", room_id=room_id, company_id=company_id)
        return room

    @asynccontextmanager
    async def room_lock(self, room_id: str) -> AsyncIterator[None]:
        """
        Hold the mutation lock for a room id.

        Holders and waiters are counted, so a waiter that wakes after the
        room was closed and recreated still serializes with the new room.
        The lock is dropped once nobody uses it and the room is gone.
        """
        lock = self._locks.setdefault(room_id, asyncio.Lock())
        self._lock_users[room_id] = self._lock_users.get(room_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[room_id] -= 1
            if not self._lock_users[room_id]:
                del self._lock_users[room_id]
                if room_id not in self._rooms:
                    self._locks.pop(room_id, None)

    def lock_count(self) -> int:
        return len(self._locks)

    def remove(self, room_id: str) -> None:
        self._rooms.pop(room_id, None)
        if room_id not in self._lock_users:
            self._locks.pop(room_id, None)
        for user_id, room_ids in list(self._user_rooms.items()):
            room_ids.discard(room_id)
            if not room_ids:
                del self._user_rooms[user_id]
        logger.info("Collaboration room closed", room_id=room_id)

    def track(self, user_id: str, room_id: str) -> None:
        self._user_rooms.setdefault(user_id, set()).add(room_id)

    def untrack(self, user_id: str, room_id: str) -> None:
        room_ids = self._user_rooms.get(user_id)
        if room_ids is None:
            return
        room_ids.discard(room_id)
        if not room_ids:
            del self._user_rooms[user_id]

    def rooms_for_user(self, user_id: str) -> list[CollaborationRoom]:
        room_ids = self._user_rooms.get(user_id, set())
        return [self._rooms[room_id] for room_id in sorted(room_ids) if room_id in self._rooms]

    def all_rooms(self) -> list[CollaborationRoom]:
        return list(self._rooms.values())

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms
