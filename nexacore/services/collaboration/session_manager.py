"""
Collaboration Session Manager - presence-aware co-editing sessions for ERP entities.

Manages room membership, cursor/typing presence, versioned updates and the
advisory entity lock. Rooms are the unit of isolation: join, leave, update
and lock/unlock on one room run under that room's lock, so version numbers
strictly increase and membership stays consistent. Different rooms never
wait on each other.

External effects (snapshot fetch, update persistence, broadcast) are
best-effort: failures are logged and never undo in-memory session state.

Locking is advisory by default: process_update does not consult the lock
unless the manager is built with enforce_locks=True.
"""

import asyncio
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from nexacore.config import settings
from nexacore.errors import (
    AuthorizationError,
    CapacityError,
    EntityLockedError,
    NotFoundError,
    ValidationError,
)
from nexacore.infrastructure.observability.logging import get_logger
from nexacore.models.domain.collaboration_domain import (
    CHANGE_TYPES,
    SYSTEM_USER_ID,
    CollaborationMessage,
    CollaborationRoom,
    CollaborationUser,
    Cursor,
    RealtimeUpdate,
)
from nexacore.services.collaboration.broadcast import BroadcastQueue
from nexacore.services.collaboration.providers import (
    InMemoryUpdateStore,
    SnapshotProvider,
    StaticSnapshotProvider,
    UpdateStore,
)
from nexacore.services.collaboration.room_registry import RoomRegistry

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_update_id() -> str:
    return f"update_{uuid.uuid4().hex}"


class CollaborationSessionManager:
    """
    High-level service for real-time collaboration sessions.

    Orchestrates the room registry, the broadcast queue and the external
    snapshot/update collaborators.
    """

    def __init__(
        self,
        registry: RoomRegistry | None = None,
        broadcaster: BroadcastQueue | None = None,
        snapshot_provider: SnapshotProvider | None = None,
        update_store: UpdateStore | None = None,
        max_room_size: int | None = None,
        inactivity_timeout_seconds: float | None = None,
        enforce_locks: bool | None = None,
        external_timeout_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = _new_update_id,
    ):
        config = settings.get_collaboration_config()

        self._clock = clock
        self._new_id = id_factory
        self.registry = registry if registry is not None else RoomRegistry(clock=clock)
        if broadcaster is None:
            broadcaster = BroadcastQueue(max_size=config["broadcast_queue_size"])
        self.broadcaster = broadcaster
        self.snapshot_provider = (
            snapshot_provider if snapshot_provider is not None else StaticSnapshotProvider()
        )
        self.update_store = update_store if update_store is not None else InMemoryUpdateStore()

        self.max_room_size = max_room_size or config["max_room_size"]
        self.inactivity_timeout_seconds = (
            inactivity_timeout_seconds
            if inactivity_timeout_seconds is not None
            else config["inactivity_timeout_seconds"]
        )
        self.enforce_locks = config["enforce_locks"] if enforce_locks is None else enforce_locks
        self.external_timeout_seconds = (
            external_timeout_seconds
            if external_timeout_seconds is not None
            else config["external_timeout_seconds"]
        )

    # ------------------------------------------------------------------
    # Room lifecycle
    # ------------------------------------------------------------------

    async def create_room(
        self, entity_type: str, entity_id: str, company_id: str
    ) -> CollaborationRoom:
        """Create the room for an entity, or return the existing one."""
        room = self.registry.get_or_create(entity_type, entity_id, company_id)
        if room.company_id != company_id:
            raise AuthorizationError(
                "Unauthorized access to room",
                context={"room_id": room.id},
            )
        return room

    async def join_room(
        self,
        room_id: str,
        user_id: str,
        user_name: str,
        user_email: str,
        company_id: str,
        client_id: str,
    ) -> tuple[CollaborationRoom, dict[str, Any]]:
        """
        Add a user to a room and return the room with the entity snapshot.

        A user joining again (new tab, reconnect) replaces their previous
        entry. All checks run before any state changes.

        Raises:
            NotFoundError: room does not exist
            AuthorizationError: company does not own the room
            CapacityError: room already holds max_room_size other users
        """
        async with self.registry.room_lock(room_id):
            room = self._require_room(room_id)
            self._require_tenant(room, company_id)

            previous = room.find_user(user_id)
            others = len(room.active_users) - (1 if previous else 0)
            if others >= self.max_room_size:
                raise CapacityError(
                    "Room is full",
                    context={"room_id": room_id, "max_room_size": self.max_room_size},
                )

            now = self._clock()
            user = CollaborationUser(
                user_id=user_id,
                user_name=user_name,
                user_email=user_email,
                joined_at=now,
                last_seen=now,
                client_id=client_id,
            )
            if previous is not None:
                room.active_users.remove(previous)
            room.active_users.append(user)
            room.last_activity = now
            self.registry.track(user_id, room_id)

            self._broadcast(
                room,
                "presence",
                SYSTEM_USER_ID,
                {
                    "action": "user_joined",
                    "user": user.to_dict(),
                    "active_users": [u.to_dict() for u in room.active_users],
                },
            )

        logger.info(
            "User joined collaboration room",
            room_id=room_id,
            user_id=user_id,
            client_id=client_id,
            rejoin=previous is not None,
            active_users=len(room.active_users),
        )

        snapshot = await self._fetch_snapshot(room)
        return room, snapshot

    async def leave_room(self, room_id: str, user_id: str, company_id: str) -> None:
        """Remove a user; close the room once nobody is left. Unknown room or user is a no-op."""
        async with self.registry.room_lock(room_id):
            room = self.registry.get(room_id)
            if room is None:
                return
            self._require_tenant(room, company_id)
            self._remove_member(room, user_id, reason="left")

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    async def process_update(self, message: CollaborationMessage) -> RealtimeUpdate:
        """
        Accept a change to the room's entity and stamp it with the next version.

        Last writer wins; no merge. Persistence is best-effort and a failure
        does not roll back the version.
        """
        async with self.registry.room_lock(message.room_id):
            room = self._require_room(message.room_id)
            self._require_tenant(room, message.company_id)

            if self.enforce_locks and room.locked and room.locked_by != message.user_id:
                raise EntityLockedError(
                    "Entity is locked by another user",
                    context={"room_id": room.id, "locked_by": room.locked_by},
                )

            data = message.data or {}
            change_type = data.get("change_type") or "update"
            if change_type not in CHANGE_TYPES:
                raise ValidationError(
                    f"Unsupported change type: {change_type}",
                    context={"allowed": list(CHANGE_TYPES)},
                )

            now = self._clock()
            update = RealtimeUpdate(
                id=self._new_id(),
                room_id=room.id,
                entity_type=room.entity_type,
                entity_id=room.entity_id,
                user_id=message.user_id,
                change_type=change_type,
                field_name=data.get("field_name"),
                old_value=data.get("old_value"),
                new_value=data.get("new_value"),
                created_at=now,
                version=room.version + 1,
            )
            room.version = update.version
            room.last_activity = now

            member = room.find_user(message.user_id)
            if member is not None:
                member.last_seen = now

            await self._persist(update)
            self._broadcast(room, "update", message.user_id, update.to_dict())

        logger.debug(
            "Update accepted",
            room_id=room.id,
            user_id=message.user_id,
            version=update.version,
            change_type=change_type,
        )
        return update

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    def update_user_cursor(
        self, room_id: str, user_id: str, x: float, y: float, field: str | None = None
    ) -> bool:
        """Move a user's cursor. Returns False if the room or user is unknown."""
        room = self.registry.get(room_id)
        user = room.find_user(user_id) if room else None
        if user is None:
            return False

        user.cursor = Cursor(x=x, y=y, field=field)
        user.last_seen = self._clock()

        self._broadcast(
            room,
            "cursor",
            user_id,
            {"user_id": user_id, "user_name": user.user_name, "cursor": user.cursor.to_dict()},
        )
        return True

    def update_typing_status(self, room_id: str, user_id: str, is_typing: bool) -> bool:
        """Set a user's typing flag. Returns False if the room or user is unknown."""
        room = self.registry.get(room_id)
        user = room.find_user(user_id) if room else None
        if user is None:
            return False

        user.is_typing = bool(is_typing)
        user.last_seen = self._clock()

        self._broadcast(
            room,
            "presence",
            user_id,
            {"action": "typing_status_changed", "user_id": user_id, "is_typing": user.is_typing},
        )
        return True

    def heartbeat(self, room_id: str, user_id: str) -> bool:
        """Keep a user alive without broadcasting anything."""
        room = self.registry.get(room_id)
        user = room.find_user(user_id) if room else None
        if user is None:
            return False
        user.last_seen = self._clock()
        return True

    async def cleanup_inactive_users(self) -> int:
        """
        Evict users idle for longer than the inactivity timeout.

        Meant to be called from a periodic job; it does not schedule itself.

        Returns:
            Number of users evicted
        """
        cleaned = 0

        for room in self.registry.all_rooms():
            async with self.registry.room_lock(room.id):
                if self.registry.get(room.id) is not room:
                    continue

                now = self._clock()
                stale = [
                    user.user_id
                    for user in room.active_users
                    if user.idle_seconds(now) > self.inactivity_timeout_seconds
                ]
                for user_id in stale:
                    self._remove_member(room, user_id, reason="inactive")
                    cleaned += 1

        if cleaned:
            logger.info("Inactive collaborators evicted", count=cleaned)
        return cleaned

    # ------------------------------------------------------------------
    # Advisory locking
    # ------------------------------------------------------------------

    async def lock_entity(self, room_id: str, user_id: str, company_id: str) -> bool:
        """Take the room's advisory lock. False if someone else holds it."""
        async with self.registry.room_lock(room_id):
            room = self.registry.get(room_id)
            if room is None or room.company_id != company_id:
                return False
            if room.locked and room.locked_by != user_id:
                return False

            room.locked = True
            room.locked_by = user_id
            self._broadcast(
                room, "sync", SYSTEM_USER_ID, {"action": "entity_locked", "locked_by": user_id}
            )
            return True

    async def unlock_entity(self, room_id: str, user_id: str, company_id: str) -> bool:
        """Release the room's advisory lock. Only the holder can release it."""
        async with self.registry.room_lock(room_id):
            room = self.registry.get(room_id)
            if room is None or room.company_id != company_id:
                return False
            if not room.locked or room.locked_by != user_id:
                return False

            self._release_lock(room)
            return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_room(self, room_id: str) -> CollaborationRoom | None:
        return self.registry.get(room_id)

    def get_user_rooms(self, user_id: str) -> list[CollaborationRoom]:
        return self.registry.rooms_for_user(user_id)

    async def get_collaboration_history(
        self, entity_type: str, entity_id: str, limit: int = 50
    ) -> list[RealtimeUpdate]:
        """Most recent accepted updates for an entity, newest first."""
        return await self.update_store.history(entity_type, entity_id, limit)

    async def get_statistics(self) -> dict[str, int]:
        rooms = self.registry.all_rooms()
        try:
            total_updates = await self.update_store.count()
        except Exception as e:
            logger.warning("Could not count updates", error=str(e), error_type=type(e).__name__)
            total_updates = 0

        return {
            "active_rooms": len(rooms),
            "active_users": sum(len(room.active_users) for room in rooms),
            "total_updates": total_updates,
            "messages_to_process": self.broadcaster.pending(),
        }

    async def handle_message(self, message: CollaborationMessage) -> Any:
        """
        Dispatch a raw transport message.

        Joins are not accepted here: they need user profile fields and
        return a snapshot, so transports call join_room directly.
        """
        data = message.data or {}

        if message.type == "update":
            return await self.process_update(message)
        if message.type == "leave":
            return await self.leave_room(message.room_id, message.user_id, message.company_id)
        if message.type == "cursor":
            if "x" not in data or "y" not in data:
                raise ValidationError("x and y coordinates are required")
            return self.update_user_cursor(
                message.room_id, message.user_id, data["x"], data["y"], data.get("field")
            )
        if message.type == "presence" and "is_typing" in data:
            return self.update_typing_status(message.room_id, message.user_id, data["is_typing"])
        if message.type == "heartbeat":
            return self.heartbeat(message.room_id, message.user_id)

        raise ValidationError(
            f"Unsupported message type: {message.type}", context={"type": message.type}
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_room(self, room_id: str) -> CollaborationRoom:
        room = self.registry.get(room_id)
        if room is None:
            raise NotFoundError("Room not found", context={"room_id": room_id})
        return room

    @staticmethod
    def _require_tenant(room: CollaborationRoom, company_id: str) -> None:
        if room.company_id != company_id:
            raise AuthorizationError("Unauthorized access to room", context={"room_id": room.id})

    def _remove_member(self, room: CollaborationRoom, user_id: str, reason: str) -> None:
        """Shared exit path for leave and eviction. Caller holds the room lock."""
        user = room.remove_user(user_id)
        self.registry.untrack(user_id, room.id)
        if user is None:
            return

        if room.locked and room.locked_by == user_id:
            self._release_lock(room)

        self._broadcast(
            room,
            "presence",
            SYSTEM_USER_ID,
            {
                "action": "user_left",
                "user_id": user_id,
                "reason": reason,
                "active_users": [u.to_dict() for u in room.active_users],
            },
        )

        logger.info(
            "User left collaboration room",
            room_id=room.id,
            user_id=user_id,
            reason=reason,
            active_users=len(room.active_users),
        )

        if room.is_empty():
            self.registry.remove(room.id)

    def _release_lock(self, room: CollaborationRoom) -> None:
        room.locked = False
        room.locked_by = None
        self._broadcast(room, "sync", SYSTEM_USER_ID, {"action": "entity_unlocked"})

    def _broadcast(
        self, room: CollaborationRoom, message_type: str, user_id: str, data: dict[str, Any]
    ) -> None:
        message = CollaborationMessage(
            type=message_type,
            room_id=room.id,
            user_id=user_id,
            company_id=room.company_id,
            data=data,
            timestamp=self._clock(),
        )
        try:
            self.broadcaster.publish(room.id, message)
        except Exception as e:
            logger.warning(
                "Broadcast failed",
                room_id=room.id,
                message_type=message_type,
                error=str(e),
                error_type=type(e).__name__,
            )

    async def _fetch_snapshot(self, room: CollaborationRoom) -> dict[str, Any]:
        try:
            snapshot = await asyncio.wait_for(
                self.snapshot_provider.get_snapshot(room.entity_type, room.entity_id),
                timeout=self.external_timeout_seconds,
            )
            return snapshot or {}
        except Exception as e:
            logger.warning(
                "Entity snapshot unavailable",
                room_id=room.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return {}

    async def _persist(self, update: RealtimeUpdate) -> None:
        try:
            await asyncio.wait_for(
                self.update_store.persist(update), timeout=self.external_timeout_seconds
            )
        except Exception as e:
            logger.error(
                "Failed to persist real-time update",
                room_id=update.room_id,
                version=update.version,
                error=str(e),
                error_type=type(e).__name__,
            )


# Global singleton
collaboration_manager = CollaborationSessionManager()
