"""
Collaboration Domain Models
Rooms, presence and versioned updates for real-time co-editing of ERP entities.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

ENTITY_TYPES = ("invoice", "sale", "product", "client", "dashboard", "report")
CHANGE_TYPES = ("create", "update", "delete", "comment")
MESSAGE_TYPES = (
    "join",
    "leave",
    "update",
    "sync",
    "cursor",
    "presence",
    "notification",
    "heartbeat",
)

SYSTEM_USER_ID = "system"


def room_id_for(entity_type: str, entity_id: str) -> str:
    """Rooms are keyed deterministically by the entity they edit."""
    return f"{entity_type}:{entity_id}"


@dataclass(slots=True)
class Cursor:
    x: float
    y: float
    field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"x": self.x, "y": self.y, "field": self.field}


@dataclass(slots=True)
class CollaborationUser:
    """A user's presence in one room. Owned by that room."""

    user_id: str
    user_name: str
    user_email: str
    joined_at: datetime
    last_seen: datetime
    client_id: str
    cursor: Cursor | None = None
    is_typing: bool = False

    def idle_seconds(self, now: datetime) -> float:
        return (now - self.last_seen).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_name": self.user_name,
            "user_email": self.user_email,
            "joined_at": self.joined_at.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "client_id": self.client_id,
            "cursor": self.cursor.to_dict() if self.cursor else None,
            "is_typing": self.is_typing,
        }


@dataclass(slots=True)
class CollaborationRoom:
    """
    One live editing session for one entity.

    company_id is fixed at creation; version only moves forward; at most
    one user holds the lock; active_users never lists a user twice.
    """

    id: str
    entity_type: str
    entity_id: str
    company_id: str
    last_activity: datetime
    active_users: list[CollaborationUser] = field(default_factory=list)
    version: int = 0
    locked: bool = False
    locked_by: str | None = None

    def find_user(self, user_id: str) -> CollaborationUser | None:
        for user in self.active_users:
            if user.user_id == user_id:
                return user
        return None

    def remove_user(self, user_id: str) -> CollaborationUser | None:
        user = self.find_user(user_id)
        if user is not None:
            self.active_users.remove(user)
        return user

    def is_empty(self) -> bool:
        return not self.active_users

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "company_id": self.company_id,
            "active_users": [user.to_dict() for user in self.active_users],
            "last_activity": self.last_activity.isoformat(),
            "version": self.version,
            "locked": self.locked,
            "locked_by": self.locked_by,
        }


@dataclass(frozen=True, slots=True)
class RealtimeUpdate:
    """Append-only, versioned change record. version is assigned by the room."""

    id: str
    room_id: str
    entity_type: str
    entity_id: str
    user_id: str
    change_type: str
    created_at: datetime
    version: int
    field_name: str | None = None
    old_value: Any = None
    new_value: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "user_id": self.user_id,
            "change_type": self.change_type,
            "field_name": self.field_name,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "created_at": self.created_at.isoformat(),
            "version": self.version,
        }


@dataclass(slots=True)
class CollaborationMessage:
    """Envelope exchanged with the transport layer."""

    type: str
    room_id: str
    user_id: str
    company_id: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None
    client_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "room_id": self.room_id,
            "user_id": self.user_id,
            "company_id": self.company_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "client_id": self.client_id,
        }
