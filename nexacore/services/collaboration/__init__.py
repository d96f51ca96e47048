"""Real-time collaboration: rooms, presence, versioned updates and advisory locks."""

from nexacore.services.collaboration.broadcast import BroadcastQueue
from nexacore.services.collaboration.providers import (
    InMemoryUpdateStore,
    SnapshotProvider,
    StaticSnapshotProvider,
    UpdateStore,
)
from nexacore.services.collaboration.room_registry import RoomRegistry
from nexacore.services.collaboration.session_manager import (
    CollaborationSessionManager,
    collaboration_manager,
)

__all__ = [
    "BroadcastQueue",
    "CollaborationSessionManager",
    "InMemoryUpdateStore",
    "RoomRegistry",
    "SnapshotProvider",
    "StaticSnapshotProvider",
    "UpdateStore",
    "collaboration_manager",
]
