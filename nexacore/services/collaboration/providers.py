"""
External collaborators of the session manager.

SnapshotProvider: current state of the entity a user is about to co-edit.
UpdateStore: append-only history of accepted updates.

The in-memory implementations back tests and single-process deployments;
the ERP wires database-backed versions behind the same methods.
"""

from typing import Any, Protocol

from nexacore.models.domain.collaboration_domain import RealtimeUpdate


class SnapshotProvider(Protocol):
    async def get_snapshot(self, entity_type: str, entity_id: str) -> dict[str, Any]: ...


class UpdateStore(Protocol):
    async def persist(self, update: RealtimeUpdate) -> None: ...

    async def history(
        self, entity_type: str, entity_id: str, limit: int = 50
    ) -> list[RealtimeUpdate]: ...

    async def count(self) -> int: ...


class StaticSnapshotProvider:
    """Serves snapshots from a dict keyed by (entity_type, entity_id)."""

    def __init__(self, records: dict[tuple[str, str], dict[str, Any]] | None = None):
        self.records = records or {}

    def put(self, entity_type: str, entity_id: str, record: dict[str, Any]) -> None:
        self.records[(entity_type, entity_id)] = record

    async def get_snapshot(self, entity_type: str, entity_id: str) -> dict[str, Any]:
        record = self.records.get((entity_type, entity_id))
        if record is not None:
            return dict(record)

        # Dashboard/report snapshots are view definitions, not rows
        if entity_type in ("dashboard", "report"):
            return {"type": entity_type, "id": entity_id}

        return {}


class InMemoryUpdateStore:
    def __init__(self):
        self._updates: list[RealtimeUpdate] = []

    async def persist(self, update: RealtimeUpdate) -> None:
        self._updates.append(update)

    async def history(
        self, entity_type: str, entity_id: str, limit: int = 50
    ) -> list[RealtimeUpdate]:
        """Newest first."""
        matching = [
            update
            for update in self._updates
            if update.entity_type == entity_type and update.entity_id == entity_id
        ]
        matching.sort(key=lambda update: (update.created_at, update.version), reverse=True)
        return matching[:limit]

    async def count(self) -> int:
        return len(self._updates)
