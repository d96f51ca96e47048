"""
Event store boundary for the scheduling engine.

The ERP keeps events in its relational database; the engine only needs
these reads and writes. InMemoryEventStore backs tests and demos.
"""

from datetime import datetime
from typing import Protocol

from nexacore.models.domain.calendar_domain import CalendarEvent, CalendarReminder


class EventStore(Protocol):
    async def save(self, event: CalendarEvent) -> None: ...

    async def get(self, company_id: str, event_id: str) -> CalendarEvent | None: ...

    async def list_events(
        self,
        company_id: str,
        start: datetime,
        end: datetime,
        filters: dict | None = None,
    ) -> list[CalendarEvent]: ...

    async def save_reminders(self, event_id: str, reminders: list[CalendarReminder]) -> None: ...

    async def list_reminders(self, event_id: str | None = None) -> list[CalendarReminder]: ...


def _matches(event: CalendarEvent, filters: dict) -> bool:
    if filters.get("event_type") and event.event_type != filters["event_type"]:
        return False
    if filters.get("status") and event.status != filters["status"]:
        return False
    if filters.get("organizer_id") and event.organizer_id != filters["organizer_id"]:
        return False
    if filters.get("resource_id") and filters["resource_id"] not in event.resource_ids:
        return False
    if filters.get("attendee_id") and filters["attendee_id"] not in event.participants():
        return False
    return True


class InMemoryEventStore:
    def __init__(self):
        self._events: dict[str, CalendarEvent] = {}
        self._reminders: dict[str, list[CalendarReminder]] = {}

    async def save(self, event: CalendarEvent) -> None:
        self._events[event.id] = event

    async def get(self, company_id: str, event_id: str) -> CalendarEvent | None:
        event = self._events.get(event_id)
        if event is None or event.company_id != company_id:
            return None
        return event

    async def list_events(
        self,
        company_id: str,
        start: datetime,
        end: datetime,
        filters: dict | None = None,
    ) -> list[CalendarEvent]:
        """Events of the company overlapping [start, end), ordered by start time."""
        filters = filters or {}
        events = [
            event
            for event in self._events.values()
            if event.company_id == company_id
            and event.start_time < end
            and event.end_time > start
            and _matches(event, filters)
        ]
        return sorted(events, key=lambda event: (event.start_time, event.id))

    async def save_reminders(self, event_id: str, reminders: list[CalendarReminder]) -> None:
        self._reminders[event_id] = list(reminders)

    async def list_reminders(self, event_id: str | None = None) -> list[CalendarReminder]:
        if event_id is not None:
            return list(self._reminders.get(event_id, []))
        return [reminder for reminders in self._reminders.values() for reminder in reminders]
