"""Calendar scheduling: events, conflicts, slot search and iCalendar export."""

from nexacore.services.calendar.event_store import EventStore, InMemoryEventStore
from nexacore.services.calendar.ical import render_calendar
from nexacore.services.calendar.scheduling_service import CalendarService, calendar_service

__all__ = [
    "CalendarService",
    "EventStore",
    "InMemoryEventStore",
    "calendar_service",
    "render_calendar",
]
