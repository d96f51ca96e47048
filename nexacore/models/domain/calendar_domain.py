# nexacore/models/domain/calendar_domain.py
"""
Calendar Domain Models
Domain models for company calendars, scheduling and availability.
Used by the scheduling service for internal processing and business rules.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

EVENT_TYPES = ("meeting", "task", "deadline", "appointment", "reminder", "event")
EVENT_STATUSES = ("scheduled", "in_progress", "completed", "cancelled")
PRIORITIES = ("low", "medium", "high", "urgent")
VIEW_TYPES = ("day", "week", "month", "agenda")
REMINDER_TYPES = ("email", "notification", "sms")
CONFLICT_TYPES = ("time", "resource", "attendee")

# scheduled -> in_progress -> completed, with cancellation from either live state
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "scheduled": frozenset({"in_progress", "cancelled"}),
    "in_progress": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass(slots=True)
class CalendarEvent:
    """Domain model for company calendar events with business logic."""

    id: str
    title: str
    start_time: datetime
    end_time: datetime
    company_id: str
    organizer_id: str = ""
    description: str | None = None
    location: str | None = None
    event_type: str = "event"
    status: str = "scheduled"
    priority: str = "medium"
    attendees: list[str] = field(default_factory=list)
    resource_ids: list[str] = field(default_factory=list)
    recurrence_rule: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def duration_minutes(self) -> int:
        """Get event duration in minutes."""
        delta = self.end_time - self.start_time
        return int(delta.total_seconds() / 60)

    def duration_hours(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / 3600

    def is_blocking(self) -> bool:
        """Cancelled events free their slot; everything else occupies it."""
        return self.status != "cancelled"

    def is_terminal(self) -> bool:
        return not STATUS_TRANSITIONS[self.status]

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in STATUS_TRANSITIONS.get(self.status, frozenset())

    def participants(self) -> set[str]:
        """Attendees plus the organizer."""
        people = set(self.attendees)
        if self.organizer_id:
            people.add(self.organizer_id)
        return people

    def conflicts_with(self, other_start: datetime, other_end: datetime) -> bool:
        """Check if this event overlaps another time period (half-open intervals)."""
        if not self.is_blocking():
            return False

        start_time = ensure_aware(self.start_time)
        end_time = ensure_aware(self.end_time)

        # Events conflict if one starts before the other ends
        return start_time < ensure_aware(other_end) and end_time > ensure_aware(other_start)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "location": self.location,
            "event_type": self.event_type,
            "status": self.status,
            "priority": self.priority,
            "company_id": self.company_id,
            "organizer_id": self.organizer_id,
            "attendees": list(self.attendees),
            "resource_ids": list(self.resource_ids),
            "recurrence_rule": self.recurrence_rule,
            "metadata": dict(self.metadata),
            "duration_minutes": self.duration_minutes(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(slots=True)
class CalendarReminder:
    id: str
    event_id: str
    minutes_before: int
    reminder_type: str = "notification"
    sent: bool = False
    sent_at: datetime | None = None

    def trigger_time(self, event_start: datetime) -> datetime:
        return event_start - timedelta(minutes=self.minutes_before)


@dataclass(slots=True)
class SchedulingConflict:
    """One reason a time window clashes with an existing event."""

    conflicting_event_id: str
    conflict_type: str
    event_id: str | None = None
    attendee_id: str | None = None
    resource_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "conflicting_event_id": self.conflicting_event_id,
            "conflict_type": self.conflict_type,
            "attendee_id": self.attendee_id,
            "resource_id": self.resource_id,
        }


@dataclass(slots=True)
class ScheduleSlot:
    """Derived candidate window; never persisted."""

    start_time: datetime
    end_time: datetime
    available: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "available": self.available,
            "reason": self.reason,
        }


@dataclass(slots=True)
class CalendarView:
    view_type: str
    start_date: datetime
    end_date: datetime
    events: list[CalendarEvent] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "view_type": self.view_type,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "events": [event.to_dict() for event in self.events],
        }


class CalendarAvailability:
    """Domain model for one person's availability over a range."""

    def __init__(
        self,
        start_time: datetime,
        end_time: datetime,
        busy_periods: list[dict[str, datetime]],
    ):
        self.start_time = start_time
        self.end_time = end_time
        self.busy_periods = busy_periods

    @property
    def is_free(self) -> bool:
        return not self.get_busy_blocks()

    def get_busy_blocks(self) -> list[dict[str, datetime]]:
        """Busy periods clipped to the range, sorted and merged where they touch or overlap."""
        clipped = []
        for period in self.busy_periods:
            start = max(period["start"], self.start_time)
            end = min(period["end"], self.end_time)
            if start < end:
                clipped.append({"start": start, "end": end})

        clipped.sort(key=lambda p: p["start"])

        merged: list[dict[str, datetime]] = []
        for period in clipped:
            if merged and period["start"] <= merged[-1]["end"]:
                merged[-1]["end"] = max(merged[-1]["end"], period["end"])
            else:
                merged.append(dict(period))
        return merged

    def get_free_periods(self) -> list[dict[str, datetime]]:
        """Calculate free time periods within the checked range."""
        free_periods = []
        current_time = self.start_time

        for busy_period in self.get_busy_blocks():
            # Add free period before this busy period
            if current_time < busy_period["start"]:
                free_periods.append({"start": current_time, "end": busy_period["start"]})

            # Move current time to end of busy period
            current_time = max(current_time, busy_period["end"])

        # Add final free period if any time remains
        if current_time < self.end_time:
            free_periods.append({"start": current_time, "end": self.end_time})

        return free_periods

    def get_largest_free_block_minutes(self) -> int:
        """Get the largest continuous free time block in minutes."""
        durations = [
            int((period["end"] - period["start"]).total_seconds() / 60)
            for period in self.get_free_periods()
        ]
        return max(durations, default=0)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "is_free": self.is_free,
            "busy_blocks": [
                {"start": p["start"].isoformat(), "end": p["end"].isoformat()}
                for p in self.get_busy_blocks()
            ],
            "available_blocks": [
                {"start": p["start"].isoformat(), "end": p["end"].isoformat()}
                for p in self.get_free_periods()
            ],
            "largest_free_block_minutes": self.get_largest_free_block_minutes(),
        }
