# nexacore/models/api/calendar_request.py
"""
Calendar input models.
Used by the scheduling service to validate event data from any caller.
"""

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

EventType = Literal["meeting", "task", "deadline", "appointment", "reminder", "event"]
EventStatus = Literal["scheduled", "in_progress", "completed", "cancelled"]
Priority = Literal["low", "medium", "high", "urgent"]
ReminderType = Literal["email", "notification", "sms"]

CLEARABLE_FIELDS = frozenset({"description", "location"})


def _as_utc_aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _clean_title(value: str) -> str:
    if not value.strip():
        raise ValueError("title must not be blank")
    return value.strip()


class ReminderRequest(BaseModel):
    """A reminder attached to an event."""

    minutes_before: int = Field(..., ge=0, le=60 * 24 * 30, description="Minutes before start")
    reminder_type: ReminderType = Field(default="notification")


class CreateEventRequest(BaseModel):
    """Request for creating a calendar event."""

    title: str = Field(..., min_length=1, max_length=200, description="Event title")
    start_time: datetime = Field(..., description="Event start time")
    end_time: datetime = Field(..., description="Event end time")
    description: str | None = Field(default=None, max_length=5000)
    location: str | None = Field(default=None, max_length=500)
    event_type: EventType = "event"
    status: EventStatus = "scheduled"
    priority: Priority = "medium"
    organizer_id: str = ""
    attendees: list[str] = Field(default_factory=list, description="Attendee user IDs")
    resource_ids: list[str] = Field(default_factory=list, description="Rooms, equipment, staff")
    recurrence_rule: str | None = Field(default=None, description="iCalendar RRULE")
    reminders: list[ReminderRequest] = Field(default_factory=list)
    metadata: dict = Field(default_factory=dict)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str) -> str:
        return _clean_title(value)

    @field_validator("start_time", "end_time")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return _as_utc_aware(value)

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class UpdateEventRequest(BaseModel):
    """
    Request for updating a calendar event. Only provided fields change.

    An explicit null clears description or location; other fields reject it.
    """

    title: str | None = Field(None, min_length=1, max_length=200)
    start_time: datetime | None = None
    end_time: datetime | None = None
    description: str | None = Field(None, max_length=5000)
    location: str | None = Field(None, max_length=500)
    event_type: EventType | None = None
    status: EventStatus | None = None
    priority: Priority | None = None
    attendees: list[str] | None = None
    resource_ids: list[str] | None = None
    metadata: dict | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc_aware(value)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value: str | None) -> str | None:
        return value if value is None else _clean_title(value)

    @model_validator(mode="after")
    def only_clearable_fields_null(self):
        cleared = sorted(
            name
            for name in self.model_fields_set - CLEARABLE_FIELDS
            if getattr(self, name) is None
        )
        if cleared:
            raise ValueError(f"cannot clear required fields: {', '.join(cleared)}")
        return self
