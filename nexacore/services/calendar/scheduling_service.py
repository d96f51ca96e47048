"""
Calendar Scheduling Service for company calendars.
Handles event creation and lifecycle, conflict detection, slot search,
meeting suggestions, iCalendar export and calendar statistics.

Conflict detection is advisory: conflicts are returned to callers and
logged on create/update, but never block an event from being saved.
"""

import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo

import pydantic
from dateutil.relativedelta import relativedelta
from dateutil.rrule import rrulestr

from nexacore.config import settings
from nexacore.errors import InvalidTransitionError, NotFoundError, ValidationError
from nexacore.infrastructure.observability.logging import get_logger
from nexacore.models.api.calendar_request import (
    CreateEventRequest,
    ReminderRequest,
    UpdateEventRequest,
)
from nexacore.models.domain.calendar_domain import (
    VIEW_TYPES,
    CalendarAvailability,
    CalendarEvent,
    CalendarReminder,
    CalendarView,
    SchedulingConflict,
    ScheduleSlot,
    ensure_aware,
)
from nexacore.services.calendar.event_store import EventStore, InMemoryEventStore
from nexacore.services.calendar.ical import render_calendar

logger = get_logger(__name__)

MAX_RECURRING_INSTANCES = 500


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


def _parse(model: type[pydantic.BaseModel], data: Any) -> Any:
    """Validate input into a request model, converting pydantic errors to ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        message = "; ".join(
            f"{err['field']}: {err['message']}" if err["field"] else err["message"]
            for err in errors
        )
        raise ValidationError(message, context={"errors": errors}) from e


class CalendarService:
    """
    Scheduling engine over a company's events.

    Business hours, slot step and timezone are configuration; defaults
    come from settings (09:00-17:00, 30-minute steps, UTC).
    """

    def __init__(
        self,
        event_store: EventStore | None = None,
        business_start_hour: int | None = None,
        business_end_hour: int | None = None,
        slot_step_minutes: int | None = None,
        timezone: str | None = None,
        agenda_days: int | None = None,
        max_suggestions: int | None = None,
        recurrence_horizon_days: int | None = None,
        prodid: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        config = settings.get_calendar_config()

        self.event_store = event_store if event_store is not None else InMemoryEventStore()
        self.business_start_hour = (
            business_start_hour if business_start_hour is not None else config["business_start_hour"]
        )
        self.business_end_hour = (
            business_end_hour if business_end_hour is not None else config["business_end_hour"]
        )
        self.slot_step = timedelta(minutes=slot_step_minutes or config["slot_step_minutes"])
        self.tz = ZoneInfo(timezone or config["timezone"])
        self.agenda_days = agenda_days or config["agenda_days"]
        self.max_suggestions = max_suggestions or config["max_suggestions"]
        self.recurrence_horizon = timedelta(
            days=recurrence_horizon_days or config["recurrence_horizon_days"]
        )
        self.prodid = prodid or config["prodid"]
        self._clock = clock

        if not 0 <= self.business_start_hour < self.business_end_hour <= 24:
            raise ValueError("business hours must satisfy 0 <= start < end <= 24")

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def create_event(self, company_id: str, data: dict | CreateEventRequest) -> CalendarEvent:
        """
        Create a calendar event.

        Raises:
            ValidationError: missing title/start/end, end not after start,
                or an unparseable recurrence rule
        """
        request = _parse(CreateEventRequest, data)
        if request.recurrence_rule:
            self._parse_rrule(request.recurrence_rule, request.start_time)

        conflicts = await self.check_conflicts(
            company_id,
            request.start_time,
            request.end_time,
            attendee_ids=self._with_organizer(request.attendees, request.organizer_id),
            resource_ids=request.resource_ids,
        )
        if conflicts:
            logger.warning(
                "Scheduling conflicts detected",
                company_id=company_id,
                conflicts=len(conflicts),
                conflict_types=sorted({c.conflict_type for c in conflicts}),
            )

        now = self._clock()
        event = CalendarEvent(
            id=_new_id("evt"),
            title=request.title,
            description=request.description,
            start_time=request.start_time,
            end_time=request.end_time,
            location=request.location,
            event_type=request.event_type,
            status=request.status,
            priority=request.priority,
            company_id=company_id,
            organizer_id=request.organizer_id,
            attendees=list(request.attendees),
            resource_ids=list(request.resource_ids),
            recurrence_rule=request.recurrence_rule,
            metadata=dict(request.metadata),
            created_at=now,
            updated_at=now,
        )
        await self.event_store.save(event)

        if request.reminders:
            await self.set_reminders(event.id, request.reminders)

        if event.recurrence_rule:
            await self._generate_recurring_instances(event)

        logger.info(
            "Calendar event created",
            company_id=company_id,
            event_id=event.id,
            event_type=event.event_type,
            conflicts=len(conflicts),
        )
        return event

    async def get_event(self, company_id: str, event_id: str) -> CalendarEvent:
        event = await self.event_store.get(company_id, event_id)
        if event is None:
            raise NotFoundError("Event not found", context={"event_id": event_id})
        return event

    async def get_events(
        self,
        company_id: str,
        start_date: datetime,
        end_date: datetime,
        filters: dict | None = None,
    ) -> list[CalendarEvent]:
        """Events overlapping [start_date, end_date). Filters: event_type, status, organizer_id, resource_id, attendee_id."""
        return await self.event_store.list_events(
            company_id, ensure_aware(start_date), ensure_aware(end_date), filters
        )

    async def update_event(
        self, company_id: str, event_id: str, updates: dict | UpdateEventRequest
    ) -> CalendarEvent:
        """Apply a partial update, re-validating times and status changes."""
        event = await self.get_event(company_id, event_id)
        request = _parse(UpdateEventRequest, updates)
        changes = request.model_dump(exclude_unset=True)

        if event.is_terminal() and set(changes) - {"metadata"}:
            raise InvalidTransitionError(
                f"Event is {event.status} and can no longer change",
                context={"event_id": event_id, "status": event.status},
            )

        start_time = changes.get("start_time") or event.start_time
        end_time = changes.get("end_time") or event.end_time
        if end_time <= start_time:
            raise ValidationError("end_time must be after start_time")

        new_status = changes.pop("status", None)
        if new_status and new_status != event.status and not event.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Cannot move event from {event.status} to {new_status}",
                context={"event_id": event_id, "from": event.status, "to": new_status},
            )

        if "metadata" in changes:
            changes["metadata"] = {**event.metadata, **changes["metadata"]}
        if new_status:
            changes["status"] = new_status

        updated = replace(event, **changes, updated_at=self._clock())

        if {"start_time", "end_time", "attendees", "resource_ids"} & set(changes):
            conflicts = await self.check_conflicts(
                company_id,
                updated.start_time,
                updated.end_time,
                attendee_ids=sorted(updated.participants()),
                resource_ids=updated.resource_ids,
                exclude_event_id=event_id,
            )
            if conflicts:
                logger.warning(
                    "Scheduling conflicts detected on update",
                    company_id=company_id,
                    event_id=event_id,
                    conflicts=len(conflicts),
                )

        await self.event_store.save(updated)
        return updated

    async def transition_status(
        self, company_id: str, event_id: str, new_status: str
    ) -> CalendarEvent:
        """Move an event along scheduled -> in_progress -> completed (or cancelled)."""
        event = await self.get_event(company_id, event_id)
        if not event.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Cannot move event from {event.status} to {new_status}",
                context={"event_id": event_id, "from": event.status, "to": new_status},
            )

        updated = replace(event, status=new_status, updated_at=self._clock())
        await self.event_store.save(updated)
        logger.info(
            "Calendar event status changed",
            company_id=company_id,
            event_id=event_id,
            from_status=event.status,
            to_status=new_status,
        )
        return updated

    async def cancel_event(
        self, company_id: str, event_id: str, reason: str | None = None
    ) -> CalendarEvent:
        event = await self.transition_status(company_id, event_id, "cancelled")
        if reason:
            event.metadata["cancellation_reason"] = reason
            await self.event_store.save(event)
        return event

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def set_reminders(
        self, event_id: str, reminders: list[dict | ReminderRequest | CalendarReminder]
    ) -> list[CalendarReminder]:
        """Replace an event's reminders."""
        stored = []
        for reminder in reminders:
            if isinstance(reminder, CalendarReminder):
                stored.append(replace(reminder, event_id=event_id))
                continue
            request = _parse(ReminderRequest, reminder)
            stored.append(
                CalendarReminder(
                    id=_new_id("rem"),
                    event_id=event_id,
                    minutes_before=request.minutes_before,
                    reminder_type=request.reminder_type,
                )
            )

        await self.event_store.save_reminders(event_id, stored)
        return stored

    async def due_reminders(
        self, company_id: str, now: datetime | None = None
    ) -> list[tuple[CalendarReminder, CalendarEvent]]:
        """Unsent reminders whose trigger time has passed for events that have not started."""
        now = ensure_aware(now or self._clock())
        due = []
        for reminder in await self.event_store.list_reminders():
            if reminder.sent:
                continue
            event = await self.event_store.get(company_id, reminder.event_id)
            if event is None or not event.is_blocking():
                continue
            if reminder.trigger_time(event.start_time) <= now < event.start_time:
                due.append((reminder, event))
        return due

    async def mark_reminder_sent(
        self, event_id: str, reminder_id: str, sent_at: datetime | None = None
    ) -> CalendarReminder:
        reminders = await self.event_store.list_reminders(event_id)
        for index, reminder in enumerate(reminders):
            if reminder.id == reminder_id:
                reminders[index] = replace(reminder, sent=True, sent_at=sent_at or self._clock())
                await self.event_store.save_reminders(event_id, reminders)
                return reminders[index]
        raise NotFoundError("Reminder not found", context={"reminder_id": reminder_id})

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    async def get_calendar_view(
        self, company_id: str, view_type: str, day: date | datetime
    ) -> CalendarView:
        """Events for the day / week (Sunday start) / month / agenda around a date."""
        start_date, end_date = self.view_range(view_type, day)
        events = await self.get_events(company_id, start_date, end_date)
        return CalendarView(
            view_type=view_type, start_date=start_date, end_date=end_date, events=events
        )

    def view_range(self, view_type: str, day: date | datetime) -> tuple[datetime, datetime]:
        """Pure date-range derivation for a calendar view."""
        if view_type not in VIEW_TYPES:
            raise ValidationError(
                f"Invalid view type: {view_type}", context={"allowed": list(VIEW_TYPES)}
            )

        midnight = self._local_midnight(day)

        if view_type == "day":
            return midnight, self._add_days(midnight, 1)
        if view_type == "week":
            # Python weekdays start on Monday; calendar weeks start on Sunday
            week_start = self._add_days(midnight, -((midnight.weekday() + 1) % 7))
            return week_start, self._add_days(week_start, 7)
        if view_type == "month":
            month_start = midnight.replace(day=1)
            return month_start, month_start + relativedelta(months=1)
        return midnight, self._add_days(midnight, self.agenda_days)

    # ------------------------------------------------------------------
    # Conflicts and availability
    # ------------------------------------------------------------------

    async def check_conflicts(
        self,
        company_id: str,
        start_time: datetime,
        end_time: datetime,
        attendee_ids: list[str] | None = None,
        resource_ids: list[str] | None = None,
        exclude_event_id: str | None = None,
    ) -> list[SchedulingConflict]:
        """
        Find existing events clashing with [start_time, end_time).

        With attendees or resources given, only events sharing one of them
        conflict (one entry per shared attendee/resource). With neither,
        any overlapping event is a plain time conflict.
        """
        events = await self.get_events(company_id, start_time, end_time)
        return self._find_conflicts(
            events, start_time, end_time, attendee_ids, resource_ids, exclude_event_id
        )

    async def find_available_slots(
        self,
        company_id: str,
        start_date: datetime,
        end_date: datetime,
        duration_minutes: int,
        attendee_ids: list[str] | None = None,
        resource_ids: list[str] | None = None,
    ) -> list[ScheduleSlot]:
        """
        Enumerate candidate slots within business hours.

        Starts at the business-day opening on start_date and steps by the
        slot step until end_date. Only slots that start and end inside
        business hours on the same day are returned; each is available iff
        nothing conflicts with it.
        """
        if duration_minutes <= 0:
            raise ValidationError("duration_minutes must be positive")

        start_date = ensure_aware(start_date)
        end_date = ensure_aware(end_date)
        duration = timedelta(minutes=duration_minutes)

        first = self._local_midnight(start_date).replace(hour=self.business_start_hour)
        if first >= end_date:
            return []

        events = await self.get_events(company_id, first, end_date + duration)

        slots = []
        current = first
        while current < end_date:
            slot_end = self._wall_add(current, duration)

            if self._within_business_hours(current, slot_end):
                conflicts = self._find_conflicts(
                    events, current, slot_end, attendee_ids, resource_ids
                )
                slots.append(
                    ScheduleSlot(
                        start_time=current,
                        end_time=slot_end,
                        available=not conflicts,
                        reason=self._describe_conflicts(conflicts),
                    )
                )

            current = self._wall_add(current, self.slot_step)

        return slots

    async def get_attendee_availability(
        self,
        company_id: str,
        attendee_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> CalendarAvailability:
        """Busy blocks for one attendee and the free gaps between them."""
        start_date = ensure_aware(start_date)
        end_date = ensure_aware(end_date)
        events = await self.get_events(
            company_id, start_date, end_date, filters={"attendee_id": attendee_id}
        )
        busy = [
            {"start": event.start_time, "end": event.end_time}
            for event in events
            if event.is_blocking()
        ]
        return CalendarAvailability(start_time=start_date, end_time=end_date, busy_periods=busy)

    # ------------------------------------------------------------------
    # Meetings
    # ------------------------------------------------------------------

    async def suggest_meeting_times(
        self,
        company_id: str,
        attendee_ids: list[str],
        duration_minutes: int,
        start_date: datetime,
        end_date: datetime,
        preferred_times: list[tuple[int, int]] | None = None,
    ) -> list[datetime]:
        """
        Up to max_suggestions available start times, earliest first.

        preferred_times restricts results to slots starting at the given
        (hour, minute) pairs in the calendar timezone.
        """
        slots = await self.find_available_slots(
            company_id, start_date, end_date, duration_minutes, attendee_ids
        )

        candidates = [slot for slot in slots if slot.available]
        if preferred_times:
            wanted = {(int(hour), int(minute)) for hour, minute in preferred_times}
            candidates = [
                slot
                for slot in candidates
                if (slot.start_time.hour, slot.start_time.minute) in wanted
            ]

        return [slot.start_time for slot in candidates[: self.max_suggestions]]

    async def schedule_meeting_automatic(
        self,
        company_id: str,
        title: str,
        attendee_ids: list[str],
        duration_minutes: int,
        start_date: datetime,
        end_date: datetime,
        organizer_id: str,
    ) -> CalendarEvent | None:
        """Book the first suggested time, or return None when nothing fits."""
        suggestions = await self.suggest_meeting_times(
            company_id,
            self._with_organizer(attendee_ids, organizer_id),
            duration_minutes,
            start_date,
            end_date,
        )
        if not suggestions:
            logger.info(
                "No meeting slot available",
                company_id=company_id,
                attendees=len(attendee_ids),
                duration_minutes=duration_minutes,
            )
            return None

        start_time = suggestions[0]
        return await self.create_event(
            company_id,
            {
                "title": title,
                "start_time": start_time,
                "end_time": self._wall_add(start_time, timedelta(minutes=duration_minutes)),
                "event_type": "meeting",
                "attendees": list(attendee_ids),
                "organizer_id": organizer_id,
            },
        )

    # ------------------------------------------------------------------
    # Export and statistics
    # ------------------------------------------------------------------

    async def export_calendar(
        self, company_id: str, start_date: datetime, end_date: datetime
    ) -> str:
        """Serialize the company's events in range to iCalendar text."""
        events = await self.get_events(company_id, start_date, end_date)
        return render_calendar(events, prodid=self.prodid, now=self._clock())

    async def get_calendar_stats(
        self, company_id: str, start_date: datetime, end_date: datetime
    ) -> dict[str, Any]:
        events = await self.get_events(company_id, start_date, end_date)

        stats = {
            "total_events": len(events),
            "events_by_type": {},
            "events_by_status": {},
            "busy_hours": 0.0,
            "completion_rate": 0.0,
        }

        for event in events:
            stats["events_by_type"][event.event_type] = (
                stats["events_by_type"].get(event.event_type, 0) + 1
            )
            stats["events_by_status"][event.status] = (
                stats["events_by_status"].get(event.status, 0) + 1
            )
            stats["busy_hours"] += event.duration_hours()

        stats["busy_hours"] = round(stats["busy_hours"], 2)
        if events:
            completed = stats["events_by_status"].get("completed", 0)
            stats["completion_rate"] = round(completed / len(events), 4)

        return stats

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_conflicts(
        self,
        events: list[CalendarEvent],
        start_time: datetime,
        end_time: datetime,
        attendee_ids: list[str] | None = None,
        resource_ids: list[str] | None = None,
        exclude_event_id: str | None = None,
    ) -> list[SchedulingConflict]:
        attendees = set(attendee_ids or ())
        resources = set(resource_ids or ())
        conflicts = []

        for event in events:
            if event.id == exclude_event_id or not event.conflicts_with(start_time, end_time):
                continue

            if not attendees and not resources:
                conflicts.append(
                    SchedulingConflict(
                        event_id=exclude_event_id,
                        conflicting_event_id=event.id,
                        conflict_type="time",
                    )
                )
                continue

            for attendee_id in sorted(attendees & event.participants()):
                conflicts.append(
                    SchedulingConflict(
                        event_id=exclude_event_id,
                        conflicting_event_id=event.id,
                        conflict_type="attendee",
                        attendee_id=attendee_id,
                    )
                )
            for resource_id in sorted(resources & set(event.resource_ids)):
                conflicts.append(
                    SchedulingConflict(
                        event_id=exclude_event_id,
                        conflicting_event_id=event.id,
                        conflict_type="resource",
                        resource_id=resource_id,
                    )
                )

        return conflicts

    @staticmethod
    def _describe_conflicts(conflicts: list[SchedulingConflict]) -> str | None:
        if not conflicts:
            return None
        kinds = sorted({conflict.conflict_type for conflict in conflicts})
        return f"{len(conflicts)} {'/'.join(kinds)} conflict(s)"

    @staticmethod
    def _with_organizer(attendee_ids: list[str], organizer_id: str | None) -> list[str]:
        people = list(attendee_ids)
        if organizer_id and organizer_id not in people:
            people.append(organizer_id)
        return people

    def _within_business_hours(self, start: datetime, end: datetime) -> bool:
        if start.hour < self.business_start_hour or start.date() != end.date():
            return False
        if end.hour < self.business_end_hour:
            return True
        return end.hour == self.business_end_hour and end.minute == 0 and end.second == 0

    def _local_midnight(self, day: date | datetime) -> datetime:
        if isinstance(day, datetime):
            local_day = ensure_aware(day).astimezone(self.tz).date()
        else:
            local_day = day
        return datetime.combine(local_day, time.min, tzinfo=self.tz)

    def _add_days(self, value: datetime, days: int) -> datetime:
        """Calendar-day arithmetic in local wall time (DST-safe midnights)."""
        return datetime.combine(value.date() + timedelta(days=days), value.timetz())

    def _wall_add(self, value: datetime, delta: timedelta) -> datetime:
        """Add elapsed time and express the result in the calendar timezone."""
        return (value.astimezone(UTC) + delta).astimezone(self.tz)

    @staticmethod
    def _parse_rrule(rule: str, start_time: datetime):
        try:
            return rrulestr(rule, dtstart=start_time)
        except (ValueError, TypeError) as e:
            raise ValidationError(
                f"Invalid recurrence rule: {e}", context={"recurrence_rule": rule}
            ) from e

    async def _generate_recurring_instances(self, event: CalendarEvent) -> list[CalendarEvent]:
        """Materialize occurrences after the first, up to the recurrence horizon."""
        rule = self._parse_rrule(event.recurrence_rule, event.start_time)
        duration = event.end_time - event.start_time
        horizon_end = event.start_time + self.recurrence_horizon

        instances = []
        for occurrence in rule.between(event.start_time, horizon_end, inc=False):
            if len(instances) >= MAX_RECURRING_INSTANCES:
                logger.warning(
                    "Recurring instance cap reached",
                    event_id=event.id,
                    cap=MAX_RECURRING_INSTANCES,
                )
                break
            instance = replace(
                event,
                id=_new_id("evt"),
                start_time=occurrence,
                end_time=occurrence + duration,
                recurrence_rule=None,
                attendees=list(event.attendees),
                resource_ids=list(event.resource_ids),
                metadata={**event.metadata, "parent_event_id": event.id},
            )
            await self.event_store.save(instance)
            instances.append(instance)

        logger.info(
            "Recurring instances generated", event_id=event.id, instances=len(instances)
        )
        return instances


# Global singleton
calendar_service = CalendarService()
