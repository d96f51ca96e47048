"""
iCalendar (RFC 5545) export.

Lines are CRLF-separated and folded at 75 octets; timestamps are UTC in
YYYYMMDDTHHMMSSZ form. Stored occurrences of a recurring event are left out
when their parent is exported, since clients expand the parent's RRULE.
"""

from collections.abc import Iterable
from datetime import UTC, datetime

from nexacore.models.domain.calendar_domain import CalendarEvent, ensure_aware

ICAL_PRIORITY = {"urgent": "1", "high": "3", "medium": "5", "low": "9"}
CRLF = "\r\n"
MAX_LINE_OCTETS = 75


def to_ical_date(value: datetime) -> str:
    return ensure_aware(value).astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def priority_to_ical(priority: str) -> str:
    return ICAL_PRIORITY.get(priority, "5")


def fold_line(line: str) -> str:
    """Fold a content line at 75 octets without splitting a UTF-8 character."""
    if len(line.encode("utf-8")) <= MAX_LINE_OCTETS:
        return line

    parts = []
    current = ""
    size = 0
    limit = MAX_LINE_OCTETS
    for char in line:
        width = len(char.encode("utf-8"))
        if size + width > limit:
            parts.append(current)
            # Continuation lines start with a space, which counts toward the limit
            current, size, limit = "", 0, MAX_LINE_OCTETS - 1
        current += char
        size += width
    parts.append(current)
    return (CRLF + " ").join(parts)


def escape_text(value: str) -> str:
    """Escape TEXT property values."""
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def _event_lines(event: CalendarEvent, stamp: str) -> list[str]:
    lines = [
        "BEGIN:VEVENT",
        f"UID:{event.id}",
        f"DTSTAMP:{stamp}",
        f"DTSTART:{to_ical_date(event.start_time)}",
        f"DTEND:{to_ical_date(event.end_time)}",
        f"SUMMARY:{escape_text(event.title)}",
    ]
    if event.description:
        lines.append(f"DESCRIPTION:{escape_text(event.description)}")
    if event.location:
        lines.append(f"LOCATION:{escape_text(event.location)}")
    if event.recurrence_rule:
        rule = event.recurrence_rule.strip()
        lines.append(rule if rule.upper().startswith("RRULE:") else f"RRULE:{rule}")
    lines.append(f"STATUS:{event.status.upper()}")
    lines.append(f"PRIORITY:{priority_to_ical(event.priority)}")
    lines.append("END:VEVENT")
    return lines


def render_calendar(
    events: Iterable[CalendarEvent],
    prodid: str,
    now: datetime | None = None,
) -> str:
    """Serialize events into one VCALENDAR document."""
    stamp = to_ical_date(now or datetime.now(UTC))
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{prodid}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
    ]
    events = list(events)
    exported_ids = {event.id for event in events}
    for event in events:
        if event.metadata.get("parent_event_id") in exported_ids:
            continue
        lines.extend(_event_lines(event, stamp))
    lines.append("END:VCALENDAR")
    return CRLF.join(fold_line(line) for line in lines)
