from datetime import UTC, datetime

import pytest

from nexacore.models.domain.calendar_domain import CalendarEvent
from nexacore.services.calendar.ical import escape_text, fold_line, render_calendar, to_ical_date


def _event(**overrides):
    values = {
        "id": "evt_1",
        "title": "Standup",
        "start_time": datetime(2024, 1, 15, 9, 0, tzinfo=UTC),
        "end_time": datetime(2024, 1, 15, 9, 30, tzinfo=UTC),
        "company_id": "c1",
    }
    values.update(overrides)
    return CalendarEvent(**values)


def test_empty_calendar_shape():
    text = render_calendar([], prodid="-//NexaGestion//Calendar//EN")

    assert text.split("\r\n") == [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//NexaGestion//Calendar//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "END:VCALENDAR",
    ]


def test_event_block():
    now = datetime(2024, 1, 10, 12, 0, tzinfo=UTC)
    text = render_calendar([_event(priority="urgent")], prodid="-//X//EN", now=now)
    lines = text.split("\r\n")

    assert text.startswith("BEGIN:VCALENDAR\r\n")
    assert text.endswith("END:VCALENDAR")
    assert "\n" not in text.replace("\r\n", "")
    start = lines.index("BEGIN:VEVENT")
    assert lines[start : lines.index("END:VEVENT") + 1] == [
        "BEGIN:VEVENT",
        "UID:evt_1",
        "DTSTAMP:20240110T120000Z",
        "DTSTART:20240115T090000Z",
        "DTEND:20240115T093000Z",
        "SUMMARY:Standup",
        "STATUS:SCHEDULED",
        "PRIORITY:1",
        "END:VEVENT",
    ]


def test_optional_properties_and_escaping():
    event = _event(
        title="Plan; Q1, review",
        description="Line one\nLine two",
        location="Room A",
        recurrence_rule="FREQ=WEEKLY;BYDAY=MO",
    )

    lines = render_calendar([event], prodid="-//X//EN").split("\r\n")

    assert r"SUMMARY:Plan\; Q1\, review" in lines
    assert r"DESCRIPTION:Line one\nLine two" in lines
    assert "LOCATION:Room A" in lines
    assert "RRULE:FREQ=WEEKLY;BYDAY=MO" in lines


@pytest.mark.parametrize(
    "value,expected",
    [
        (datetime(2024, 1, 15, 9, 0, tzinfo=UTC), "20240115T090000Z"),
        (datetime(2024, 1, 15, 9, 0), "20240115T090000Z"),
    ],
)
def test_to_ical_date(value, expected):
    assert to_ical_date(value) == expected


def test_escape_backslash_first():
    assert escape_text(r"a\b;c") == r"a\\b\;c"


@pytest.mark.asyncio
async def test_export_calendar_uses_company_events(calendar):
    await calendar.create_event(
        "c1",
        {
            "title": "Standup",
            "start_time": datetime(2024, 1, 15, 9, 0, tzinfo=UTC),
            "end_time": datetime(2024, 1, 15, 9, 30, tzinfo=UTC),
            "priority": "low",
        },
    )
    await calendar.create_event(
        "c2",
        {
            "title": "Other tenant",
            "start_time": datetime(2024, 1, 15, 9, 0, tzinfo=UTC),
            "end_time": datetime(2024, 1, 15, 9, 30, tzinfo=UTC),
        },
    )

    text = await calendar.export_calendar(
        "c1", datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 2, 1, tzinfo=UTC)
    )

    assert text.count("BEGIN:VEVENT") == 1
    assert "PRODID:-//NexaGestion//Calendar//EN" in text
    assert "PRIORITY:9" in text
    assert "DTSTAMP:20240115T080000Z" in text


@pytest.mark.asyncio
async def test_recurring_series_exported_once(calendar):
    await calendar.create_event(
        "c1",
        {
            "title": "Daily sync",
            "start_time": datetime(2024, 1, 15, 9, 0, tzinfo=UTC),
            "end_time": datetime(2024, 1, 15, 9, 15, tzinfo=UTC),
            "recurrence_rule": "FREQ=DAILY;COUNT=3",
        },
    )

    whole = await calendar.export_calendar(
        "c1", datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 2, 1, tzinfo=UTC)
    )
    assert whole.count("BEGIN:VEVENT") == 1
    assert whole.count("RRULE:") == 1

    # Parent outside the range: the stored occurrences stand on their own
    tail = await calendar.export_calendar(
        "c1", datetime(2024, 1, 16, tzinfo=UTC), datetime(2024, 2, 1, tzinfo=UTC)
    )
    assert tail.count("BEGIN:VEVENT") == 2
    assert "RRULE:" not in tail


def test_long_lines_are_folded():
    title = "Quarterly planning " * 12 + "with café ünïcode"
    text = render_calendar([_event(title=title)], prodid="-//X//EN")

    physical = text.split("\r\n")
    assert all(len(line.encode("utf-8")) <= 75 for line in physical)
    assert any(line.startswith(" ") for line in physical)
    unfolded = text.replace("\r\n ", "").split("\r\n")
    assert f"SUMMARY:{title}" in unfolded


def test_fold_line_keeps_multibyte_characters_whole():
    line = "DESCRIPTION:" + "é" * 60

    folded = fold_line(line)

    for part in folded.split("\r\n"):
        assert len(part.encode("utf-8")) <= 75
        part.encode("utf-8").decode("utf-8")
    assert folded.replace("\r\n ", "") == line
    assert fold_line("SUMMARY:short") == "SUMMARY:short"
