from datetime import UTC, datetime

import pytest

from nexacore.models.domain.calendar_domain import (
    STATUS_TRANSITIONS,
    CalendarAvailability,
    CalendarEvent,
    CalendarReminder,
)


def _event(status="scheduled", start=9, end=10):
    return CalendarEvent(
        id="evt_1",
        title="Review",
        start_time=datetime(2024, 1, 15, start, tzinfo=UTC),
        end_time=datetime(2024, 1, 15, end, tzinfo=UTC),
        company_id="c1",
        organizer_id="olga",
        attendees=["alice"],
        status=status,
    )


def test_half_open_overlap():
    event = _event()

    assert event.conflicts_with(datetime(2024, 1, 15, 9, 30, tzinfo=UTC), datetime(2024, 1, 15, 11, tzinfo=UTC))
    assert not event.conflicts_with(datetime(2024, 1, 15, 10, tzinfo=UTC), datetime(2024, 1, 15, 11, tzinfo=UTC))
    assert not event.conflicts_with(datetime(2024, 1, 15, 8, tzinfo=UTC), datetime(2024, 1, 15, 9, tzinfo=UTC))


def test_cancelled_event_does_not_block():
    event = _event(status="cancelled")

    assert not event.is_blocking()
    assert not event.conflicts_with(event.start_time, event.end_time)


@pytest.mark.parametrize(
    "status,allowed",
    [
        ("scheduled", {"in_progress", "cancelled"}),
        ("in_progress", {"completed", "cancelled"}),
        ("completed", set()),
        ("cancelled", set()),
    ],
)
def test_status_transitions(status, allowed):
    assert set(STATUS_TRANSITIONS[status]) == allowed
    event = _event(status=status)
    assert event.is_terminal() == (not allowed)
    for target in allowed:
        assert event.can_transition_to(target)


def test_participants_include_organizer():
    assert _event().participants() == {"olga", "alice"}


def test_to_dict_includes_duration():
    data = _event(end=11).to_dict()

    assert data["duration_minutes"] == 120
    assert data["start_time"] == "2024-01-15T09:00:00+00:00"


def test_reminder_trigger_time():
    reminder = CalendarReminder(id="rem_1", event_id="evt_1", minutes_before=30)

    assert reminder.trigger_time(datetime(2024, 1, 15, 9, tzinfo=UTC)) == datetime(
        2024, 1, 15, 8, 30, tzinfo=UTC
    )


def test_availability_clips_to_range():
    availability = CalendarAvailability(
        start_time=datetime(2024, 1, 15, 9, tzinfo=UTC),
        end_time=datetime(2024, 1, 15, 17, tzinfo=UTC),
        busy_periods=[
            {"start": datetime(2024, 1, 15, 8, tzinfo=UTC), "end": datetime(2024, 1, 15, 10, tzinfo=UTC)},
            {"start": datetime(2024, 1, 15, 18, tzinfo=UTC), "end": datetime(2024, 1, 15, 19, tzinfo=UTC)},
        ],
    )

    assert availability.get_busy_blocks() == [
        {"start": datetime(2024, 1, 15, 9, tzinfo=UTC), "end": datetime(2024, 1, 15, 10, tzinfo=UTC)}
    ]
    assert availability.get_free_periods() == [
        {"start": datetime(2024, 1, 15, 10, tzinfo=UTC), "end": datetime(2024, 1, 15, 17, tzinfo=UTC)}
    ]
