import asyncio

import pytest

from nexacore.models.domain.collaboration_domain import CollaborationMessage
from nexacore.services.collaboration import BroadcastQueue, broadcast


def _message(room_id="invoice:1", type_="update"):
    return CollaborationMessage(type=type_, room_id=room_id, user_id="u", company_id="c1")


def test_drops_oldest_when_full():
    queue = BroadcastQueue(max_size=2)
    first, second, third = _message(), _message(), _message()

    for message in (first, second, third):
        queue.publish("invoice:1", message)

    assert queue.pending() == 2
    assert queue.dropped == 1
    assert queue.drain() == [second, third]


def test_drain_by_room_keeps_others():
    queue = BroadcastQueue()
    queue.publish("a", _message("a"))
    queue.publish("b", _message("b"))
    queue.publish("a", _message("a", "cursor"))

    drained = queue.drain("a")

    assert [m.type for m in drained] == ["update", "cursor"]
    assert queue.pending() == 1


def test_subscriber_errors_are_swallowed():
    queue = BroadcastQueue()
    received = []

    def broken(room_id, message):
        raise RuntimeError("socket closed")

    queue.subscribe(broken)
    queue.subscribe(lambda room_id, message: received.append(room_id))

    queue.publish("a", _message("a"))

    assert received == ["a"]
    assert queue.pending() == 1


def test_unsubscribe():
    queue = BroadcastQueue()
    received = []

    def callback(room_id, message):
        received.append(room_id)

    queue.subscribe(callback)
    queue.unsubscribe(callback)
    queue.publish("a", _message("a"))

    assert received == []


@pytest.mark.asyncio
async def test_async_subscriber_is_fire_and_forget():
    queue = BroadcastQueue()
    delivered = asyncio.Event()

    async def fanout(room_id, message):
        delivered.set()

    async def failing(room_id, message):
        raise RuntimeError("peer gone")

    queue.subscribe(fanout)
    queue.subscribe(failing)
    queue.publish("a", _message("a"))

    await asyncio.wait_for(delivered.wait(), timeout=1)
    await asyncio.sleep(0)


class RecordingLogger:
    def __init__(self):
        self.warnings = []

    def warning(self, event, **kwargs):
        self.warnings.append((event, kwargs))


def test_queue_full_warning_once_per_burst(monkeypatch):
    recorder = RecordingLogger()
    monkeypatch.setattr(broadcast, "logger", recorder)
    queue = BroadcastQueue(max_size=2)

    for _ in range(10):
        queue.publish("invoice:1", _message())

    assert queue.dropped == 8
    assert len(recorder.warnings) == 1
    assert recorder.warnings[0][1]["dropped_total"] == 1

    queue.drain("invoice:1")
    for _ in range(3):
        queue.publish("invoice:1", _message())

    assert queue.dropped == 9
    assert len(recorder.warnings) == 2
