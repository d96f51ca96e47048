from datetime import UTC, datetime, timedelta

import pytest

from nexacore.services.calendar import CalendarService, InMemoryEventStore
from nexacore.services.collaboration import (
    BroadcastQueue,
    CollaborationSessionManager,
    InMemoryUpdateStore,
    RoomRegistry,
    StaticSnapshotProvider,
)


class FakeClock:
    """Epoch-millisecond clock advanced by hand."""

    def __init__(self, start_ms: float = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeDatetimeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 15, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeRedis:
    """Evaluates the limiter's INCR/PEXPIRE script against a dict."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.counters: dict[str, tuple[int, float]] = {}
        self.calls: list[tuple] = []

    async def eval(self, script: str, numkeys: int, key: str, window_ms: int):
        self.calls.append((numkeys, key, window_ms))
        now = self.clock()
        count, expires_at = self.counters.get(key, (0, 0))
        if now >= expires_at:
            count, expires_at = 0, 0
        count += 1
        if count == 1:
            expires_at = now + window_ms
        self.counters[key] = (count, expires_at)
        return [count, int(expires_at - now)]


class BrokenRedis:
    async def eval(self, *args, **kwargs):
        raise ConnectionError("redis down")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def dt_clock():
    return FakeDatetimeClock()


@pytest.fixture
def fake_redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def broken_redis():
    return BrokenRedis()


@pytest.fixture
def snapshot_provider():
    provider = StaticSnapshotProvider()
    provider.put("invoice", "inv_1", {"id": "inv_1", "amount": 100})
    return provider


@pytest.fixture
def update_store():
    return InMemoryUpdateStore()


@pytest.fixture
def broadcaster():
    return BroadcastQueue(max_size=100)


@pytest.fixture
def manager(dt_clock, broadcaster, snapshot_provider, update_store):
    return CollaborationSessionManager(
        registry=RoomRegistry(clock=dt_clock),
        broadcaster=broadcaster,
        snapshot_provider=snapshot_provider,
        update_store=update_store,
        max_room_size=3,
        inactivity_timeout_seconds=300,
        enforce_locks=False,
        external_timeout_seconds=1.0,
        clock=dt_clock,
    )


@pytest.fixture
def join(manager):
    """Join helper filling in profile fields."""

    async def _join(room_id: str, user_id: str, company_id: str = "c1", client_id: str | None = None):
        return await manager.join_room(
            room_id,
            user_id,
            user_name=user_id.title(),
            user_email=f"{user_id}@example.com",
            company_id=company_id,
            client_id=client_id or f"client-{user_id}",
        )

    return _join


@pytest.fixture
def calendar(dt_clock):
    return CalendarService(
        event_store=InMemoryEventStore(),
        business_start_hour=9,
        business_end_hour=17,
        slot_step_minutes=30,
        timezone="UTC",
        agenda_days=30,
        max_suggestions=5,
        recurrence_horizon_days=365,
        prodid="-//NexaGestion//Calendar//EN",
        clock=dt_clock,
    )
