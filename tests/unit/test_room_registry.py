import asyncio

import pytest

from nexacore.errors import ValidationError
from nexacore.models.domain.collaboration_domain import room_id_for
from nexacore.services.collaboration import RoomRegistry


def test_get_or_create_is_keyed_by_entity(dt_clock):
    registry = RoomRegistry(clock=dt_clock)

    room = registry.get_or_create("invoice", "inv_1", "c1")

    assert room.id == room_id_for("invoice", "inv_1") == "invoice:inv_1"
    assert room.last_activity == dt_clock()
    assert registry.get_or_create("invoice", "inv_1", "c1") is room
    assert "invoice:inv_1" in registry
    assert len(registry) == 1


@pytest.mark.parametrize(
    "entity_type,entity_id,company_id",
    [("payroll", "p1", "c1"), ("invoice", "", "c1"), ("invoice", "inv_1", "")],
)
def test_get_or_create_validates(entity_type, entity_id, company_id):
    with pytest.raises(ValidationError):
        RoomRegistry().get_or_create(entity_type, entity_id, company_id)


@pytest.mark.asyncio
async def test_lock_kept_while_held_across_close_and_recreate():
    registry = RoomRegistry()
    registry.get_or_create("sale", "s1", "c1")

    async with registry.room_lock("sale:s1"):
        registry.remove("sale:s1")
        assert registry.lock_count() == 1
        registry.get_or_create("sale", "s1", "c1")

    # Room exists again, so its lock stays until the room closes
    assert registry.lock_count() == 1
    registry.remove("sale:s1")
    assert registry.lock_count() == 0


@pytest.mark.asyncio
async def test_waiter_serializes_with_recreated_room():
    registry = RoomRegistry()
    registry.get_or_create("sale", "s1", "c1")
    order = []
    release = asyncio.Event()

    async def closer():
        async with registry.room_lock("sale:s1"):
            order.append("closer:start")
            await release.wait()
            registry.remove("sale:s1")
            order.append("closer:end")

    async def waiter():
        async with registry.room_lock("sale:s1"):
            order.append("waiter")
            registry.get_or_create("sale", "s1", "c1")

    first = asyncio.create_task(closer())
    await asyncio.sleep(0)
    second = asyncio.create_task(waiter())
    await asyncio.sleep(0)
    release.set()
    await asyncio.gather(first, second)

    assert order == ["closer:start", "closer:end", "waiter"]
    assert "sale:s1" in registry
    assert registry.lock_count() == 1


@pytest.mark.asyncio
async def test_locks_released_with_closed_rooms(manager, join):
    for index in range(200):
        room = await manager.create_room("invoice", f"inv_{index}", "c1")
        await join(room.id, "alice")
        await manager.leave_room(room.id, "alice", "c1")

    assert len(manager.registry) == 0
    assert manager.registry.lock_count() == 0
    assert manager.registry.rooms_for_user("alice") == []


def test_user_tracking():
    registry = RoomRegistry()
    registry.get_or_create("sale", "s1", "c1")
    registry.get_or_create("invoice", "i1", "c1")
    registry.track("alice", "sale:s1")
    registry.track("alice", "invoice:i1")

    assert [r.id for r in registry.rooms_for_user("alice")] == ["invoice:i1", "sale:s1"]

    registry.remove("sale:s1")
    assert [r.id for r in registry.rooms_for_user("alice")] == ["invoice:i1"]

    registry.untrack("alice", "invoice:i1")
    assert registry.rooms_for_user("alice") == []
