from datetime import timedelta

import pytest

from nexacore.errors import AuthorizationError, NotFoundError, ValidationError
from nexacore.services.api_key_service import ApiKeyService


@pytest.fixture
def service(dt_clock):
    return ApiKeyService(clock=dt_clock)


@pytest.mark.asyncio
async def test_generate_and_validate(service):
    api_key, secret = await service.generate_api_key("c1", "ERP sync", permissions=["read"])

    assert api_key.key.startswith("nxg_")
    assert len(api_key.key) == 4 + 32
    assert secret not in api_key.to_dict().values()
    assert "secret_hash" not in api_key.to_dict()

    assert await service.validate_api_key(api_key.key, secret) is True
    assert await service.validate_api_key(api_key.key, "nope") is False
    assert await service.validate_presented_key(api_key.key) is True
    assert await service.validate_presented_key("nxg_unknown") is False


@pytest.mark.asyncio
async def test_generate_requires_fields(service):
    with pytest.raises(ValidationError):
        await service.generate_api_key("", "name")
    with pytest.raises(ValidationError):
        await service.generate_api_key("c1", "name", rate_limit=0)


@pytest.mark.asyncio
async def test_revoked_and_expired_keys_invalid(service, dt_clock):
    revoked, _ = await service.generate_api_key("c1", "revoked")
    expiring, _ = await service.generate_api_key(
        "c1", "expiring", expires_at=dt_clock() + timedelta(days=1)
    )

    await service.revoke_api_key("c1", revoked.id)
    assert await service.validate_presented_key(revoked.key) is False

    assert await service.validate_presented_key(expiring.key) is True
    dt_clock.advance(days=2)
    assert await service.validate_presented_key(expiring.key) is False


@pytest.mark.asyncio
async def test_rotate_replaces_key_and_secret(service):
    original, old_secret = await service.generate_api_key("c1", "rotating", permissions=["write"])

    rotated, new_secret = await service.rotate_api_key("c1", original.id)

    assert rotated.id == original.id
    assert rotated.key != original.key
    assert rotated.permissions == ["write"]
    assert await service.get_api_key(original.key) is None
    assert await service.validate_api_key(rotated.key, new_secret) is True
    assert await service.validate_api_key(rotated.key, old_secret) is False


@pytest.mark.asyncio
async def test_tenant_ownership_enforced(service):
    api_key, _ = await service.generate_api_key("c1", "owned")

    with pytest.raises(AuthorizationError):
        await service.revoke_api_key("c2", api_key.id)
    with pytest.raises(NotFoundError):
        await service.update_permissions("c1", "missing", ["read"])


@pytest.mark.asyncio
async def test_usage_tracking_and_stats(service):
    used, _ = await service.generate_api_key("c1", "used")
    await service.generate_api_key("c1", "idle")
    other, _ = await service.generate_api_key("c2", "other")

    await service.track_usage(used.key)
    await service.track_usage(used.key)
    await service.track_usage(other.key)
    await service.update_rate_limit("c1", used.id, 50)

    stats = await service.get_usage_stats("c1")

    assert stats == {
        "total_keys": 2,
        "active_keys": 2,
        "total_requests": 2,
        "keys_used_this_month": 1,
    }
    assert (await service.get_api_key(used.key)).rate_limit == 50
