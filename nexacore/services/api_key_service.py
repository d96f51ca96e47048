"""
API key management for machine clients of the gateway.

Keys are public identifiers ("nxg_" + 32 hex chars); secrets are returned
once at generation/rotation time and stored only as HMAC digests.
The in-memory store stands in for the database table the ERP keeps.
"""

import secrets
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any

from nexacore.errors import AuthorizationError, NotFoundError, ValidationError
from nexacore.infrastructure.observability.logging import get_logger
from nexacore.security.hashing import hash_api_secret, verify_api_secret

logger = get_logger(__name__)

KEY_PREFIX = "nxg_"
DEFAULT_KEY_RATE_LIMIT = 1000


@dataclass(slots=True)
class ApiKey:
    """Stored API key record."""

    id: str
    company_id: str
    name: str
    key: str
    secret_hash: str
    permissions: list[str] = field(default_factory=list)
    rate_limit: int = DEFAULT_KEY_RATE_LIMIT
    enabled: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime | None = None
    last_used: datetime | None = None
    usage_count: int = 0

    def is_expired(self, now: datetime | None = None) -> bool:
        if not self.expires_at:
            return False
        return (now or datetime.now(UTC)) > self.expires_at

    def is_usable(self, now: datetime | None = None) -> bool:
        return self.enabled and not self.is_expired(now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses (never includes the secret hash)."""
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "key": self.key,
            "permissions": list(self.permissions),
            "rate_limit": self.rate_limit,
            "enabled": self.enabled,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "last_used": self.last_used.isoformat() if self.last_used else None,
            "usage_count": self.usage_count,
        }


def _new_key() -> str:
    return f"{KEY_PREFIX}{secrets.token_hex(16)}"


class ApiKeyService:
    """Issue, validate and track API keys per company."""

    def __init__(self, clock=None):
        self._keys: dict[str, ApiKey] = {}  # key -> record
        self._ids: dict[str, str] = {}  # id -> key
        self._clock = clock or (lambda: datetime.now(UTC))

    async def generate_api_key(
        self,
        company_id: str,
        name: str,
        permissions: list[str] | tuple[str, ...] = (),
        rate_limit: int = DEFAULT_KEY_RATE_LIMIT,
        expires_at: datetime | None = None,
    ) -> tuple[ApiKey, str]:
        """
        Create a key for a company.

        Returns:
            (record, secret) - the plaintext secret is not retrievable later.
        """
        if not company_id or not name:
            raise ValidationError("company_id and name are required")
        if rate_limit <= 0:
            raise ValidationError("rate_limit must be positive", context={"rate_limit": rate_limit})

        key = _new_key()
        secret = secrets.token_hex(32)
        api_key = ApiKey(
            id=secrets.token_hex(8),
            company_id=company_id,
            name=name,
            key=key,
            secret_hash=hash_api_secret(key, secret),
            permissions=list(permissions),
            rate_limit=rate_limit,
            created_at=self._clock(),
            expires_at=expires_at,
        )
        self._store(api_key)

        logger.info("API key generated", company_id=company_id, key_id=api_key.id, name=name)
        return api_key, secret

    async def get_api_key(self, key: str) -> ApiKey | None:
        return self._keys.get(key)

    async def get_api_keys(self, company_id: str) -> list[ApiKey]:
        return [api_key for api_key in self._keys.values() if api_key.company_id == company_id]

    async def validate_api_key(self, key: str, secret: str) -> bool:
        """Full credential check: key usable and secret matches."""
        api_key = self._keys.get(key)
        if not api_key or not api_key.is_usable(self._clock()):
            return False
        return verify_api_secret(key, secret, api_key.secret_hash)

    async def validate_presented_key(self, key: str) -> bool:
        """Gateway check for a bare key header: known, enabled and not expired."""
        api_key = self._keys.get(key)
        return bool(api_key and api_key.is_usable(self._clock()))

    async def revoke_api_key(self, company_id: str, key_id: str) -> ApiKey:
        api_key = self._owned(company_id, key_id)
        api_key.enabled = False
        logger.info("API key revoked", company_id=company_id, key_id=key_id)
        return api_key

    async def rotate_api_key(self, company_id: str, key_id: str) -> tuple[ApiKey, str]:
        """Replace key and secret, keeping id, name, permissions and limits."""
        old = self._owned(company_id, key_id)
        key = _new_key()
        secret = secrets.token_hex(32)
        rotated = replace(
            old,
            key=key,
            secret_hash=hash_api_secret(key, secret),
            enabled=True,
            created_at=self._clock(),
            last_used=None,
            usage_count=0,
        )
        del self._keys[old.key]
        self._store(rotated)

        logger.info("API key rotated", company_id=company_id, key_id=key_id)
        return rotated, secret

    async def update_permissions(
        self, company_id: str, key_id: str, permissions: list[str]
    ) -> ApiKey:
        api_key = self._owned(company_id, key_id)
        api_key.permissions = list(permissions)
        return api_key

    async def update_rate_limit(self, company_id: str, key_id: str, rate_limit: int) -> ApiKey:
        if rate_limit <= 0:
            raise ValidationError("rate_limit must be positive", context={"rate_limit": rate_limit})
        api_key = self._owned(company_id, key_id)
        api_key.rate_limit = rate_limit
        logger.info(
            "API key rate limit updated", company_id=company_id, key_id=key_id, rate_limit=rate_limit
        )
        return api_key

    async def track_usage(self, key: str) -> None:
        api_key = self._keys.get(key)
        if api_key:
            api_key.last_used = self._clock()
            api_key.usage_count += 1

    async def get_usage_stats(self, company_id: str) -> dict[str, Any]:
        keys = await self.get_api_keys(company_id)
        now = self._clock()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return {
            "total_keys": len(keys),
            "active_keys": sum(1 for k in keys if k.is_usable(now)),
            "total_requests": sum(k.usage_count for k in keys),
            "keys_used_this_month": sum(
                1 for k in keys if k.last_used and k.last_used >= month_start
            ),
        }

    def _store(self, api_key: ApiKey) -> None:
        self._keys[api_key.key] = api_key
        self._ids[api_key.id] = api_key.key

    def _owned(self, company_id: str, key_id: str) -> ApiKey:
        key = self._ids.get(key_id)
        api_key = self._keys.get(key) if key else None
        if api_key is None:
            raise NotFoundError("API key not found", context={"key_id": key_id})
        if api_key.company_id != company_id:
            raise AuthorizationError("API key belongs to another company", context={"key_id": key_id})
        return api_key


api_key_service = ApiKeyService()
