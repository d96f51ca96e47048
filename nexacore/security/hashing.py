"""
Deterministic HMAC-SHA256 helpers for API credential storage.

API key secrets are only ever stored as namespaced digests; comparisons
go through hmac.compare_digest.
"""

from __future__ import annotations

import hashlib
import hmac

from nexacore.config import settings

SECRET_MIN_LENGTH = 16  # keep configurable but catch obvious misconfiguration

__all__ = [
    "HashingError",
    "compute_hmac",
    "hash_api_secret",
    "verify_api_secret",
]


class HashingError(RuntimeError):
    """Raised when hashing prerequisites are not satisfied."""


def _secret_bytes() -> bytes:
    secret = getattr(settings, "API_KEY_HASHING_SECRET", None)
    if not secret:
        raise HashingError("API_KEY_HASHING_SECRET is not configured")
    if len(secret) < SECRET_MIN_LENGTH:
        raise HashingError("API_KEY_HASHING_SECRET is too short; please rotate it")
    return secret.encode("utf-8")


def compute_hmac(value: str, *, namespace: str) -> str:
    """
    Compute a namespaced hex HMAC-SHA256 digest.

    Args:
        value: Raw string value to hash.
        namespace: Logical namespace/salt to avoid cross-field collisions.
    """
    payload = value or ""
    scoped = f"{namespace}:{payload}"
    digest = hmac.new(_secret_bytes(), scoped.encode("utf-8"), hashlib.sha256)
    return digest.hexdigest()


def hash_api_secret(key: str, secret: str) -> str:
    """Hash an API secret, bound to the public key it belongs to."""
    return compute_hmac(f"{key}:{secret}", namespace="api_secret")


def verify_api_secret(key: str, secret: str | None, expected_hash: str) -> bool:
    """Constant-time check of a presented secret against its stored digest."""
    if not secret:
        return False
    return hmac.compare_digest(hash_api_secret(key, secret), expected_hash)
