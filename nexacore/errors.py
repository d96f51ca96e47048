"""
Error taxonomy for the collaboration, gateway and calendar core.

Structural failures are raised immediately and carry a stable error_code.
Rate limiting, conflict detection and advisory locks report through return
values instead (bool / list), so callers pick their own policy.
"""

from typing import Any


class NexaCoreError(Exception):
    """Base exception for core operations."""

    error_code = "core_error"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_code, "message": self.message, **self.context}


class ValidationError(NexaCoreError):
    """Missing or invalid input (e.g. event ending before it starts)."""

    error_code = "validation_error"


class InvalidTransitionError(ValidationError):
    """Event status change not allowed by the status machine."""

    error_code = "invalid_transition"


class NotFoundError(NexaCoreError):
    """Room, event or key does not exist."""

    error_code = "not_found"


class AuthorizationError(NexaCoreError):
    """Tenant (company) mismatch."""

    error_code = "unauthorized"


class EntityLockedError(AuthorizationError):
    """Write rejected because another user holds the entity lock."""

    error_code = "entity_locked"


class CapacityError(NexaCoreError):
    """Collaboration room is full."""

    error_code = "room_full"


_STATUS_CODES: dict[type[NexaCoreError], int] = {
    EntityLockedError: 423,
    InvalidTransitionError: 409,
    ValidationError: 400,
    NotFoundError: 404,
    AuthorizationError: 403,
    CapacityError: 409,
}


def status_code_for(error: Exception) -> int:
    """HTTP-equivalent status for a core error (500 for anything unexpected)."""
    for error_type in type(error).__mro__:
        if error_type in _STATUS_CODES:
            return _STATUS_CODES[error_type]
    return 500
