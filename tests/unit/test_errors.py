import pytest

from nexacore.errors import (
    AuthorizationError,
    CapacityError,
    EntityLockedError,
    InvalidTransitionError,
    NexaCoreError,
    NotFoundError,
    ValidationError,
    status_code_for,
)


@pytest.mark.parametrize(
    "error,status_code",
    [
        (ValidationError("bad"), 400),
        (InvalidTransitionError("no"), 409),
        (NotFoundError("missing"), 404),
        (AuthorizationError("tenant"), 403),
        (EntityLockedError("locked"), 423),
        (CapacityError("full"), 409),
        (NexaCoreError("generic"), 500),
        (RuntimeError("boom"), 500),
    ],
)
def test_status_code_for(error, status_code):
    assert status_code_for(error) == status_code


def test_to_dict_merges_context():
    error = CapacityError("Room is full", context={"room_id": "invoice:1"})

    assert error.to_dict() == {
        "error": "room_full",
        "message": "Room is full",
        "room_id": "invoice:1",
    }
    assert str(error) == "Room is full"


def test_error_code_override():
    assert ValidationError("x", error_code="title_required").error_code == "title_required"
    assert ValidationError("y").error_code == "validation_error"
