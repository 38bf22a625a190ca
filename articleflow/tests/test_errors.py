import pytest

from articleflow.core.errors import (
    AlreadyFinalizedError,
    ConflictError,
    ErrorKind,
    ForbiddenError,
    NotFoundError,
    SyncDegradedError,
    UnavailableError,
    ValidationError,
)


@pytest.mark.parametrize(
    "exc,code,status",
    [
        (ValidationError("bad", fields=["name"]), "validation_error", 400),
        (NotFoundError("missing"), "not_found", 404),
        (ForbiddenError("nope"), "forbidden", 403),
        (ConflictError("dup"), "conflict", 409),
        (AlreadyFinalizedError("done"), "already_finalized", 409),
        (UnavailableError("down"), "unavailable", 503),
        (SyncDegradedError("sheets"), "sync_degraded", 500),
    ],
)
def test_kind_drives_code_and_status(exc, code, status):
    assert exc.code == code
    assert exc.status_code == status


def test_only_unavailable_is_retryable():
    assert UnavailableError("down").retryable is True
    assert ConflictError("dup").retryable is False
    assert SyncDegradedError("sheets").retryable is False


def test_already_finalized_is_a_conflict():
    assert isinstance(AlreadyFinalizedError("done"), ConflictError)
    assert AlreadyFinalizedError("done").kind is ErrorKind.ALREADY_FINALIZED


def test_validation_fields_default_empty():
    assert ValidationError("bad").fields == []
