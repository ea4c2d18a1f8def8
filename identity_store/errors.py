"""Exception hierarchy raised by the identity store."""
from __future__ import annotations

from typing import Optional


class IdentityStoreError(RuntimeError):
    """Base class for every failure surfaced by the identity store."""


class NotFoundError(IdentityStoreError):
    """Raised when no record matches the requested id."""


class AlreadyExistsError(IdentityStoreError):
    """Raised when a write would duplicate a unique user name."""


class OptimisticLockError(IdentityStoreError):
    """Raised when a write names a version that is no longer current."""

    def __init__(self, user_id: str, *, submitted: int, found: Optional[int]) -> None:
        self.user_id = user_id
        self.submitted = submitted
        self.found = found
        found_text = "unknown" if found is None else str(found)
        super().__init__(
            f"Attempt to update a user ({user_id}) with wrong version: "
            f"submitted={submitted} but found={found_text}"
        )


class IntegrityViolationError(IdentityStoreError):
    """Raised when a statement keyed by id touched more than one row.

    This always indicates a broken storage invariant and must not be retried.
    """

    def __init__(self, message: str, *, expected: int = 1, actual: Optional[int] = None) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(message)


class InvalidFilterError(IdentityStoreError, ValueError):
    """Raised for unsafe or unparseable search filters."""


class UnsupportedFilterError(IdentityStoreError):
    """Raised for well-formed filters on attributes the store cannot query."""


class InvalidRecordError(IdentityStoreError, ValueError):
    """Raised when a record fails field validation."""


class WeakCredentialError(IdentityStoreError, ValueError):
    """Raised when the password policy rejects a proposed password."""


class InvalidCredentialError(IdentityStoreError):
    """Raised when the old password supplied for a rotation does not match."""


class StorageError(IdentityStoreError):
    """Raised for engine failures that have no more specific classification."""


__all__ = [
    "AlreadyExistsError",
    "IdentityStoreError",
    "IntegrityViolationError",
    "InvalidCredentialError",
    "InvalidFilterError",
    "InvalidRecordError",
    "NotFoundError",
    "OptimisticLockError",
    "StorageError",
    "UnsupportedFilterError",
    "WeakCredentialError",
]
