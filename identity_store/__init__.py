"""Durable identity-record store with optimistic concurrency control."""

from __future__ import annotations

from typing import Any

from .credentials import CredentialGuard, LengthPolicy, PasslibHasher
from .database import Database, resolve_database_path
from .errors import (
    AlreadyExistsError,
    IdentityStoreError,
    IntegrityViolationError,
    InvalidCredentialError,
    InvalidFilterError,
    InvalidRecordError,
    NotFoundError,
    OptimisticLockError,
    StorageError,
    UnsupportedFilterError,
    WeakCredentialError,
)
from .filters import FilterTranslator, FilterValidator, ProcessedFilter
from .models import IdentityRecord, Name
from .store import IdentityStore


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application for a store."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "AlreadyExistsError",
    "CredentialGuard",
    "Database",
    "FilterTranslator",
    "FilterValidator",
    "IdentityRecord",
    "IdentityStore",
    "IdentityStoreError",
    "IntegrityViolationError",
    "InvalidCredentialError",
    "InvalidFilterError",
    "InvalidRecordError",
    "LengthPolicy",
    "Name",
    "NotFoundError",
    "OptimisticLockError",
    "PasslibHasher",
    "ProcessedFilter",
    "StorageError",
    "UnsupportedFilterError",
    "WeakCredentialError",
    "create_app",
    "resolve_database_path",
]
