"""Password policy, hashing and verification for stored credentials."""
from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, Sequence

from passlib.context import CryptContext

from .errors import WeakCredentialError
from .models import IdentityRecord


class PasswordPolicy(Protocol):
    def validate(self, password: Optional[str], record: Optional[IdentityRecord]) -> None:
        """Raise :class:`WeakCredentialError` if ``password`` is not acceptable."""


class PasswordHasher(Protocol):
    def hash(self, password: str) -> str:
        ...

    def verify(self, password: str, hashed: str) -> bool:
        ...


class LengthPolicy:
    """Accept any password whose length lies within the configured bounds."""

    def __init__(self, *, min_length: int = 8, max_length: int = 255) -> None:
        if min_length < 1:
            raise ValueError("min_length must be at least 1")
        if max_length < min_length:
            raise ValueError("max_length must not be smaller than min_length")
        self.min_length = min_length
        self.max_length = max_length

    def validate(self, password: Optional[str], record: Optional[IdentityRecord]) -> None:
        if not password:
            raise WeakCredentialError("Password must not be empty")
        if len(password) < self.min_length:
            raise WeakCredentialError(f"Password must be at least {self.min_length} characters long")
        if len(password) > self.max_length:
            raise WeakCredentialError(f"Password must be at most {self.max_length} characters long")


class PasslibHasher:
    """Salted one-way hashing backed by a passlib :class:`CryptContext`.

    The first scheme is used for new hashes; the remaining schemes are only
    accepted for verification of existing hashes.
    """

    def __init__(self, schemes: Sequence[str] = ("pbkdf2_sha256",), *, rounds: Optional[int] = None) -> None:
        if not schemes:
            raise ValueError("At least one hash scheme must be configured")
        options: Dict[str, Any] = {}
        if rounds is not None:
            options[f"{schemes[0]}__default_rounds"] = rounds
        self._context = CryptContext(schemes=list(schemes), deprecated="auto", **options)

    def hash(self, password: str) -> str:
        return self._context.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        if not hashed:
            return False
        try:
            return self._context.verify(password, hashed)
        except (ValueError, TypeError):
            # Unknown or malformed hash formats never match.
            return False


class CredentialGuard:
    """Gate every piece of credential material handled by the store."""

    def __init__(self, policy: PasswordPolicy, hasher: PasswordHasher) -> None:
        self._policy = policy
        self._hasher = hasher

    def validate(self, password: Optional[str], record: Optional[IdentityRecord] = None) -> None:
        self._policy.validate(password, record)

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password: str, stored_hash: Optional[str]) -> bool:
        if password is None or not stored_hash:
            return False
        return self._hasher.verify(password, stored_hash)


__all__ = [
    "CredentialGuard",
    "LengthPolicy",
    "PasslibHasher",
    "PasswordHasher",
    "PasswordPolicy",
]
