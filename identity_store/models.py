"""Identity records and the mapping between records and stored rows."""
from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, Tuple, Union

from .errors import InvalidRecordError, StorageError

logger = logging.getLogger("identity_store.models")

USER_NAME_PATTERN = re.compile(r"^[a-z0-9+\-_.@]+$")

USER_FIELDS: Tuple[str, ...] = (
    "id",
    "version",
    "created",
    "lastModified",
    "userName",
    "email",
    "givenName",
    "familyName",
    "active",
    "phoneNumber",
)


def serialize_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _as_tuple(values: Optional[Iterable[str]]) -> Tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(values)


@dataclass(frozen=True)
class Name:
    """Given and family name of an account holder."""

    given_name: Optional[str]
    family_name: Optional[str]


@dataclass(frozen=True)
class IdentityRecord:
    """Represents one user account.

    Records are immutable; use :func:`dataclasses.replace` to derive a
    modified copy. ``emails`` and ``phone_numbers`` accept any iterable of
    strings but only their first entries are persisted.
    """

    user_name: str
    name: Name
    emails: Tuple[str, ...] = ()
    phone_numbers: Tuple[str, ...] = ()
    active: bool = True
    id: Optional[str] = None
    version: int = 0
    created: Optional[datetime] = None
    last_modified: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "emails", _as_tuple(self.emails))
        object.__setattr__(self, "phone_numbers", _as_tuple(self.phone_numbers))
        if not isinstance(self.version, int) or isinstance(self.version, bool):
            raise InvalidRecordError("Version must be an integer")
        if self.version < 0:
            raise InvalidRecordError("Version must not be negative")
        if not isinstance(self.name, Name):
            raise InvalidRecordError("A given name and a family name must be provided.")

    @classmethod
    def new(
        cls,
        user_name: str,
        email: str,
        given_name: str,
        family_name: str,
        *,
        active: bool = True,
        phone_number: Optional[str] = None,
    ) -> "IdentityRecord":
        return cls(
            user_name=user_name,
            name=Name(given_name=given_name, family_name=family_name),
            emails=(email,),
            phone_numbers=(phone_number,) if phone_number else (),
            active=active,
        )

    @property
    def primary_email(self) -> Optional[str]:
        return self.emails[0] if self.emails else None

    @property
    def phone_number(self) -> Optional[str]:
        return self.phone_numbers[0] if self.phone_numbers else None


def validate_record(record: IdentityRecord) -> None:
    """Check the fields a record must carry before it may be written."""

    if not isinstance(record.user_name, str) or not USER_NAME_PATTERN.match(record.user_name):
        raise InvalidRecordError(
            "Username must be lower case alphanumeric with optional characters '+-_.@'."
        )
    if not record.primary_email or not record.primary_email.strip():
        raise InvalidRecordError("An email must be provided.")
    if record.name.given_name is None or record.name.family_name is None:
        raise InvalidRecordError("A given name and a family name must be provided.")

    # Only the first entry of each multi-valued field has a column.
    if len(record.emails) > 1:
        logger.warning(
            "Only the primary email of %s is stored; %d additional entries dropped",
            record.user_name,
            len(record.emails) - 1,
        )
    if len(record.phone_numbers) > 1:
        logger.warning(
            "Only the first phone number of %s is stored; %d additional entries dropped",
            record.user_name,
            len(record.phone_numbers) - 1,
        )


@dataclass(frozen=True)
class Decoded:
    record: IdentityRecord


@dataclass(frozen=True)
class Undecodable:
    row_id: Optional[str]
    reason: str


DecodeResult = Union[Decoded, Undecodable]


@dataclass(frozen=True)
class RowDecoder:
    """Typed decoder for rows selected with :data:`USER_FIELDS`.

    The column layout is checked once per cursor; each row then decodes to
    either :class:`Decoded` or :class:`Undecodable`.
    """

    columns: Tuple[str, ...] = field(default=USER_FIELDS)

    @classmethod
    def for_cursor(cls, cursor: sqlite3.Cursor) -> "RowDecoder":
        description = cursor.description or ()
        columns = tuple(str(column[0]) for column in description)
        cls.check_columns(columns)
        return cls(columns=columns)

    @staticmethod
    def check_columns(columns: Sequence[str]) -> None:
        expected = tuple(name.lower() for name in USER_FIELDS)
        if tuple(name.lower() for name in columns) != expected:
            raise StorageError(
                f"Unexpected column layout {list(columns)!r}; expected {list(USER_FIELDS)!r}"
            )

    def decode(self, row: Sequence[object]) -> DecodeResult:
        row_id = row[0] if row and isinstance(row[0], str) else None
        try:
            (
                user_id,
                version,
                created,
                last_modified,
                user_name,
                email,
                given_name,
                family_name,
                active,
                phone_number,
            ) = tuple(row)
            record = IdentityRecord(
                id=str(user_id),
                version=int(version),
                created=parse_timestamp(str(created)),
                last_modified=parse_timestamp(str(last_modified)),
                user_name=str(user_name),
                emails=(str(email),) if email is not None else (),
                name=Name(
                    given_name=None if given_name is None else str(given_name),
                    family_name=None if family_name is None else str(family_name),
                ),
                active=bool(active),
                phone_numbers=(str(phone_number),) if phone_number is not None else (),
            )
        except (TypeError, ValueError) as exc:
            # InvalidRecordError is a ValueError as well.
            return Undecodable(row_id=row_id, reason=str(exc) or exc.__class__.__name__)
        return Decoded(record=record)

    def decode_or_raise(self, row: Sequence[object]) -> IdentityRecord:
        result = self.decode(row)
        if isinstance(result, Undecodable):
            raise StorageError(f"Stored user {result.row_id} could not be decoded: {result.reason}")
        return result.record


__all__ = [
    "Decoded",
    "DecodeResult",
    "IdentityRecord",
    "Name",
    "RowDecoder",
    "USER_FIELDS",
    "USER_NAME_PATTERN",
    "Undecodable",
    "parse_timestamp",
    "serialize_timestamp",
    "validate_record",
]
