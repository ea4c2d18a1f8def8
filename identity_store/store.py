"""Create, read, update, search and remove identity records."""
from __future__ import annotations

import logging
import re
import sqlite3
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from .credentials import CredentialGuard
from .database import Database
from .errors import (
    AlreadyExistsError,
    IntegrityViolationError,
    InvalidCredentialError,
    InvalidFilterError,
    NotFoundError,
    OptimisticLockError,
    UnsupportedFilterError,
)
from .filters import FilterTranslator, FilterValidator, ProcessedFilter
from .models import USER_FIELDS, IdentityRecord, RowDecoder, serialize_timestamp, validate_record
from .paging import DEFAULT_PAGE_SIZE, PagedQuery

logger = logging.getLogger("identity_store.store")

_COLUMNS = ", ".join(USER_FIELDS)

USER_BY_ID_QUERY = f"SELECT {_COLUMNS} FROM users WHERE id = ?"

ALL_USERS = f"SELECT {_COLUMNS} FROM users"

DEFAULT_ORDER = " ORDER BY created ASC, id ASC"

CREATE_USER_SQL = f"INSERT INTO users ({_COLUMNS}, password) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"

UPDATE_USER_SQL = (
    "UPDATE users SET version = ?, lastModified = ?, userName = ?, email = ?, givenName = ?, "
    "familyName = ?, active = ?, phoneNumber = ? WHERE id = ? AND version = ?"
)

DEACTIVATE_USER_SQL = "UPDATE users SET active = 0, version = version + 1, lastModified = ? WHERE id = ?"

DELETE_USER_SQL = "DELETE FROM users WHERE id = ?"

CHANGE_PASSWORD_SQL = "UPDATE users SET lastModified = ?, password = ? WHERE id = ?"

READ_PASSWORD_SQL = "SELECT password FROM users WHERE id = ?"

READ_VERSION_SQL = "SELECT version FROM users WHERE id = ?"

_ORDER_BY = re.compile(r"\border\s+by\b", re.IGNORECASE)

_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")


def _has_order_by(fragment: str) -> bool:
    return bool(_ORDER_BY.search(_STRING_LITERAL.sub("''", fragment)))


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _is_username_conflict(exc: sqlite3.IntegrityError) -> bool:
    return "users.userName" in str(exc)


class IdentityStore:
    """Durable store of identity records with optimistic concurrency control.

    All collaborators are supplied by the caller. ``deactivate_on_delete``
    selects whether :meth:`remove` flags records inactive or deletes them.
    """

    def __init__(
        self,
        database: Database,
        *,
        guard: CredentialGuard,
        translator: Optional[FilterTranslator] = None,
        validator: Optional[FilterValidator] = None,
        deactivate_on_delete: bool = True,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be a positive integer")
        self._database = database
        self._guard = guard
        self._translator = translator
        self._validator = validator if validator is not None else FilterValidator()
        self._deactivate_on_delete = deactivate_on_delete
        self._page_size = page_size
        self._clock = clock or _current_timestamp

    @property
    def deactivate_on_delete(self) -> bool:
        return self._deactivate_on_delete

    @property
    def page_size(self) -> int:
        return self._page_size

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def retrieve(self, user_id: str) -> IdentityRecord:
        with self._database.connect() as conn:
            cursor = conn.execute(USER_BY_ID_QUERY, (user_id,))
            decoder = RowDecoder.for_cursor(cursor)
            rows = cursor.fetchmany(2)
        if not rows:
            raise NotFoundError(f"User {user_id} does not exist")
        if len(rows) > 1:
            logger.error("More than one row stored for user %s", user_id)
            raise IntegrityViolationError(
                f"Expected exactly one user with id {user_id}", expected=1, actual=len(rows)
            )
        return decoder.decode_or_raise(rows[0])

    def list(self) -> PagedQuery:
        """Return every record, oldest first, fetched one window at a time."""

        return PagedQuery(self._database, ALL_USERS + DEFAULT_ORDER, page_size=self._page_size)

    def search(self, filter_text: str, sort_by: Optional[str] = None, ascending: bool = True) -> PagedQuery:
        """Return the records matching ``filter_text``.

        The filter is translated by the configured :class:`FilterTranslator`,
        checked by the :class:`FilterValidator` and compiled once before any
        rows are fetched. Engine errors are reported as
        :class:`InvalidFilterError` without exposing the engine message.
        """

        if self._translator is None:
            raise UnsupportedFilterError("Filtering is not configured for this store")

        try:
            where = self._translator.convert(filter_text, sort_by, ascending)
        except UnsupportedFilterError:
            raise
        except Exception as exc:
            logger.debug("Filter %r could not be translated: %r", filter_text, exc)
            raise InvalidFilterError(f"Invalid filter: {filter_text}") from None

        if not isinstance(where, ProcessedFilter):
            raise InvalidFilterError(f"Invalid filter: {filter_text}")

        logger.debug("Filtering users with SQL: %s", where.sql)
        self._validator.validate(where.sql, filter_text)

        sql = f"{ALL_USERS} WHERE {where.sql}"
        if not _has_order_by(where.sql):
            sql += DEFAULT_ORDER
        logger.debug("Complete SQL: %s, params: %r", sql, where.params)

        with self._database.connect() as conn:
            try:
                conn.execute(f"EXPLAIN {sql}", where.params)
            except sqlite3.Error as exc:
                logger.debug("Filter %r generated invalid SQL: %s", filter_text, exc)
                raise InvalidFilterError(f"Invalid filter: {filter_text}") from None

        return PagedQuery(self._database, sql, where.params, page_size=self._page_size)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create(self, record: IdentityRecord, password: str) -> IdentityRecord:
        self._guard.validate(password, record)
        validate_record(record)

        logger.info("Creating new user: %s", record.user_name)

        user_id = str(uuid.uuid4())
        now = serialize_timestamp(self._clock())
        password_hash = self._guard.hash(password)

        with self._database.connect() as conn:
            try:
                conn.execute(
                    CREATE_USER_SQL,
                    (
                        user_id,
                        0,
                        now,
                        now,
                        record.user_name,
                        record.primary_email,
                        record.name.given_name,
                        record.name.family_name,
                        int(bool(record.active)),
                        record.phone_number,
                        password_hash,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if not _is_username_conflict(exc):
                    raise
                raise AlreadyExistsError(
                    f"Username already in use (could be inactive account): {record.user_name}"
                ) from None

        return self.retrieve(user_id)

    def update(self, user_id: str, record: IdentityRecord) -> IdentityRecord:
        validate_record(record)
        logger.info("Updating user %s (%s)", user_id, record.user_name)

        with self._database.connect() as conn:
            try:
                cursor = conn.execute(
                    UPDATE_USER_SQL,
                    (
                        record.version + 1,
                        serialize_timestamp(self._clock()),
                        record.user_name,
                        record.primary_email,
                        record.name.given_name,
                        record.name.family_name,
                        int(bool(record.active)),
                        record.phone_number,
                        user_id,
                        record.version,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if not _is_username_conflict(exc):
                    raise
                raise AlreadyExistsError(f"Username already in use: {record.user_name}") from None
            updated = cursor.rowcount
            self._check_single_row(updated, user_id)

        if updated == 0:
            raise OptimisticLockError(user_id, submitted=record.version, found=self._current_version(user_id))
        return self.retrieve(user_id)

    def change_password(self, user_id: str, old_password: Optional[str], new_password: str) -> bool:
        """Replace the stored credential hash.

        ``version`` is left untouched; only ``lastModified`` advances. When
        ``old_password`` is given it must match the stored hash, and the new
        hash is only written while that verified hash is still stored.
        """

        self._guard.validate(new_password, None)
        sql = CHANGE_PASSWORD_SQL
        verified_hash: Optional[str] = None
        if old_password is not None:
            verified_hash = self._verified_password_hash(user_id, old_password)
            sql += " AND password = ?"

        params: tuple = (serialize_timestamp(self._clock()), self._guard.hash(new_password), user_id)
        if verified_hash is not None:
            params += (verified_hash,)

        with self._database.connect() as conn:
            updated = conn.execute(sql, params).rowcount
            self._check_single_row(updated, user_id)

        if updated == 0:
            if verified_hash is not None:
                logger.info("Password for user %s changed during rotation; rejecting", user_id)
                raise InvalidCredentialError("Old password is incorrect")
            raise NotFoundError(f"User {user_id} does not exist")
        logger.info("Password changed for user %s", user_id)
        return True

    def remove(self, user_id: str, version: int) -> IdentityRecord:
        """Deactivate or delete a record depending on the store policy.

        A negative ``version`` skips the concurrency check.
        """

        user = self.retrieve(user_id)
        if self._deactivate_on_delete:
            return self._deactivate(user, version)
        return self._delete(user, version)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _deactivate(self, user: IdentityRecord, version: int) -> IdentityRecord:
        logger.info("Deactivating user: %s", user.id)
        now = self._clock()
        sql = DEACTIVATE_USER_SQL
        params: tuple = (serialize_timestamp(now), user.id)
        if version >= 0:
            sql += " AND version = ?"
            params += (version,)

        with self._database.connect() as conn:
            updated = conn.execute(sql, params).rowcount
            self._check_single_row(updated, str(user.id))

        if updated == 0:
            self._raise_removal_conflict(user, version)
        base_version = version if version >= 0 else user.version
        return replace(user, active=False, version=base_version + 1, last_modified=now)

    def _delete(self, user: IdentityRecord, version: int) -> IdentityRecord:
        logger.info("Deleting user: %s", user.id)
        sql = DELETE_USER_SQL
        params: tuple = (user.id,)
        if version >= 0:
            sql += " AND version = ?"
            params += (version,)

        with self._database.connect() as conn:
            updated = conn.execute(sql, params).rowcount
            self._check_single_row(updated, str(user.id))

        if updated == 0:
            self._raise_removal_conflict(user, version)
        return user

    def _raise_removal_conflict(self, user: IdentityRecord, version: int) -> None:
        if version < 0:
            raise NotFoundError(f"User {user.id} does not exist")
        raise OptimisticLockError(str(user.id), submitted=version, found=user.version)

    def _check_single_row(self, updated: int, user_id: str) -> None:
        if updated > 1:
            logger.error("Statement for user %s affected %d rows", user_id, updated)
            raise IntegrityViolationError(
                f"Expected to modify one row for user {user_id} but modified {updated}",
                expected=1,
                actual=updated,
            )

    def _current_version(self, user_id: str) -> int:
        # Best effort: the row may change again before the caller sees this.
        with self._database.connect() as conn:
            row = conn.execute(READ_VERSION_SQL, (user_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"User {user_id} does not exist")
        return int(row["version"])

    def _verified_password_hash(self, user_id: str, password: str) -> str:
        with self._database.connect() as conn:
            row = conn.execute(READ_PASSWORD_SQL, (user_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"User {user_id} does not exist")
        stored_hash = row["password"]
        if not self._guard.verify(password, stored_hash):
            raise InvalidCredentialError("Old password is incorrect")
        return stored_hash


__all__ = ["IdentityStore"]
