"""SQLite-backed storage boundary for identity records."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import StorageError


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the identity database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "identities.sqlite3").resolve(strict=False)


class Database:
    """Connection factory and schema owner for the ``users`` table."""

    def __init__(self, path: Path, *, timeout: float = 5.0) -> None:
        _ensure_directory(path)
        self._path = path
        self._timeout = timeout

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=self._timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection wrapped in a single transaction.

        The transaction commits when the block exits normally and rolls back
        otherwise. Engine errors not handled inside the block are re-raised
        as :class:`StorageError`.
        """

        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError("Unable to open the identity database") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StorageError("Identity database operation failed") from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self.connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    version INTEGER NOT NULL DEFAULT 0,
                    created TEXT NOT NULL,
                    lastModified TEXT NOT NULL,
                    userName TEXT NOT NULL,
                    email TEXT NOT NULL,
                    givenName TEXT,
                    familyName TEXT,
                    active INTEGER NOT NULL DEFAULT 1,
                    phoneNumber TEXT,
                    password TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_users_username ON users(userName);
                CREATE INDEX IF NOT EXISTS idx_users_created ON users(created);
                """
            )


__all__ = ["Database", "resolve_database_path"]
