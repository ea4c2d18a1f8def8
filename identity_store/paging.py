"""Bounded, on-demand paging over identity queries."""
from __future__ import annotations

from typing import Any, Dict, Iterator, List, Mapping, Sequence, Tuple, Union

from .database import Database
from .models import IdentityRecord, RowDecoder

DEFAULT_PAGE_SIZE = 200

QueryParams = Union[Sequence[object], Mapping[str, object]]


class PagedQuery:
    """Iterate the rows of ``sql`` one window of ``page_size`` rows at a time.

    Every window is an independent ``LIMIT``/``OFFSET`` query on its own
    connection, so no transaction or cursor is held between windows. Each call
    to :meth:`__iter__` starts again from the first row.
    """

    def __init__(
        self,
        database: Database,
        sql: str,
        params: QueryParams = (),
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be a positive integer")
        self._database = database
        self._sql = sql
        self._params: Union[Tuple[object, ...], Dict[str, object]]
        if isinstance(params, Mapping):
            self._params = dict(params)
        else:
            self._params = tuple(params)
        self._page_size = page_size

    @property
    def sql(self) -> str:
        return self._sql

    @property
    def page_size(self) -> int:
        return self._page_size

    def __iter__(self) -> Iterator[IdentityRecord]:
        offset = 0
        while True:
            page = self.fetch_page(offset)
            yield from page
            if len(page) < self._page_size:
                return
            offset += self._page_size

    def _window(self, offset: int) -> Tuple[str, Any]:
        if isinstance(self._params, dict):
            params = dict(self._params, page_limit=self._page_size, page_offset=offset)
            return f"{self._sql} LIMIT :page_limit OFFSET :page_offset", params
        return f"{self._sql} LIMIT ? OFFSET ?", (*self._params, self._page_size, offset)

    def fetch_page(self, offset: int) -> List[IdentityRecord]:
        """Return the window of records starting at ``offset``."""

        sql, params = self._window(offset)
        with self._database.connect() as conn:
            cursor = conn.execute(sql, params)
            decoder = RowDecoder.for_cursor(cursor)
            rows = cursor.fetchall()
        return [decoder.decode_or_raise(row) for row in rows]

    def count(self) -> int:
        """Return the number of rows the query currently matches."""

        with self._database.connect() as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM ({self._sql})", self._params).fetchone()
        return int(row[0])


__all__ = ["DEFAULT_PAGE_SIZE", "PagedQuery", "QueryParams"]
