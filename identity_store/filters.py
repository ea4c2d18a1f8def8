"""Safety checks for SQL fragments produced from user supplied filters."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol, Sequence, Union

from .errors import InvalidFilterError, UnsupportedFilterError

logger = logging.getLogger("identity_store.filters")

# ``field = token`` where the token is neither a string literal nor a bind
# placeholder (``?``, ``?1`` or ``:name``). The field may be written as a
# quoted identifier or wrapped in parentheses.
UNQUOTED_EQUALITY = re.compile(
    r"\b(id|username|email|givenName|familyName)[\"`\]]?\s*\)*\s*=\s*(?![\s'?:])",
    re.IGNORECASE,
)

MULTI_VALUED_ATTRIBUTE = re.compile(r"\b(emails|phoneNumbers)\.([A-Za-z_][A-Za-z0-9_]*)", re.IGNORECASE)


@dataclass(frozen=True)
class ProcessedFilter:
    """A predicate fragment together with the parameters it binds."""

    sql: str
    params: Union[Sequence[object], Mapping[str, object]] = field(default=())


class FilterTranslator(Protocol):
    def convert(self, filter_text: str, sort_by: Optional[str], ascending: bool) -> ProcessedFilter:
        """Translate ``filter_text`` into a SQL fragment.

        Implementations raise :class:`ValueError` for input they cannot parse.
        """


class FilterValidator:
    """Reject fragments the store refuses to execute."""

    def validate(self, fragment: str, filter_text: Optional[str] = None) -> None:
        logger.debug("Validating filter %r rendered as %r", filter_text, fragment)

        if UNQUOTED_EQUALITY.search(fragment):
            raise InvalidFilterError("Eq argument in filter must be quoted")

        for match in MULTI_VALUED_ATTRIBUTE.finditer(fragment):
            collection, attribute = match.group(1), match.group(2)
            if attribute.lower() != "value":
                kind = "email address" if collection.lower() == "emails" else "phone number"
                raise UnsupportedFilterError(
                    f"Filters on {kind} fields other than 'value' not supported"
                )


__all__ = ["FilterTranslator", "FilterValidator", "ProcessedFilter"]
