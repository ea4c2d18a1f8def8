from __future__ import annotations

import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from identity_store.credentials import CredentialGuard, LengthPolicy, PasslibHasher
from identity_store.database import Database
from identity_store.filters import ProcessedFilter
from identity_store.models import IdentityRecord
from identity_store.store import IdentityStore


PASSWORD = "correct-horse-battery"


class TickingClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


class MappingTranslator:
    """Translator returning canned fragments for known filter strings."""

    def __init__(self, fragments: Dict[str, ProcessedFilter]) -> None:
        self.fragments = fragments
        self.calls = []

    def convert(self, filter_text, sort_by, ascending):
        self.calls.append((filter_text, sort_by, ascending))
        try:
            return self.fragments[filter_text]
        except KeyError:
            raise ValueError(f"Cannot parse filter {filter_text!r}") from None


def make_record(user_name: str = "jdoe", **overrides) -> IdentityRecord:
    record = IdentityRecord.new(
        user_name,
        overrides.pop("email", f"{user_name}@example.com"),
        overrides.pop("given_name", "Jane"),
        overrides.pop("family_name", "Doe"),
        phone_number=overrides.pop("phone_number", None),
    )
    if overrides:
        record = replace(record, **overrides)
    return record


@pytest.fixture()
def database(tmp_path: Path) -> Database:
    db = Database(tmp_path / "identities.sqlite3")
    db.initialize()
    return db


@pytest.fixture()
def guard() -> CredentialGuard:
    return CredentialGuard(LengthPolicy(min_length=8), PasslibHasher(("pbkdf2_sha256",), rounds=1000))


@pytest.fixture()
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture()
def translator() -> MappingTranslator:
    return MappingTranslator(
        {
            'userName eq "jdoe"': ProcessedFilter("username = ?", ("jdoe",)),
            "userName eq jdoe": ProcessedFilter("username = jdoe"),
            'userName eq "jdoe" literal': ProcessedFilter("username = 'jdoe'"),
            'emails.type eq "work"': ProcessedFilter("emails.type = ?", ("work",)),
            'name.familyName eq "Doe"': ProcessedFilter(
                "familyName = ? ORDER BY userName DESC", ("Doe",)
            ),
            'familyName named "Doe"': ProcessedFilter("familyName = :family", {"family": "Doe"}),
            "active eq true": ProcessedFilter("active = ?", (1,)),
            'userName eq "order by" or active eq true': ProcessedFilter(
                "userName = 'order by' OR active = ?", (1,)
            ),
            'nickName eq "jd"': ProcessedFilter("nickName = ?", ("jd",)),
        }
    )


@pytest.fixture()
def store(database: Database, guard: CredentialGuard, translator: MappingTranslator, clock: TickingClock) -> IdentityStore:
    return IdentityStore(database, guard=guard, translator=translator, clock=clock)
