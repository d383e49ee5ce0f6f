"""Shared test fixtures."""

import asyncio
from typing import Optional

import pytest

from catalog_mirror.database.connection import DatabaseConnection
from catalog_mirror.database.kv_store import KeyValueStore
from catalog_mirror.database.models import CatalogRecord
from catalog_mirror.database.repository import LocalStore
from catalog_mirror.database.schema import initialize_database
from catalog_mirror.errors import (
    GeocodeError,
    TransientRemoteError,
    UnauthenticatedAccess,
)


def make_row(index: int, **overrides) -> dict:
    """A remote catalog row as the backend returns it."""
    row = {
        "id": f"r{index:03d}",
        "name": f"Place {index}",
        "description": f"Description {index}",
        "address": None,
        "latitude": 14.5 + index / 1000,
        "longitude": 120.9 + index / 1000,
        "category": "cafe",
        "price_range": "$$",
        "rating": 4.0,
        "image_url": f"https://img.example.com/{index}.jpg",
        "created_at": "2024-01-01T00:00:00.000Z",
        "updated_at": f"2024-01-{(index % 28) + 1:02d}T00:00:00.000Z",
    }
    row.update(overrides)
    return row


def make_record(index: int, **overrides) -> CatalogRecord:
    return CatalogRecord.from_remote(make_row(index, **overrides))


async def settle(rounds: int = 5):
    """Let every ready task run up to its next suspension point."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeRemote:
    """In-memory RemoteClient with switchable failures and a range gate."""

    def __init__(self, tables: dict = None, user_id: Optional[str] = None):
        self.tables: dict[str, list[dict]] = tables or {}
        self.user_id = user_id
        self.session_rejected = False
        self.fail_count = False
        self.fail_pull = False
        self.fail_ranges: set[int] = set()
        self.fail_upsert_ids: set[str] = set()
        self.fail_delete_ids: set[str] = set()
        self.range_calls: list[tuple[int, int]] = []
        self.pull_timestamps: list[str] = []
        self.upserts: list[tuple[str, dict]] = []
        self.deletes: list[tuple[str, str]] = []
        # Range calls after the first ``gate_after`` block until released
        self.gate_after: Optional[int] = None
        self.gate_reached = asyncio.Event()
        self.gate_release = asyncio.Event()

    def rows(self, table: str) -> list[dict]:
        return self.tables.setdefault(table, [])

    async def count(self, table, filters=None):
        if self.fail_count:
            raise TransientRemoteError("count failed")
        return len(self.rows(table))

    async def select_range(self, table, start, end, order=None, filters=None):
        self.range_calls.append((start, end))
        if self.gate_after is not None and len(self.range_calls) > self.gate_after:
            self.gate_reached.set()
            await self.gate_release.wait()
        if start in self.fail_ranges:
            raise TransientRemoteError(f"range {start}-{end} failed")
        return [dict(r) for r in self.rows(table)[start:end + 1]]

    async def select_updated_after(self, table, timestamp):
        self.pull_timestamps.append(timestamp)
        await asyncio.sleep(0)
        if self.fail_pull:
            raise TransientRemoteError("pull failed")
        rows = [r for r in self.rows(table) if r["updated_at"] > timestamp]
        return sorted(rows, key=lambda r: r["updated_at"], reverse=True)

    async def select_where(self, table, column, value):
        return [dict(r) for r in self.rows(table) if r.get(column) == value]

    async def upsert(self, table, row):
        await asyncio.sleep(0)
        if row.get("id") in self.fail_upsert_ids:
            raise TransientRemoteError(f"upsert of {row['id']} failed")
        self.upserts.append((table, row))
        rows = self.rows(table)
        for i, existing in enumerate(rows):
            if existing.get("id") == row.get("id"):
                rows[i] = dict(row)
                return
        rows.append(dict(row))

    async def delete(self, table, row_id):
        if row_id in self.fail_delete_ids:
            raise TransientRemoteError(f"delete of {row_id} failed")
        self.deletes.append((table, row_id))
        self.tables[table] = [
            r for r in self.rows(table) if r.get("id") != row_id
        ]

    async def current_user_id(self):
        if self.session_rejected:
            raise UnauthenticatedAccess("session expired")
        return self.user_id


class FakeGeocoder:
    """Geocoder with canned answers; ``hold`` parks calls until released."""

    def __init__(self, answers: dict = None, hold: bool = False):
        self.answers = answers or {}
        self.hold = hold
        self.calls: list[tuple[float, float]] = []
        self.active = 0
        self.max_active = 0
        self._release = asyncio.Event()

    def release(self):
        self._release.set()

    async def resolve(self, latitude, longitude):
        self.calls.append((latitude, longitude))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.hold:
                await self._release.wait()
            else:
                await asyncio.sleep(0)
            answer = self.answers.get((latitude, longitude))
            if answer is None:
                raise GeocodeError(f"no address for ({latitude}, {longitude})")
            if isinstance(answer, Exception):
                raise answer
            return answer
        finally:
            self.active -= 1


@pytest.fixture
def db_path(tmp_path):
    """Provide a temporary database path."""
    return tmp_path / "test.db"


@pytest.fixture
def db(db_path):
    """Provide an initialized database connection."""
    conn = DatabaseConnection(db_path)
    initialize_database(conn)
    return conn


@pytest.fixture
def store(db):
    return LocalStore(db)


@pytest.fixture
def kv(db):
    return KeyValueStore(db)


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def geocoder():
    return FakeGeocoder()
