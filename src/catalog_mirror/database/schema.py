"""Database schema definition and initialization."""

import sqlite3

from catalog_mirror.utils.constants import (
    CONFLICT_RESOLUTIONS,
    FAVORITE_SYNC_STATUSES,
    RECORD_SYNC_STATUSES,
)

SCHEMA_VERSION = 1


def _check_in(column: str, values) -> str:
    """CHECK clause restricting ``column`` to ``values``."""
    allowed = ", ".join(f"'{v}'" for v in values)
    return f"CHECK ({column} IN ({allowed}))"


# Each statement is a separate string to avoid executescript issues
_SCHEMA_STATEMENTS = [
    # Mirrored catalog records
    f"""CREATE TABLE IF NOT EXISTS restaurants (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        address TEXT,
        latitude REAL,
        longitude REAL,
        category TEXT NOT NULL,
        price_range TEXT,
        rating REAL,
        image_url TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        sync_status TEXT NOT NULL DEFAULT 'synced'
            {_check_in("sync_status", RECORD_SYNC_STATUSES)},
        last_modified TEXT NOT NULL
    )""",

    # Per-user favorites; tombstoned with sync_status = 'deleted'
    f"""CREATE TABLE IF NOT EXISTS favorites (
        id TEXT PRIMARY KEY,
        restaurant_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        created_at TEXT NOT NULL,
        sync_status TEXT NOT NULL DEFAULT 'synced'
            {_check_in("sync_status", FAVORITE_SYNC_STATUSES)},
        last_modified TEXT NOT NULL,
        FOREIGN KEY (restaurant_id) REFERENCES restaurants(id)
            ON DELETE RESTRICT
    )""",

    """CREATE TABLE IF NOT EXISTS sync_metadata (
        table_name TEXT PRIMARY KEY,
        last_sync_timestamp TEXT NOT NULL,
        pending_changes INTEGER NOT NULL DEFAULT 0,
        conflicts INTEGER NOT NULL DEFAULT 0
    )""",

    # Conflict bookkeeping (never populated automatically)
    f"""CREATE TABLE IF NOT EXISTS conflicts (
        id TEXT PRIMARY KEY,
        table_name TEXT NOT NULL,
        row_id TEXT NOT NULL,
        local_data TEXT NOT NULL,
        server_data TEXT NOT NULL,
        resolution TEXT NOT NULL DEFAULT 'manual'
            {_check_in("resolution", CONFLICT_RESOLUTIONS)},
        resolved_at TEXT,
        created_at TEXT NOT NULL
    )""",

    # Durable key/value pairs (cache entries, cache status)
    """CREATE TABLE IF NOT EXISTS kv_store (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )""",

    """CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )""",

    # Indexes
    "CREATE INDEX IF NOT EXISTS idx_restaurants_category "
    "ON restaurants(category)",
    "CREATE INDEX IF NOT EXISTS idx_restaurants_location "
    "ON restaurants(latitude, longitude)",
    "CREATE INDEX IF NOT EXISTS idx_restaurants_sync_status "
    "ON restaurants(sync_status)",
    "CREATE INDEX IF NOT EXISTS idx_restaurants_last_modified "
    "ON restaurants(last_modified)",
    "CREATE INDEX IF NOT EXISTS idx_favorites_user ON favorites(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_favorites_restaurant "
    "ON favorites(restaurant_id)",
]


def _get_schema_version(conn) -> int:
    """Return the applied schema version, or 0 for a fresh database."""
    try:
        row = conn.execute(
            "SELECT MAX(version) AS v FROM schema_version"
        ).fetchone()
        return row["v"] or 0
    except sqlite3.OperationalError:
        return 0


def initialize_database(db_connection):
    """Create all tables and indexes on a fresh database.

    Safe to call repeatedly; an up-to-date database is left untouched.
    """
    with db_connection.get_connection() as conn:
        conn.execute("PRAGMA foreign_keys = ON")

        version = _get_schema_version(conn)
        if version >= SCHEMA_VERSION:
            return

        for stmt in _SCHEMA_STATEMENTS:
            conn.execute(stmt)
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
