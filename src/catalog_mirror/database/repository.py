"""Local store — the on-device mirror of remote catalog data."""

import uuid
from typing import Iterable, Optional

from catalog_mirror.utils.constants import (
    EPOCH_TIMESTAMP,
    FAVORITES_TABLE,
    RECORDS_TABLE,
    SYNC_STATUS_DELETED,
    SYNC_STATUS_PENDING,
    SYNC_STATUS_SYNCED,
)
from catalog_mirror.utils.formatters import utc_now_iso

from .connection import DatabaseConnection
from .models import (
    CatalogRecord,
    ConflictRecord,
    FavoriteRecord,
    PendingChanges,
    SyncMetadata,
)

# Tables whose rows carry a sync_status column
SYNCABLE_TABLES = {RECORDS_TABLE, FAVORITES_TABLE}

_RECORD_COLUMNS = (
    "id", "name", "description", "address", "latitude", "longitude",
    "category", "price_range", "rating", "image_url", "created_at",
    "updated_at", "sync_status", "last_modified",
)


class LocalStore:
    """Provides all local persistence operations for the mirror."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    # ── Catalog records ─────────────────────────────────────────

    def save_records(self, records: Iterable[CatalogRecord]) -> int:
        """Upsert a batch of records keyed by id.

        Re-applying a record leaves one row holding the latest values.
        Returns the number of rows written.
        """
        columns = ", ".join(_RECORD_COLUMNS)
        placeholders = ", ".join("?" for _ in _RECORD_COLUMNS)
        updates = ", ".join(
            f"{c} = excluded.{c}" for c in _RECORD_COLUMNS if c != "id"
        )
        sql = (
            f"INSERT INTO restaurants ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}"
        )
        count = 0
        with self.db.get_connection() as conn:
            for record in records:
                conn.execute(
                    sql, tuple(getattr(record, c) for c in _RECORD_COLUMNS)
                )
                count += 1
        return count

    def save_record_local(self, record: CatalogRecord) -> CatalogRecord:
        """Store a locally edited record, flagged pending for the next push."""
        now = utc_now_iso()
        record.sync_status = SYNC_STATUS_PENDING
        record.updated_at = now
        record.last_modified = now
        if not record.created_at:
            record.created_at = now
        self.save_records([record])
        return record

    def get_records(self, limit: int = 20,
                    offset: int = 0) -> list[CatalogRecord]:
        rows = self.db.execute(
            "SELECT * FROM restaurants ORDER BY last_modified DESC "
            "LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [CatalogRecord(**dict(r)) for r in rows]

    def get_record(self, record_id: str) -> Optional[CatalogRecord]:
        rows = self.db.execute(
            "SELECT * FROM restaurants WHERE id = ?", (record_id,)
        )
        return CatalogRecord(**dict(rows[0])) if rows else None

    def search_records(self, query: str,
                       limit: int = 20) -> list[CatalogRecord]:
        """Substring search over name and description."""
        if not query.strip():
            return self.get_records(limit=limit)
        pattern = f"%{query.strip()}%"
        rows = self.db.execute(
            "SELECT * FROM restaurants "
            "WHERE name LIKE ? OR description LIKE ? "
            "ORDER BY last_modified DESC LIMIT ?",
            (pattern, pattern, limit),
        )
        return [CatalogRecord(**dict(r)) for r in rows]

    def delete_record(self, record_id: str):
        """Physically remove a record.

        Raises sqlite3.IntegrityError while any favorite references it.
        """
        with self.db.get_connection() as conn:
            conn.execute("DELETE FROM restaurants WHERE id = ?", (record_id,))

    # ── Favorites ───────────────────────────────────────────────

    def add_favorite(self, record_id: str, user_id: str) -> FavoriteRecord:
        """Favorite a record (idempotent); the row is flagged pending."""
        now = utc_now_iso()
        favorite = FavoriteRecord(
            id=FavoriteRecord.make_id(user_id, record_id),
            restaurant_id=record_id,
            user_id=user_id,
            created_at=now,
            sync_status=SYNC_STATUS_PENDING,
            last_modified=now,
        )
        with self.db.get_connection() as conn:
            conn.execute(
                "INSERT INTO favorites (id, restaurant_id, user_id, "
                "created_at, sync_status, last_modified) "
                "VALUES (?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET "
                "sync_status = excluded.sync_status, "
                "last_modified = excluded.last_modified",
                (favorite.id, favorite.restaurant_id, favorite.user_id,
                 favorite.created_at, favorite.sync_status,
                 favorite.last_modified),
            )
        return favorite

    def remove_favorite(self, record_id: str, user_id: str):
        """Tombstone a favorite; the row stays until remote delete succeeds."""
        with self.db.get_connection() as conn:
            conn.execute(
                "UPDATE favorites SET sync_status = ?, last_modified = ? "
                "WHERE id = ?",
                (SYNC_STATUS_DELETED, utc_now_iso(),
                 FavoriteRecord.make_id(user_id, record_id)),
            )

    def merge_remote_favorite(self, favorite: FavoriteRecord) -> bool:
        """Insert a server-side favorite as synced.

        Local rows (including tombstones) are left untouched, and
        favorites whose record is not mirrored locally are skipped.
        Returns True when a row was inserted.
        """
        with self.db.get_connection() as conn:
            exists = conn.execute(
                "SELECT 1 FROM restaurants WHERE id = ?",
                (favorite.restaurant_id,),
            ).fetchone()
            if not exists:
                return False
            cursor = conn.execute(
                "INSERT OR IGNORE INTO favorites (id, restaurant_id, "
                "user_id, created_at, sync_status, last_modified) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (favorite.id, favorite.restaurant_id, favorite.user_id,
                 favorite.created_at, SYNC_STATUS_SYNCED,
                 favorite.last_modified or favorite.created_at),
            )
            return cursor.rowcount > 0

    def get_favorites(self, user_id: str) -> list[FavoriteRecord]:
        rows = self.db.execute(
            "SELECT * FROM favorites WHERE user_id = ? AND sync_status != ? "
            "ORDER BY created_at DESC",
            (user_id, SYNC_STATUS_DELETED),
        )
        return [FavoriteRecord(**dict(r)) for r in rows]

    def get_favorite(self, favorite_id: str) -> Optional[FavoriteRecord]:
        rows = self.db.execute(
            "SELECT * FROM favorites WHERE id = ?", (favorite_id,)
        )
        return FavoriteRecord(**dict(rows[0])) if rows else None

    def is_favorite(self, record_id: str, user_id: str) -> bool:
        favorite = self.get_favorite(FavoriteRecord.make_id(user_id, record_id))
        return favorite is not None and favorite.sync_status != SYNC_STATUS_DELETED

    def purge_deleted_favorites(self, favorite_ids: list[str]) -> int:
        """Physically remove tombstones whose remote delete was confirmed."""
        if not favorite_ids:
            return 0
        placeholders = ", ".join("?" for _ in favorite_ids)
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                f"DELETE FROM favorites WHERE sync_status = ? "  # noqa: S608
                f"AND id IN ({placeholders})",
                (SYNC_STATUS_DELETED, *favorite_ids),
            )
            return cursor.rowcount

    # ── Sync bookkeeping ────────────────────────────────────────

    def get_pending_changes(self) -> PendingChanges:
        """Every record and favorite whose sync_status is not 'synced'."""
        records = self.db.execute(
            "SELECT * FROM restaurants WHERE sync_status != ? "
            "ORDER BY last_modified",
            (SYNC_STATUS_SYNCED,),
        )
        favorites = self.db.execute(
            "SELECT * FROM favorites WHERE sync_status != ? "
            "ORDER BY last_modified",
            (SYNC_STATUS_SYNCED,),
        )
        return PendingChanges(
            records=[CatalogRecord(**dict(r)) for r in records],
            favorites=[FavoriteRecord(**dict(r)) for r in favorites],
        )

    def mark_synced(self, table: str, ids: list[str]) -> int:
        """Flag rows synced. Tombstones are never flipped back to synced."""
        if table not in SYNCABLE_TABLES:
            raise ValueError(f"Unknown syncable table: {table}")
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE {table} SET sync_status = ? "  # noqa: S608
                f"WHERE sync_status != ? AND id IN ({placeholders})",
                (SYNC_STATUS_SYNCED, SYNC_STATUS_DELETED, *ids),
            )
            return cursor.rowcount

    def get_sync_metadata(self, table_name: str) -> Optional[SyncMetadata]:
        rows = self.db.execute(
            "SELECT * FROM sync_metadata WHERE table_name = ?",
            (table_name,),
        )
        return SyncMetadata(**dict(rows[0])) if rows else None

    def get_last_sync_timestamp(self, table_name: str) -> str:
        metadata = self.get_sync_metadata(table_name)
        if metadata and metadata.last_sync_timestamp:
            return metadata.last_sync_timestamp
        return EPOCH_TIMESTAMP

    def update_sync_metadata(self, table_name: str, timestamp: str,
                             pending_changes: int = 0, conflicts: int = 0):
        with self.db.get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sync_metadata "
                "(table_name, last_sync_timestamp, pending_changes, conflicts) "
                "VALUES (?, ?, ?, ?)",
                (table_name, timestamp, pending_changes, conflicts),
            )

    # ── Conflicts (bookkeeping only) ────────────────────────────

    def record_conflict(self, conflict: ConflictRecord) -> str:
        conflict.id = conflict.id or str(uuid.uuid4())
        conflict.created_at = conflict.created_at or utc_now_iso()
        with self.db.get_connection() as conn:
            conn.execute(
                "INSERT INTO conflicts (id, table_name, row_id, local_data, "
                "server_data, resolution, resolved_at, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (conflict.id, conflict.table_name, conflict.row_id,
                 conflict.local_data, conflict.server_data,
                 conflict.resolution, conflict.resolved_at,
                 conflict.created_at),
            )
        return conflict.id

    def get_conflicts(self, unresolved_only: bool = True) -> list[ConflictRecord]:
        sql = "SELECT * FROM conflicts"
        if unresolved_only:
            sql += " WHERE resolved_at IS NULL"
        rows = self.db.execute(sql + " ORDER BY created_at")
        return [ConflictRecord(**dict(r)) for r in rows]

    # ── Utility ─────────────────────────────────────────────────

    def clear_all_data(self):
        """Wipe every mirrored table (children before parents)."""
        with self.db.get_connection() as conn:
            conn.execute("DELETE FROM favorites")
            conn.execute("DELETE FROM restaurants")
            conn.execute("DELETE FROM sync_metadata")
            conn.execute("DELETE FROM conflicts")

    def get_stats(self) -> dict:
        """Summary counts: records, favorites and pending changes."""
        with self.db.get_connection() as conn:
            records = conn.execute(
                "SELECT COUNT(*) AS cnt FROM restaurants"
            ).fetchone()["cnt"]
            favorites = conn.execute(
                "SELECT COUNT(*) AS cnt FROM favorites"
            ).fetchone()["cnt"]
            pending = conn.execute(
                "SELECT "
                "(SELECT COUNT(*) FROM restaurants WHERE sync_status != ?) + "
                "(SELECT COUNT(*) FROM favorites WHERE sync_status != ?) "
                "AS cnt",
                (SYNC_STATUS_SYNCED, SYNC_STATUS_SYNCED),
            ).fetchone()["cnt"]
        return {
            "records": records,
            "favorites": favorites,
            "pending_changes": pending,
        }
