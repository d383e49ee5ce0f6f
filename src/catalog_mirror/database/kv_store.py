"""Durable string key/value storage backed by the local SQLite file."""

from typing import Iterable, Optional

from .connection import DatabaseConnection


class KeyValueStore:
    """Small async-storage style API over the ``kv_store`` table."""

    def __init__(self, db: DatabaseConnection):
        self.db = db

    def get_item(self, key: str) -> Optional[str]:
        rows = self.db.execute(
            "SELECT value FROM kv_store WHERE key = ?", (key,)
        )
        return rows[0]["value"] if rows else None

    def set_item(self, key: str, value: str):
        with self.db.get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                (key, value),
            )

    def remove_item(self, key: str):
        with self.db.get_connection() as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))

    def keys_with_prefix(self, prefixes: Iterable[str]) -> list[str]:
        """Every key starting with any of the given prefixes."""
        prefixes = list(prefixes)
        if not prefixes:
            return []
        # Escape LIKE wildcards so '_' in a prefix matches literally
        clauses = " OR ".join("key LIKE ? ESCAPE '\\'" for _ in prefixes)
        params = tuple(
            p.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            + "%"
            for p in prefixes
        )
        rows = self.db.execute(
            f"SELECT key FROM kv_store WHERE {clauses} ORDER BY key",  # noqa: S608
            params,
        )
        return [r["key"] for r in rows]

    def multi_remove(self, keys: list[str]) -> int:
        if not keys:
            return 0
        placeholders = ", ".join("?" for _ in keys)
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                f"DELETE FROM kv_store WHERE key IN ({placeholders})",  # noqa: S608
                tuple(keys),
            )
            return cursor.rowcount

    def total_size(self, prefixes: Iterable[str]) -> int:
        """Sum of UTF-8 byte lengths of every value under the prefixes."""
        total = 0
        for key in self.keys_with_prefix(prefixes):
            value = self.get_item(key)
            if value:
                total += len(value.encode("utf-8"))
        return total
