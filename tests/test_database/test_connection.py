"""Tests for DatabaseConnection and schema initialization."""

import sqlite3

import pytest

from catalog_mirror.database.connection import DatabaseConnection
from catalog_mirror.database.schema import SCHEMA_VERSION, initialize_database


class TestDatabaseConnection:
    def test_creates_parent_dirs(self, tmp_path):
        db_path = tmp_path / "sub" / "deep" / "test.db"
        DatabaseConnection(str(db_path))
        assert db_path.parent.exists()

    def test_foreign_keys_enabled(self, tmp_path):
        db = DatabaseConnection(tmp_path / "fk.db")
        with db.get_connection() as conn:
            assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_rolls_back_on_error(self, tmp_path):
        db = DatabaseConnection(tmp_path / "rollback.db")
        db.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, v TEXT)")
        with pytest.raises(ValueError):
            with db.get_connection() as conn:
                conn.execute("INSERT INTO t (v) VALUES ('lost')")
                raise ValueError("boom")
        assert db.execute("SELECT * FROM t") == []

    def test_memory_database_is_shared(self):
        db = DatabaseConnection(":memory:")
        db.execute("CREATE TABLE t (v TEXT)")
        db.execute("INSERT INTO t (v) VALUES ('kept')")
        assert db.execute("SELECT v FROM t")[0]["v"] == "kept"
        db.close()


class TestSchema:
    def test_creates_tables(self, db):
        rows = db.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        )
        names = {r["name"] for r in rows}
        assert {"restaurants", "favorites", "sync_metadata", "conflicts",
                "kv_store", "schema_version"} <= names

    def test_initialize_is_idempotent(self, db):
        initialize_database(db)
        rows = db.execute("SELECT version FROM schema_version")
        assert [r["version"] for r in rows] == [SCHEMA_VERSION]

    def test_rejects_unknown_sync_status(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            db.execute(
                "INSERT INTO restaurants (id, name, category, created_at, "
                "updated_at, sync_status, last_modified) "
                "VALUES ('x', 'n', 'c', 't', 't', 'bogus', 't')"
            )

    def test_favorites_accept_tombstones_but_records_do_not(self, db):
        db.execute(
            "INSERT INTO restaurants (id, name, category, created_at, "
            "updated_at, last_modified) VALUES ('r1', 'n', 'c', 't', 't', 't')"
        )
        db.execute(
            "INSERT INTO favorites (id, restaurant_id, user_id, created_at, "
            "sync_status, last_modified) "
            "VALUES ('f1', 'r1', 'u1', 't', 'deleted', 't')"
        )
        with pytest.raises(sqlite3.IntegrityError):
            db.execute(
                "UPDATE restaurants SET sync_status = 'deleted' WHERE id = 'r1'"
            )

    def test_conflict_resolution_is_restricted(self, db):
        with pytest.raises(sqlite3.IntegrityError):
            db.execute(
                "INSERT INTO conflicts (id, table_name, row_id, local_data, "
                "server_data, resolution, created_at) "
                "VALUES ('c1', 'restaurants', 'r1', '{}', '{}', 'newest', 't')"
            )
