"""Tests for data model mapping."""

import pytest

from conftest import make_row
from catalog_mirror.database.models import (
    CatalogRecord,
    FavoriteRecord,
    PendingChanges,
    REMOTE_RECORD_FIELDS,
)
from catalog_mirror.errors import MalformedRowError


class TestCatalogRecord:
    def test_from_remote_is_synced(self):
        record = CatalogRecord.from_remote(make_row(7))
        assert record.id == "r007"
        assert record.sync_status == "synced"
        assert record.last_modified == record.updated_at

    def test_from_remote_accepts_image_alias(self):
        row = make_row(1, image_url=None, image="https://x/y.png")
        assert CatalogRecord.from_remote(row).image_url == "https://x/y.png"

    @pytest.mark.parametrize("missing", ["id", "name", "category"])
    def test_from_remote_rejects_missing_required(self, missing):
        with pytest.raises(MalformedRowError):
            CatalogRecord.from_remote(make_row(1, **{missing: None}))

    def test_from_remote_fills_timestamps(self):
        row = make_row(1)
        del row["created_at"], row["updated_at"]
        record = CatalogRecord.from_remote(row)
        assert record.created_at.endswith("Z")
        assert record.last_modified == record.updated_at

    def test_to_remote_drops_local_bookkeeping(self):
        payload = CatalogRecord.from_remote(make_row(1)).to_remote()
        assert set(payload) == set(REMOTE_RECORD_FIELDS)
        assert "sync_status" not in payload

    def test_has_coordinates(self):
        assert CatalogRecord(latitude=1.0, longitude=2.0).has_coordinates
        assert not CatalogRecord(latitude=1.0).has_coordinates


class TestFavoriteRecord:
    def test_make_id(self):
        assert FavoriteRecord.make_id("u1", "r9") == "fav_u1_r9"

    def test_to_remote_uses_device_id(self):
        favorite = FavoriteRecord(
            id="fav_u1_r9", restaurant_id="r9", user_id="u1",
            created_at="2024-01-01T00:00:00.000Z",
        )
        assert favorite.to_remote() == {
            "id": "fav_u1_r9",
            "restaurant_id": "r9",
            "device_id": "u1",
            "created_at": "2024-01-01T00:00:00.000Z",
        }


def test_pending_changes_total():
    changes = PendingChanges(
        records=[CatalogRecord(id="a")],
        favorites=[FavoriteRecord(id="b"), FavoriteRecord(id="c")],
    )
    assert changes.total == 3
