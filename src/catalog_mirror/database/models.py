"""Data models for the database layer."""

from dataclasses import asdict, dataclass, field
from typing import Optional

from catalog_mirror.errors import MalformedRowError
from catalog_mirror.utils.constants import (
    SYNC_STATUS_PENDING,
    SYNC_STATUS_SYNCED,
)
from catalog_mirror.utils.formatters import utc_now_iso

# Columns shared by the local table and the remote table
REMOTE_RECORD_FIELDS = (
    "id", "name", "description", "address", "latitude", "longitude",
    "category", "price_range", "rating", "image_url",
    "created_at", "updated_at",
)


@dataclass
class CatalogRecord:
    id: str = ""
    name: str = ""
    description: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    category: str = ""
    price_range: Optional[str] = None
    rating: Optional[float] = None
    image_url: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""
    sync_status: str = SYNC_STATUS_SYNCED
    last_modified: str = ""

    @classmethod
    def from_remote(cls, row: dict) -> "CatalogRecord":
        """Build a synced record from a remote row.

        Raises MalformedRowError when id, name or category is missing.
        """
        missing = [k for k in ("id", "name", "category") if not row.get(k)]
        if missing:
            raise MalformedRowError(
                f"Remote row {row.get('id')!r} missing {', '.join(missing)}"
            )
        now = utc_now_iso()
        updated_at = row.get("updated_at") or now
        return cls(
            id=str(row["id"]),
            name=row["name"],
            description=row.get("description"),
            address=row.get("address"),
            latitude=row.get("latitude"),
            longitude=row.get("longitude"),
            category=row["category"],
            price_range=row.get("price_range"),
            rating=row.get("rating"),
            image_url=row.get("image_url") or row.get("image"),
            created_at=row.get("created_at") or now,
            updated_at=updated_at,
            sync_status=SYNC_STATUS_SYNCED,
            last_modified=updated_at,
        )

    def to_remote(self) -> dict:
        """Row payload for the remote table (no local bookkeeping)."""
        data = asdict(self)
        return {k: data[k] for k in REMOTE_RECORD_FIELDS}

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def is_pending(self) -> bool:
        return self.sync_status == SYNC_STATUS_PENDING


@dataclass
class FavoriteRecord:
    id: str = ""
    restaurant_id: str = ""
    user_id: str = ""
    created_at: str = ""
    sync_status: str = SYNC_STATUS_PENDING
    last_modified: str = ""

    @staticmethod
    def make_id(user_id: str, restaurant_id: str) -> str:
        """Deterministic favorite id for a (user, record) pair."""
        return f"fav_{user_id}_{restaurant_id}"

    def to_remote(self) -> dict:
        return {
            "id": self.id,
            "restaurant_id": self.restaurant_id,
            "device_id": self.user_id,
            "created_at": self.created_at,
        }


@dataclass
class SyncMetadata:
    table_name: str = ""
    last_sync_timestamp: str = ""
    pending_changes: int = 0
    conflicts: int = 0


@dataclass
class ConflictRecord:
    """Local/server divergence bookkeeping.

    Nothing in the engine creates these automatically; the table and the
    conflicts counter exist so a resolution policy can be added later.
    """
    id: str = ""
    table_name: str = ""
    row_id: str = ""
    local_data: str = "{}"   # JSON snapshot
    server_data: str = "{}"  # JSON snapshot
    resolution: str = "manual"
    resolved_at: Optional[str] = None
    created_at: str = ""


@dataclass
class PendingChanges:
    records: list[CatalogRecord] = field(default_factory=list)
    favorites: list[FavoriteRecord] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.records) + len(self.favorites)
