"""Application-wide constants."""

APP_NAME = "catalog-mirror"
APP_VERSION = "1.0.0"

# Local table names
RECORDS_TABLE = "restaurants"
FAVORITES_TABLE = "favorites"

# Row sync statuses
SYNC_STATUS_SYNCED = "synced"
SYNC_STATUS_PENDING = "pending"
SYNC_STATUS_CONFLICT = "conflict"
SYNC_STATUS_DELETED = "deleted"

RECORD_SYNC_STATUSES = [
    SYNC_STATUS_SYNCED, SYNC_STATUS_PENDING, SYNC_STATUS_CONFLICT,
]
FAVORITE_SYNC_STATUSES = [
    SYNC_STATUS_SYNCED, SYNC_STATUS_PENDING, SYNC_STATUS_DELETED,
]

# Conflict resolutions (bookkeeping only)
CONFLICT_RESOLUTIONS = ["local", "server", "manual"]

# Used when a table has never been synced
EPOCH_TIMESTAMP = "1970-01-01T00:00:00.000Z"

# Durable cache keys
CACHE_STATUS_KEY = "@catalog_mirror_cache_status"
CACHE_RECORD_PREFIX = "restaurant_"
CACHE_IMAGE_PREFIX = "image_"
CACHE_RATING_PREFIX = "rating_"
CACHE_KEY_PREFIXES = (
    CACHE_RECORD_PREFIX, CACHE_IMAGE_PREFIX, CACHE_RATING_PREFIX,
)

# Cache health grades: (min items, min bytes exclusive, grade)
CACHE_HEALTH_THRESHOLDS = [
    (100, 100_000, "excellent"),
    (50, 50_000, "good"),
    (20, 20_000, "fair"),
]

# Address enrichment
ADDRESS_NAME_SEPARATOR = ", "
ADDRESS_MIN_LENGTH = 10
