"""CacheDownloadManager — bulk-populates the offline mirror from the remote.

States (derived from the published status):

    IDLE / COMPLETE / ERROR --start--> DOWNLOADING
    DOWNLOADING --loop done--> COMPLETE
    DOWNLOADING --count query fails--> ERROR

Only the initial count query is fatal. A batch that fails to fetch is
logged and skipped, and a row that cannot be cached is logged and skipped,
so a finished download may be partial. Every status change is persisted
under one key and pushed to subscribers before the next change happens.
"""

import asyncio
import json
import logging
import sqlite3
from typing import AsyncIterator, Callable, Optional

from catalog_mirror.config import Config
from catalog_mirror.database.kv_store import KeyValueStore
from catalog_mirror.database.models import CatalogRecord
from catalog_mirror.database.repository import LocalStore
from catalog_mirror.errors import (
    CatalogMirrorError,
    MalformedRowError,
    SerializationFailure,
)
from catalog_mirror.remote.client import RemoteClient
from catalog_mirror.utils.constants import (
    CACHE_HEALTH_THRESHOLDS,
    CACHE_IMAGE_PREFIX,
    CACHE_KEY_PREFIXES,
    CACHE_RATING_PREFIX,
    CACHE_RECORD_PREFIX,
    CACHE_STATUS_KEY,
)

from .status import CacheMetrics, CacheState, CacheStatus, StatusPublisher

logger = logging.getLogger(__name__)


def compute_progress(downloaded: int, total: int) -> int:
    """Whole-number percentage, clamped to 0-100."""
    if total <= 0:
        return 0
    return max(0, min(100, round(downloaded / total * 100)))


def grade_cache_health(item_count: int, cache_size: int) -> str:
    for min_items, min_bytes, grade in CACHE_HEALTH_THRESHOLDS:
        if item_count >= min_items and cache_size > min_bytes:
            return grade
    return "poor"


class CacheDownloadManager:
    """Downloads the full remote catalog into durable local storage."""

    def __init__(self, remote: RemoteClient, kv: KeyValueStore,
                 store: Optional[LocalStore] = None, table: str = None,
                 batch_size: int = None, item_delay: float = None):
        self.remote = remote
        self.kv = kv
        self.store = store
        self.table = table or Config.RECORDS_TABLE
        self.batch_size = batch_size or Config.DOWNLOAD_BATCH_SIZE
        self.item_delay = (
            Config.DOWNLOAD_ITEM_DELAY if item_delay is None else item_delay
        )
        self._session = 0
        self._active = False
        # Persisted status replaces the default before anyone subscribes
        self._publisher = StatusPublisher(self._read_persisted() or CacheStatus())

    # ── Status channel ─────────────────────────────────────────

    def subscribe(self, listener: Callable[[CacheStatus], None]):
        """Register a listener; it is called with the current status now."""
        return self._publisher.subscribe(listener)

    def get_current_status(self) -> CacheStatus:
        return self._publisher.current

    @property
    def state(self) -> CacheState:
        return self._publisher.current.state

    def is_ready_for_offline(self) -> bool:
        return self._publisher.current.is_ready_for_offline

    def _update_status(self, **changes):
        status = self._publisher.current.updated(**changes)
        self._persist(status)
        self._publisher.publish(status)

    def _persist(self, status: CacheStatus):
        try:
            self.kv.set_item(CACHE_STATUS_KEY, status.to_json())
        except sqlite3.Error as e:
            logger.error(f"Error saving cache status: {e}")

    def _read_persisted(self) -> Optional[CacheStatus]:
        try:
            payload = self.kv.get_item(CACHE_STATUS_KEY)
            if payload:
                return CacheStatus.from_json(payload)
        except (SerializationFailure, sqlite3.Error) as e:
            logger.error(f"Error loading cache status: {e}")
        return None

    def load_status(self):
        """Re-read the persisted status and publish it."""
        status = self._read_persisted()
        if status is not None:
            self._publisher.publish(status)

    # ── Download ───────────────────────────────────────────────

    async def iter_download(
        self, total: int, start_offset: int = 0
    ) -> AsyncIterator[tuple[dict, int, int]]:
        """Yield ``(row, downloaded, progress)`` batch by batch.

        ``downloaded`` counts rows from ``start_offset``; calling again
        with a later offset resumes after the last finished batch. A batch
        that fails to fetch is skipped.
        """
        downloaded = start_offset
        batch_count = -(-total // self.batch_size) if total > 0 else 0
        for offset in range(start_offset, total, self.batch_size):
            batch_number = offset // self.batch_size + 1
            try:
                rows = await self.remote.select_range(
                    self.table, offset, offset + self.batch_size - 1,
                    order="id.asc",
                )
            except CatalogMirrorError as e:
                logger.warning(f"Error downloading batch {batch_number}: {e}")
                continue

            for row in rows[:self.batch_size]:
                downloaded += 1
                yield row, downloaded, compute_progress(downloaded, total)
            logger.info(f"Downloaded batch {batch_number}/{batch_count}")

    async def start_download(self):
        """Populate the cache from scratch. Ignored if already running."""
        if self._active:
            logger.info("Cache download already in progress")
            return

        self._session += 1
        session = self._session
        self._active = True
        try:
            await self._run_download(session)
        finally:
            if session == self._session:
                self._active = False

    async def _run_download(self, session: int):
        logger.info("Starting cache download")
        self._update_status(
            is_downloading=True, download_progress=0, downloaded_items=0,
            is_complete=False, error=None,
        )

        try:
            total = await self.remote.count(self.table)
        except CatalogMirrorError as e:
            if session == self._session:
                logger.error(f"Cache download failed: {e}")
                self._update_status(is_downloading=False, error=str(e))
            return
        if session != self._session:
            return

        self._update_status(total_items=total)
        logger.info(f"Starting download of {total} records")

        async for row, downloaded, progress in self.iter_download(total):
            if session != self._session:
                logger.info("Cache download superseded; stopping")
                return
            self._cache_record(row)
            self._update_status(
                downloaded_items=downloaded, download_progress=progress
            )
            if self.item_delay:
                await asyncio.sleep(self.item_delay)

        if session != self._session:
            return
        self._update_status(
            is_downloading=False, is_complete=True, download_progress=100,
            cache_size=self.calculate_cache_size(),
        )
        logger.info("Cache download completed")

    def _cache_record(self, row: dict):
        """Store one remote row; failures are logged and skipped."""
        record_id = row.get("id") if isinstance(row, dict) else None
        try:
            if not record_id:
                raise MalformedRowError(f"Row without id: {row!r}")
            try:
                payload = json.dumps(row)
            except (TypeError, ValueError) as e:
                raise SerializationFailure(
                    f"Cannot serialize record {record_id}: {e}"
                ) from e
            self.kv.set_item(f"{CACHE_RECORD_PREFIX}{record_id}", payload)

            # Only the image reference is kept, not the bytes
            image = row.get("image_url") or row.get("image")
            if image:
                self.kv.set_item(f"{CACHE_IMAGE_PREFIX}{record_id}", image)

            if self.store is not None:
                self.store.save_records([CatalogRecord.from_remote(row)])
        except (CatalogMirrorError, sqlite3.Error) as e:
            logger.warning(f"Error caching record {record_id}: {e}")

    # ── Maintenance ────────────────────────────────────────────

    def calculate_cache_size(self) -> int:
        try:
            return self.kv.total_size(CACHE_KEY_PREFIXES)
        except sqlite3.Error as e:
            logger.error(f"Error calculating cache size: {e}")
            return 0

    async def clear_cache(self):
        """Drop every cached entry and zero the progress counters.

        A download in flight is abandoned: it stops publishing as soon as
        it next resumes.
        """
        logger.info("Clearing cache")
        self._session += 1
        self._active = False
        try:
            keys = self.kv.keys_with_prefix(CACHE_KEY_PREFIXES)
            self.kv.multi_remove(keys)
        except sqlite3.Error as e:
            logger.error(f"Error clearing cache: {e}")
            self._update_status(is_downloading=False, error=str(e))
            return
        self._update_status(
            is_downloading=False, downloaded_items=0, download_progress=0,
            cache_size=0, is_complete=False,
        )

    async def refresh_cache(self):
        """Clear, then download again (sequentially)."""
        logger.info("Refreshing cache")
        await self.clear_cache()
        await self.start_download()

    def get_cache_metrics(self) -> CacheMetrics:
        try:
            keys = self.kv.keys_with_prefix(CACHE_KEY_PREFIXES)
        except sqlite3.Error as e:
            logger.error(f"Error getting cache metrics: {e}")
            return CacheMetrics()
        record_count = sum(1 for k in keys if k.startswith(CACHE_RECORD_PREFIX))
        total_size = self.calculate_cache_size()
        return CacheMetrics(
            record_count=record_count,
            image_ref_count=sum(
                1 for k in keys if k.startswith(CACHE_IMAGE_PREFIX)
            ),
            rating_count=sum(
                1 for k in keys if k.startswith(CACHE_RATING_PREFIX)
            ),
            total_cache_size=total_size,
            cache_health=grade_cache_health(record_count, total_size),
            last_sync_time=self._publisher.current.last_updated,
        )
