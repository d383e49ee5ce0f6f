"""SyncCoordinator — pull/push reconciliation with the remote backend.

A sync run does, per table:
1. Pull: fetch remote rows updated after the table's last sync timestamp
   (newest first), upsert them locally, then stamp the table as synced
   "now".
2. Push: write each locally pending row to the remote; a success marks
   the row synced, a failure leaves it pending for the next run.

Favorites are user-scoped: without a signed-in user that step is a
silent no-op. Deleted favorites are sent as remote deletes and only
purged locally once the delete succeeds.

Known gaps, kept on purpose:
- The last sync timestamp is set to the local clock, not to the newest
  ``updated_at`` actually pulled, so a remote write racing the pull can be
  missed on the next cycle.
- No conflict detection. Whichever side syncs last wins, and the
  ``conflicts`` counter is always 0.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from catalog_mirror.config import Config
from catalog_mirror.database.models import CatalogRecord, FavoriteRecord
from catalog_mirror.database.repository import LocalStore
from catalog_mirror.errors import (
    CatalogMirrorError,
    MalformedRowError,
    UnauthenticatedAccess,
)
from catalog_mirror.remote.client import RemoteClient
from catalog_mirror.utils.constants import (
    FAVORITES_TABLE,
    RECORDS_TABLE,
    SYNC_STATUS_DELETED,
)
from catalog_mirror.utils.formatters import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    success: bool = True
    synced_items: int = 0
    failed_items: int = 0
    errors: list[str] = field(default_factory=list)
    skipped: bool = False

    def fail(self, message: str):
        self.success = False
        self.failed_items += 1
        self.errors.append(message)


class SyncCoordinator:
    """Reconciles the local store with the remote backend, single-flight."""

    def __init__(self, store: LocalStore, remote: RemoteClient,
                 remote_records_table: str = None,
                 remote_favorites_table: str = None):
        self.store = store
        self.remote = remote
        self.remote_records_table = (
            remote_records_table or Config.RECORDS_TABLE
        )
        self.remote_favorites_table = (
            remote_favorites_table or Config.FAVORITES_TABLE
        )
        self._in_progress = False
        self._online = True
        self._listeners: list[Callable[[SyncResult], None]] = []
        self.requested_count = 0
        self.executed_count = 0
        self.last_result: Optional[SyncResult] = None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def is_online(self) -> bool:
        return self._online

    # ── Listeners ──────────────────────────────────────────────

    def add_listener(self, listener: Callable[[SyncResult], None]):
        """Register a callback for finished sync runs; returns unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, result: SyncResult):
        for listener in list(self._listeners):
            try:
                listener(result)
            except Exception as e:
                logger.error(f"Sync listener raised: {e}")

    # ── Triggers ───────────────────────────────────────────────

    def set_online_status(self, online: bool) -> Optional[asyncio.Task]:
        """Record connectivity; going online schedules a sync right away.

        Must be called from within a running event loop when ``online``
        is True. Returns the scheduled task, if any.
        """
        self._online = online
        if not online:
            return None
        return asyncio.get_running_loop().create_task(self.sync())

    async def sync(self) -> SyncResult:
        """Run one pull/push cycle. Dropped if offline or already running."""
        self.requested_count += 1
        if self._in_progress:
            logger.info("Sync already in progress; request dropped")
            return SyncResult(success=False, skipped=True,
                              errors=["Sync already in progress"])
        if not self._online:
            logger.info("Device is offline; sync request dropped")
            return SyncResult(success=False, skipped=True,
                              errors=["Device is offline"])

        self._in_progress = True
        self.executed_count += 1
        result = SyncResult()
        try:
            logger.info("Starting sync")
            await self._sync_records(result)
            await self._sync_favorites(result)
            logger.info(
                f"Sync finished: {result.synced_items} synced, "
                f"{result.failed_items} failed"
            )
            return result
        finally:
            self._in_progress = False
            self.last_result = result
            self._notify(result)

    # ── Catalog records ────────────────────────────────────────

    async def _sync_records(self, result: SyncResult):
        stamp = await self._pull_records(result)
        await self._push_records(result)
        self._update_metadata(RECORDS_TABLE, stamp)

    async def _pull_records(self, result: SyncResult) -> Optional[str]:
        """Pull remote changes; returns the new sync stamp or None."""
        last_sync = self.store.get_last_sync_timestamp(RECORDS_TABLE)
        try:
            rows = await self.remote.select_updated_after(
                self.remote_records_table, last_sync
            )
        except CatalogMirrorError as e:
            logger.warning(f"Pull of {self.remote_records_table} failed: {e}")
            result.success = False
            result.errors.append(f"Pull failed: {e}")
            return None

        records = []
        for row in rows:
            try:
                records.append(CatalogRecord.from_remote(row))
            except MalformedRowError as e:
                logger.warning(f"Skipping malformed row: {e}")
                result.fail(str(e))
        self.store.save_records(records)
        result.synced_items += len(records)
        if records:
            logger.info(f"Pulled {len(records)} changed records")
        return utc_now_iso()

    async def _push_records(self, result: SyncResult):
        pending = self.store.get_pending_changes().records
        if pending:
            logger.info(f"Pushing {len(pending)} record changes")
        for record in pending:
            try:
                await self.remote.upsert(
                    self.remote_records_table, record.to_remote()
                )
            except CatalogMirrorError as e:
                logger.warning(f"Push of record {record.id} failed: {e}")
                result.fail(f"Record {record.id}: {e}")
                continue
            self.store.mark_synced(RECORDS_TABLE, [record.id])
            result.synced_items += 1

    # ── Favorites ──────────────────────────────────────────────

    async def _sync_favorites(self, result: SyncResult):
        try:
            user_id = await self.remote.current_user_id()
        except UnauthenticatedAccess as e:
            logger.debug(f"Favorites sync skipped: {e}")
            return
        except CatalogMirrorError as e:
            logger.warning(f"Could not resolve current user: {e}")
            result.success = False
            result.errors.append(f"User lookup failed: {e}")
            return
        if not user_id:
            logger.debug("No signed-in user; favorites sync skipped")
            return

        await self._push_favorites(user_id, result)
        stamp = await self._pull_favorites(user_id, result)
        self._update_metadata(FAVORITES_TABLE, stamp)

    async def _push_favorites(self, user_id: str, result: SyncResult):
        pending = [
            f for f in self.store.get_pending_changes().favorites
            if f.user_id == user_id
        ]
        for favorite in pending:
            try:
                if favorite.sync_status == SYNC_STATUS_DELETED:
                    await self.remote.delete(
                        self.remote_favorites_table, favorite.id
                    )
                    self.store.purge_deleted_favorites([favorite.id])
                else:
                    await self.remote.upsert(
                        self.remote_favorites_table, favorite.to_remote()
                    )
                    self.store.mark_synced(FAVORITES_TABLE, [favorite.id])
            except CatalogMirrorError as e:
                logger.warning(f"Push of favorite {favorite.id} failed: {e}")
                result.fail(f"Favorite {favorite.id}: {e}")
                continue
            result.synced_items += 1

    async def _pull_favorites(self, user_id: str,
                              result: SyncResult) -> Optional[str]:
        try:
            rows = await self.remote.select_where(
                self.remote_favorites_table, "device_id", user_id
            )
        except CatalogMirrorError as e:
            logger.warning(f"Could not pull favorites: {e}")
            result.success = False
            result.errors.append(f"Favorites pull failed: {e}")
            return None

        for row in rows:
            record_id = row.get("restaurant_id")
            if not record_id:
                logger.warning(f"Skipping favorite without record id: {row}")
                continue
            created = row.get("created_at") or utc_now_iso()
            merged = self.store.merge_remote_favorite(FavoriteRecord(
                id=FavoriteRecord.make_id(user_id, record_id),
                restaurant_id=record_id,
                user_id=user_id,
                created_at=created,
                last_modified=created,
            ))
            if merged:
                result.synced_items += 1
        return utc_now_iso()

    # ── Metadata ───────────────────────────────────────────────

    def _update_metadata(self, table: str, stamp: Optional[str]):
        """Record the sync stamp (if the pull ran) and the pending count."""
        if stamp is None:
            stamp = self.store.get_last_sync_timestamp(table)
        changes = self.store.get_pending_changes()
        pending = len(
            changes.records if table == RECORDS_TABLE else changes.favorites
        )
        # Conflict detection is not implemented; the counter stays 0
        self.store.update_sync_metadata(table, stamp, pending, 0)
