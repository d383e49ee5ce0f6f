"""Paged loading of catalog records with a self-advancing prefetcher."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from catalog_mirror.config import Config
from catalog_mirror.database.models import CatalogRecord
from catalog_mirror.errors import CatalogMirrorError, MalformedRowError
from catalog_mirror.remote.client import RemoteClient

logger = logging.getLogger(__name__)


@dataclass
class Page:
    items: list = field(default_factory=list)
    total: Optional[int] = None  # None when the source cannot count


PageFetcher = Callable[[int, int], Awaitable[Page]]


def remote_page_fetcher(remote: RemoteClient, table: str = None,
                        filters: Optional[dict] = None,
                        order: str = "id.asc") -> PageFetcher:
    """Adapt a RemoteClient into a ``fetch(page, page_size)`` coroutine."""
    table = table or Config.RECORDS_TABLE

    async def fetch(page: int, page_size: int) -> Page:
        start = (page - 1) * page_size
        total = await remote.count(table, filters)
        rows = await remote.select_range(
            table, start, start + page_size - 1, order=order, filters=filters
        )
        items = []
        for row in rows:
            try:
                items.append(CatalogRecord.from_remote(row))
            except MalformedRowError as e:
                logger.warning(f"Skipping malformed row on page {page}: {e}")
        return Page(items=items, total=total)

    return fetch


class PaginatedLoader:
    """Working set of records built one page at a time.

    Loads never overlap: ``load_page`` returns False instead of starting
    while another load runs. After each successful load a timer fetches
    the next page once ``prefetch_delay`` has passed, as long as more
    pages exist and no load or refresh is running.
    """

    def __init__(self, fetch_page: PageFetcher, page_size: int = None,
                 prefetch_delay: float = None, address_queue=None):
        self.fetch_page = fetch_page
        self.page_size = page_size or Config.PAGE_SIZE
        self.prefetch_delay = (
            Config.PREFETCH_DELAY if prefetch_delay is None else prefetch_delay
        )
        self.address_queue = address_queue
        self.page = 0
        self.has_more = True
        self.last_error: Optional[str] = None
        self._items: list = []
        self._ids: set = set()
        self._loading = False
        self._refreshing = False
        self._prefetch_task: Optional[asyncio.Task] = None

    @property
    def items(self) -> list:
        return list(self._items)

    @property
    def is_loading(self) -> bool:
        return self._loading

    async def load_page(self, page: int) -> bool:
        """Load ``page``; True when it was fetched and applied."""
        if self._loading:
            logger.debug(f"Load of page {page} rejected; a load is running")
            return False

        self._loading = True
        try:
            result = await self.fetch_page(page, self.page_size)
        except CatalogMirrorError as e:
            logger.warning(f"Error loading page {page}: {e}")
            self.last_error = str(e)
            return False
        finally:
            self._loading = False

        self.last_error = None
        added = self._merge(page, result.items)
        self.page = page
        if result.total is not None:
            self.has_more = page * self.page_size < result.total
        else:
            self.has_more = len(result.items) >= self.page_size
        logger.debug(f"Loaded page {page}: {len(added)} new items, "
                     f"has_more={self.has_more}")

        if self.address_queue is not None and added:
            self.address_queue.enqueue_visible(added)
        if not self._refreshing:
            self._schedule_prefetch()
        return True

    def _merge(self, page: int, items: list) -> list:
        """Apply a fetched page; returns the items that are new."""
        if page == 1:
            self._items = []
            self._ids = set()
        added = []
        for item in items:
            if item.id in self._ids:
                continue
            self._ids.add(item.id)
            added.append(item)
        self._items = self._items + added
        return added

    async def refresh(self) -> bool:
        """Reload from page 1; the prefetcher is held off meanwhile."""
        self._cancel_prefetch()
        self._refreshing = True
        try:
            loaded = await self.load_page(1)
        finally:
            self._refreshing = False
        if loaded:
            self._schedule_prefetch()
        return loaded

    # ── Prefetch timer ─────────────────────────────────────────

    def _schedule_prefetch(self):
        self._cancel_prefetch()
        if not self.has_more:
            return
        self._prefetch_task = asyncio.get_running_loop().create_task(
            self._prefetch_after_delay()
        )

    async def _prefetch_after_delay(self):
        await asyncio.sleep(self.prefetch_delay)
        self._prefetch_task = None
        if self.has_more and not self._loading and not self._refreshing:
            await self.load_page(self.page + 1)

    def _cancel_prefetch(self):
        task = self._prefetch_task
        if task is not None and not task.done():
            task.cancel()
        self._prefetch_task = None

    def stop(self):
        """Cancel the pending prefetch, if any."""
        self._cancel_prefetch()

    async def wait_prefetch_idle(self):
        """Wait until the prefetcher has nothing scheduled."""
        while self._prefetch_task is not None:
            task = self._prefetch_task
            try:
                await task
            except asyncio.CancelledError:
                if self._prefetch_task is task:
                    self._prefetch_task = None
