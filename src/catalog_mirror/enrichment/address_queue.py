"""Bounded-concurrency address resolution for visible catalog records.

All queue state is owned by one ``AddressResolutionQueue`` and mutated
only on the event loop between awaits, so two resolutions finishing in
the same tick cannot interleave their updates.
"""

import asyncio
import logging
from collections import deque
from typing import Callable, Iterable, Optional

from catalog_mirror.config import Config
from catalog_mirror.database.models import CatalogRecord
from catalog_mirror.remote.geocoder import Geocoder
from catalog_mirror.utils.constants import (
    ADDRESS_MIN_LENGTH,
    ADDRESS_NAME_SEPARATOR,
)
from catalog_mirror.utils.formatters import format_coordinates

logger = logging.getLogger(__name__)

NO_ADDRESS = "Address not available"


def parse_address_from_name(name: str) -> Optional[str]:
    """Pull an address out of a 'Name, Street, City, Province, Zip' name.

    Returns None when the name carries nothing that looks like an address.
    """
    parts = (name or "").split(ADDRESS_NAME_SEPARATOR)
    if len(parts) >= 4:
        candidate = ADDRESS_NAME_SEPARATOR.join(parts[1:4])
    elif len(parts) >= 2:
        candidate = ADDRESS_NAME_SEPARATOR.join(parts[1:])
    else:
        return None
    candidate = candidate.strip()
    if len(candidate) > ADDRESS_MIN_LENGTH:
        return candidate
    return None


class AddressResolutionQueue:
    """FIFO of records awaiting an address, drained ``limit`` at a time.

    A record is claimed when queued and stays claimed until its address
    lands in the cache. ``reset`` (or a filter change) drops the queue and
    every claim; resolutions already running are left to finish and still
    write their result, but no longer free a claim.
    """

    def __init__(self, geocoder: Geocoder, limit: int = None):
        self.geocoder = geocoder
        self.limit = limit or Config.ENRICHMENT_CONCURRENCY
        self._queue: deque[CatalogRecord] = deque()
        self._in_flight: set[str] = set()
        self._claimed: set[str] = set()
        self._addresses: dict[str, str] = {}
        self._active = 0
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()
        self._listeners: list[Callable[[str, str], None]] = []
        self._filter: tuple[str, Optional[str]] = ("", None)
        self.max_active_observed = 0

    # ── Read-only views ────────────────────────────────────────

    @property
    def addresses(self) -> dict[str, str]:
        """Snapshot of resolved addresses keyed by record id."""
        return dict(self._addresses)

    def get_address(self, record_id: str) -> Optional[str]:
        return self._addresses.get(record_id)

    @property
    def queued_ids(self) -> list[str]:
        return [r.id for r in self._queue]

    @property
    def in_flight_ids(self) -> set[str]:
        return set(self._in_flight)

    @property
    def active_count(self) -> int:
        return self._active

    def add_listener(self, listener: Callable[[str, str], None]):
        """Call ``listener(record_id, address)`` per resolved address."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ── Enqueue / dispatch ─────────────────────────────────────

    def enqueue_visible(self, records: Iterable[CatalogRecord]) -> int:
        """Queue every record that has no address and no claim yet.

        Returns the number of records newly queued. Must be called from
        within a running event loop.
        """
        added = 0
        for record in records:
            if not record.id:
                continue
            if record.id in self._addresses or record.id in self._claimed:
                continue
            self._claimed.add(record.id)
            self._queue.append(record)
            added += 1
        if added:
            logger.debug(f"Queued {added} records for address resolution")
        self._drain()
        return added

    def _drain(self):
        while self._active < self.limit and self._queue:
            loop = asyncio.get_running_loop()
            record = self._queue.popleft()
            self._active += 1
            self.max_active_observed = max(
                self.max_active_observed, self._active
            )
            self._in_flight.add(record.id)
            task = loop.create_task(self._resolve(record, self._generation))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def _resolve(self, record: CatalogRecord, generation: int):
        try:
            address = await self._lookup(record)
            self._store(record.id, address)
        finally:
            self._active -= 1
            if generation == self._generation:
                self._in_flight.discard(record.id)
                self._claimed.discard(record.id)
            self._drain()

    async def _lookup(self, record: CatalogRecord) -> str:
        parsed = parse_address_from_name(record.name)
        if parsed:
            return parsed
        if not record.has_coordinates:
            # Stored address only stands in when there is nothing to geocode
            return record.address or NO_ADDRESS
        try:
            return await self.geocoder.resolve(
                record.latitude, record.longitude
            )
        except Exception as e:
            logger.warning(f"Geocoding failed for {record.id}: {e}")
            return format_coordinates(record.latitude, record.longitude)

    def _store(self, record_id: str, address: str):
        self._addresses = {**self._addresses, record_id: address}
        for listener in list(self._listeners):
            try:
                listener(record_id, address)
            except Exception as e:
                logger.error(f"Error in address listener: {e}")

    # ── Reset ──────────────────────────────────────────────────

    def reset(self):
        """Drop queued work and all claims; running lookups are kept."""
        dropped = len(self._queue)
        self._queue.clear()
        self._in_flight.clear()
        self._claimed.clear()
        self._generation += 1
        if dropped:
            logger.debug(f"Dropped {dropped} queued address lookups")

    def set_filter(self, search_text: str = "",
                   category: Optional[str] = None) -> bool:
        """Apply the active browse filter; returns True if it changed.

        A change resets the queue and the address cache.
        """
        new_filter = (search_text or "", category)
        if new_filter == self._filter:
            return False
        self._filter = new_filter
        self.reset()
        self._addresses = {}
        return True

    async def wait_idle(self):
        """Wait until nothing is queued or running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
