"""CatalogEngine — one explicitly constructed owner of every collaborator."""

import logging

from catalog_mirror.cache.download_manager import CacheDownloadManager
from catalog_mirror.config import Config
from catalog_mirror.database.connection import DatabaseConnection
from catalog_mirror.database.kv_store import KeyValueStore
from catalog_mirror.database.repository import LocalStore
from catalog_mirror.database.schema import initialize_database
from catalog_mirror.enrichment.address_queue import AddressResolutionQueue
from catalog_mirror.loading.paginated_loader import (
    PaginatedLoader,
    remote_page_fetcher,
)
from catalog_mirror.remote.client import RemoteClient, RestRemoteClient
from catalog_mirror.remote.geocoder import Geocoder, HttpGeocoder
from catalog_mirror.sync.connectivity import ConnectivityMonitor
from catalog_mirror.sync.sync_coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


class CatalogEngine:
    """Wires the local store, remote, geocoder and the services on top.

    Tests build one around an in-memory database and fakes; the CLI uses
    :meth:`from_config`.
    """

    def __init__(self, db: DatabaseConnection, remote: RemoteClient,
                 geocoder: Geocoder, probe=None):
        initialize_database(db)
        self.db = db
        self.remote = remote
        self.geocoder = geocoder
        self.store = LocalStore(db)
        self.kv = KeyValueStore(db)
        self.sync = SyncCoordinator(self.store, remote)
        self.connectivity = ConnectivityMonitor(self.sync, probe=probe)
        self.cache = CacheDownloadManager(remote, self.kv, store=self.store)
        self.addresses = AddressResolutionQueue(geocoder)

    @classmethod
    def from_config(cls) -> "CatalogEngine":
        db = DatabaseConnection(Config.DATABASE_PATH)
        return cls(db, RestRemoteClient(), HttpGeocoder())

    def create_loader(self, filters: dict = None) -> PaginatedLoader:
        """Remote-backed loader that feeds new items to the address queue."""
        return PaginatedLoader(
            remote_page_fetcher(self.remote, filters=filters),
            address_queue=self.addresses,
        )

    async def aclose(self):
        for resource in (self.remote, self.geocoder):
            close = getattr(resource, "aclose", None)
            if close is not None:
                await close()
        self.db.close()
        logger.debug("Engine closed")
