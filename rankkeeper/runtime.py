"""
Wiring: builds the collection owner, stores, client, orchestrator and
refresher and hands them around as one bundle.

Nothing here is a hidden global: the Django app config holds the bundle
it builds, and tests build their own with fake stores and clients.
"""

import logging
from dataclasses import dataclass

from django.conf import settings

from .collection import TrackedAppCollection
from .refresh import RankingRefresher
from .search import SearchSession
from .services import AppStoreClient
from .status import ActivityStatus
from .stores import DatabaseKeyValueStore, FileKeyValueStore
from .sync import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    collection: TrackedAppCollection
    orchestrator: SyncOrchestrator
    refresher: RankingRefresher
    client: AppStoreClient
    search: SearchSession
    status: ActivityStatus

    @property
    def local_store(self):
        return self.collection.store

    @property
    def remote_store(self):
        return self.orchestrator.remote_store


def default_remote_store():
    directory = getattr(settings, "RANKKEEPER_REMOTE_DIR", None)
    if not directory:
        logger.info("No remote store configured; syncing locally only.")
        return None
    return FileKeyValueStore(
        directory,
        quota_bytes=getattr(settings, "RANKKEEPER_REMOTE_QUOTA_BYTES", None),
    )


def build_runtime(local_store=None, remote_store=None, client=None, load: bool = True, **refresher_options) -> Runtime:
    """
    Assemble a runtime.  Missing pieces come from settings.

    ``load`` reads the local store immediately; pass False when the
    database is not ready yet.
    """
    status = ActivityStatus()
    collection = TrackedAppCollection(
        local_store if local_store is not None else DatabaseKeyValueStore(),
        default_country=getattr(settings, "RANKKEEPER_DEFAULT_COUNTRY", "us"),
        status=status,
        tombstone_retention_days=getattr(settings, "RANKKEEPER_TOMBSTONE_RETENTION_DAYS", 90),
    )
    if load:
        collection.load()

    if remote_store is None:
        remote_store = default_remote_store()
    client = client or AppStoreClient()
    orchestrator = SyncOrchestrator(collection, remote_store)
    refresher = RankingRefresher(collection, client, orchestrator=orchestrator, **refresher_options)

    return Runtime(
        collection=collection,
        orchestrator=orchestrator,
        refresher=refresher,
        client=client,
        search=SearchSession(client),
        status=status,
    )
