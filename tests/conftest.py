"""
Pytest fixtures for RankKeeper tests.

Stores are in-memory and the catalog client is a mock, so nothing here
touches the network or sleeps.
"""

from unittest.mock import MagicMock

import pytest

from rankkeeper.collection import TrackedAppCollection
from rankkeeper.refresh import RankingRefresher
from rankkeeper.runtime import build_runtime
from rankkeeper.services import AppStoreClient
from rankkeeper.status import ActivityStatus
from rankkeeper.stores import MemoryKeyValueStore
from rankkeeper.sync import SyncOrchestrator


@pytest.fixture
def local_store():
    return MemoryKeyValueStore(name="local")


@pytest.fixture
def remote_store():
    return MemoryKeyValueStore(name="remote")


@pytest.fixture
def fake_client():
    """Catalog client double: no app ranks and no lookup result by default."""
    client = MagicMock(spec=AppStoreClient)
    client.find_app_rank.return_value = None
    client.lookup_by_id.return_value = None
    client.search_apps.return_value = []
    client.fetch_reviews.return_value = []
    return client


@pytest.fixture
def status():
    return ActivityStatus()


@pytest.fixture
def collection(local_store, status):
    return TrackedAppCollection(local_store, default_country="us", status=status)


@pytest.fixture
def orchestrator(collection, remote_store):
    return SyncOrchestrator(collection, remote_store)


@pytest.fixture
def waits():
    """Records every rate-limit pause instead of sleeping."""
    return []


@pytest.fixture
def refresher(collection, fake_client, orchestrator, waits):
    def record_wait(token, seconds):
        waits.append(seconds)
        return token.cancelled

    return RankingRefresher(
        collection, fake_client, orchestrator=orchestrator, delay=0.5, wait=record_wait,
    )


@pytest.fixture
def runtime(local_store, remote_store, fake_client):
    """A full runtime over memory stores, installed in the Django app config."""
    from django.apps import apps

    rt = build_runtime(
        local_store=local_store, remote_store=remote_store, client=fake_client, delay=0,
    )
    config = apps.get_app_config("rankkeeper")
    previous = config.runtime
    config.runtime = rt
    yield rt
    config.runtime = previous
