"""
Pytest configuration and shared fixtures.
"""

import pytest

from tests.helpers import ORIGIN, FakeClock, FakeFetcher
from utilities.config import WorkerConfig
from worker.metrics import MetricsCollector
from worker.registration import Clients, Registration
from worker.service_worker import ServiceWorker
from worker.storage import MemoryCacheStorage
from worker.sync_queue import MemorySyncQueueStore


@pytest.fixture
def worker_config():
    """Worker configuration pointing at a test origin."""
    return WorkerConfig(
        origin=ORIGIN,
        static_assets=["/", "/index.html"],
        sync_store="memory",
        log_level="DEBUG",
    )


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(clock):
    return MemoryCacheStorage(clock=clock)


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def registration():
    return Registration()


@pytest.fixture
def clients():
    return Clients()


@pytest.fixture
def sync_store():
    return MemorySyncQueueStore()


@pytest.fixture
def worker(worker_config, storage, fetcher, sync_store, registration, clients, metrics, clock):
    """Service worker wired to in-memory fakes."""
    return ServiceWorker(
        worker_config,
        storage=storage,
        fetcher=fetcher,
        sync_store=sync_store,
        registration=registration,
        clients=clients,
        metrics=metrics,
        clock=clock,
    )


@pytest.fixture
def origin_url(worker_config):
    """Resolve a site path against the test origin."""
    return worker_config.resolve_url
