"""
Offline caching worker.

Dispatches the worker's events to the component that owns them:
- fetch → classifier → strategy handler
- install / activate → lifecycle manager
- sync → background sync queue
- push / notification click / close → notification relay
- page messages → skip waiting, metrics, cache maintenance, sync
Periodic metrics reports and expired-entry purges run on APScheduler.
"""

from typing import Any, Dict, List, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from utilities.config import WorkerConfig
from worker.classifier import CacheClassifier
from worker.lifecycle import LifecycleManager
from worker.metrics import MetricsCollector
from worker.models import FetchRequest, FetchResponse, Notification, SyncResult, utcnow
from worker.network import HttpxFetcher, NetworkFetcher
from worker.notifications import NotificationRelay, PushData
from worker.registration import Client, Clients, Registration
from worker.storage import CacheStorage, Clock, MemoryCacheStorage
from worker.strategies import StrategyRouter
from worker.sync_queue import (
    GENERIC_SYNC_TAG,
    SYNC_TAGS,
    BackgroundSyncQueue,
    MemorySyncQueueStore,
    MongoSyncQueueStore,
    SyncQueueStore,
    build_http_processors,
)

logger = structlog.get_logger(__name__)


class ServiceWorker:
    """Event dispatcher composing the worker's components."""

    def __init__(
        self,
        worker_config: WorkerConfig,
        storage: CacheStorage,
        fetcher: NetworkFetcher,
        sync_store: SyncQueueStore,
        registration: Optional[Registration] = None,
        clients: Optional[Clients] = None,
        metrics: Optional[MetricsCollector] = None,
        processors: Optional[Dict] = None,
        clock: Clock = utcnow,
    ):
        """
        Initialize the worker.

        Args:
            worker_config: Worker configuration
            storage: Cache storage holding all partitions
            fetcher: Network fetcher
            sync_store: Storage of queued offline mutations
            registration: Host registration (created if omitted)
            clients: Connected pages (created if omitted)
            metrics: Performance counters (created if omitted)
            processors: Sync action processors per item type; HTTP
                processors for the configured endpoints if omitted
            clock: Source of the current time
        """
        self.config = worker_config
        self.storage = storage
        self.fetcher = fetcher
        self.registration = registration or Registration()
        self.clients = clients or Clients()
        self.metrics = metrics or MetricsCollector()
        self.logger = logger.bind(component="service_worker")

        if processors is None:
            endpoints = {k: worker_config.resolve_url(v) for k, v in worker_config.sync_endpoints.items()}
            processors = build_http_processors(fetcher, endpoints)

        self.classifier = CacheClassifier.from_config(worker_config)
        self.router = StrategyRouter.from_config(worker_config, storage, fetcher, self.metrics, clock=clock)
        self.lifecycle = LifecycleManager(
            worker_config, storage, fetcher, self.registration, self.clients,
            sync_tags=list(SYNC_TAGS), clock=clock,
        )
        self.sync_queue = BackgroundSyncQueue(
            sync_store, processors, self.clients, self.metrics, registration=self.registration,
        )
        self.notifications = NotificationRelay(worker_config, self.registration, self.clients)
        self.scheduler: Optional[AsyncIOScheduler] = None

    # Lifecycle

    async def install(self) -> None:
        await self.lifecycle.install()

    async def activate(self) -> List[str]:
        return await self.lifecycle.activate()

    # Fetch

    async def handle_fetch(self, request: FetchRequest) -> Optional[FetchResponse]:
        """
        Handle an intercepted request.

        Args:
            request: The request

        Returns:
            The response to serve, or None for requests the worker does not
            intercept (the host then performs them untouched)

        Raises:
            NetworkError: When the network failed and no fallback exists
        """
        kind = self.classifier.route(request)
        if kind is None:
            return None
        return await self.router.handle(kind, request)

    async def wait_for_background_tasks(self) -> None:
        await self.router.wait_for_background_tasks()

    # Background sync

    async def handle_sync(self, tag: str) -> List[SyncResult]:
        return await self.sync_queue.handle_sync(tag)

    # Notifications

    async def handle_push(self, data: PushData) -> Optional[Notification]:
        return await self.notifications.push(data)

    async def handle_notification_click(self, tag: str, action: str = "") -> Optional[Client]:
        return await self.notifications.click(tag, action)

    async def handle_notification_close(self, tag: str) -> None:
        await self.notifications.close(tag)

    # Page messages

    async def handle_message(self, client_id: Optional[str], message: Any) -> Any:
        """
        Handle a message posted by a page.

        Supported types: SKIP_WAITING, GET_METRICS, CLEAR_CACHE, PRELOAD
        (with ``urls``) and SYNC_NOW (with an optional ``tag``). Messages
        that are not JSON objects are ignored.
        """
        if not isinstance(message, dict):
            self.logger.warning("Ignoring malformed message", client_id=client_id, message_kind=type(message).__name__)
            return None

        message_type = message.get("type")
        self.logger.debug("Message received", client_id=client_id, message_type=message_type)

        if message_type == "SKIP_WAITING":
            self.registration.skip_waiting()
            return None
        if message_type == "GET_METRICS":
            client = self.clients.get(client_id) if client_id else None
            reply = self.metrics.message()
            if client is not None:
                await client.post_message(reply)
            return reply.data
        if message_type == "CLEAR_CACHE":
            return await self.lifecycle.clear_caches()
        if message_type == "PRELOAD":
            return await self.lifecycle.preload(message.get("urls", []))
        if message_type == "SYNC_NOW":
            results = await self.handle_sync(message.get("tag", GENERIC_SYNC_TAG))
            return [r.model_dump(mode="json") for r in results]

        self.logger.warning("Unknown message type", message_type=message_type)
        return None

    # Periodic jobs

    async def report_metrics(self) -> int:
        return await self.metrics.report(self.clients)

    def start_reporting(self) -> None:
        """Schedule periodic metrics reports and expired-entry purges."""
        if self.scheduler is not None and self.scheduler.running:
            return
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.scheduler.add_job(
            self.report_metrics,
            IntervalTrigger(seconds=self.config.metrics_report_interval_seconds),
            id="cache_metrics",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.add_job(
            self.lifecycle.purge_expired,
            IntervalTrigger(seconds=self.config.expired_purge_interval_seconds),
            id="purge_expired",
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        self.logger.info(
            "Periodic jobs started",
            metrics_interval=self.config.metrics_report_interval_seconds,
            purge_interval=self.config.expired_purge_interval_seconds,
        )

    def stop_reporting(self) -> None:
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None

    async def close(self) -> None:
        """Stop periodic jobs, wait for background refreshes, release network and storage."""
        self.stop_reporting()
        await self.wait_for_background_tasks()
        aclose = getattr(self.fetcher, "aclose", None)
        if aclose is not None:
            await aclose()
        disconnect = getattr(self.sync_queue.store, "disconnect", None)
        if disconnect is not None:
            await disconnect()


async def create_worker(worker_config: WorkerConfig) -> ServiceWorker:
    """
    Build a worker with the production collaborators.

    Connects the MongoDB sync store when configured.
    """
    if worker_config.sync_store == "mongodb":
        sync_store = MongoSyncQueueStore(
            connection_url=worker_config.mongodb_url,
            database_name=worker_config.mongodb_database,
            collection_name=worker_config.mongodb_collection,
        )
        await sync_store.connect()
    else:
        sync_store = MemorySyncQueueStore()

    return ServiceWorker(
        worker_config,
        storage=MemoryCacheStorage(),
        fetcher=HttpxFetcher(worker_config),
        sync_store=sync_store,
    )
