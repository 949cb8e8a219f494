"""
Cache lifecycle management.

This module provides:
- Install: create partitions, precache static assets, register sync and
  check the push subscription, then take control at once
- Activate: delete superseded partitions and claim open pages
- Maintenance: clear all caches, preload URLs, purge expired entries
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import structlog

from utilities.config import WorkerConfig
from utilities.logger import WorkerLogger
from worker.models import FetchRequest, utcnow
from worker.network import NetworkError, NetworkFetcher
from worker.registration import Clients, Registration, WorkerState
from worker.storage import CacheStorage, Clock

logger = structlog.get_logger(__name__)


class LifecycleError(Exception):
    """Raised when lifecycle phases are requested out of order."""


class LifecycleManager:
    """Creates, cleans up and maintains the worker's cache partitions."""

    def __init__(
        self,
        worker_config: WorkerConfig,
        storage: CacheStorage,
        fetcher: NetworkFetcher,
        registration: Registration,
        clients: Clients,
        sync_tags: Iterable[str] = (),
        clock: Clock = utcnow,
    ):
        """
        Initialize lifecycle manager.

        Args:
            worker_config: Worker configuration
            storage: Cache storage holding all partitions
            fetcher: Network fetcher used for precaching
            registration: Host registration of this worker
            clients: Connected pages
            sync_tags: Background sync tags registered on install
            clock: Source of the current time
        """
        self.config = worker_config
        self.storage = storage
        self.fetcher = fetcher
        self.registration = registration
        self.clients = clients
        self.sync_tags = list(sync_tags)
        self.clock = clock
        self.logger = logger.bind(component="lifecycle")
        self.worker_logger = WorkerLogger(__name__).bind_context(component="lifecycle")

    @property
    def prefix(self) -> str:
        return f"{self.config.cache_prefix}-"

    async def install(self) -> None:
        """Prepare partitions and take control; precache and registration steps are best-effort."""
        self.registration.state = WorkerState.INSTALLING
        self.logger.info("Install event", version=self.config.cache_version)

        for name in self.config.partition_names():
            await self.storage.open(name)

        await self._precache_static_assets()
        await self._register_background_sync()
        await self._check_push_subscription()

        self.registration.skip_waiting()
        self.registration.state = WorkerState.INSTALLED
        self.logger.info("Install completed")

    async def _precache_static_assets(self) -> None:
        urls = [self.config.resolve_url(path) for path in self.config.static_assets]
        try:
            partition = await self.storage.open(self.config.static_cache_name)
            await partition.add_all(urls, self.fetcher)
            self.logger.info("Static assets cached successfully", count=len(urls))
        except Exception as e:
            self.logger.error("Failed to cache static assets", error=str(e))

    async def _register_background_sync(self) -> None:
        for tag in self.sync_tags:
            try:
                await self.registration.register_sync(tag)
            except Exception as e:
                self.logger.warning("Background sync registration failed", tag=tag, error=str(e))

    async def _check_push_subscription(self) -> None:
        try:
            subscription = await self.registration.get_push_subscription()
            self.logger.info("Push subscription checked", subscribed=subscription is not None)
        except Exception as e:
            self.logger.warning("Push subscription check failed", error=str(e))

    async def activate(self) -> List[str]:
        """
        Delete partitions left over from previous versions and claim all pages.

        Returns:
            Names of the deleted partitions
        """
        if self.registration.state not in (WorkerState.INSTALLED, WorkerState.ACTIVATED):
            raise LifecycleError(f"Cannot activate from state {self.registration.state.value}")

        self.registration.state = WorkerState.ACTIVATING
        self.logger.info("Activate event", version=self.config.cache_version)

        current = set(self.config.partition_names())
        deleted = []
        for name in await self.storage.keys():
            if name.startswith(self.prefix) and name not in current:
                self.worker_logger.log_partition_deleted(name)
                await self.storage.delete(name)
                deleted.append(name)

        claimed = await self.clients.claim()
        self.registration.state = WorkerState.ACTIVATED
        self.logger.info("Cache cleanup completed", deleted=deleted, clients_claimed=claimed)
        return deleted

    async def clear_caches(self) -> List[str]:
        """Delete every partition owned by the application."""
        deleted = []
        for name in await self.storage.keys():
            if name.startswith(self.prefix):
                await self.storage.delete(name)
                deleted.append(name)
        self.logger.info("All caches cleared", deleted=deleted)
        return deleted

    async def preload(self, urls: Iterable[str]) -> int:
        """
        Fetch critical resources into the preload partition.

        Args:
            urls: Absolute or site-relative URLs

        Returns:
            Number of resources stored
        """
        partition = await self.storage.open(self.config.preload_cache_name)
        stored = 0
        for url in urls:
            request = FetchRequest(url=self.config.resolve_url(url))
            try:
                response = await self.fetcher.fetch(request)
            except NetworkError as e:
                self.logger.warning("Failed to preload", url=request.url, error=str(e))
                continue
            if response.ok:
                await partition.put(request, response)
                stored += 1
        self.logger.info("Preloaded resources", count=stored)
        return stored

    def _max_ages(self) -> Dict[str, timedelta]:
        # Static entries are precached and API entries back stale-if-error,
        # so neither is purged by age.
        return {
            self.config.dynamic_cache_name: timedelta(seconds=self.config.cache_max_age_seconds),
            self.config.image_cache_name: timedelta(seconds=self.config.image_cache_max_age_seconds),
        }

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete dynamic and image entries older than their partition's max age."""
        now = now or self.clock()
        removed = 0
        for name, max_age in self._max_ages().items():
            if not await self.storage.has(name):
                continue
            partition = await self.storage.open(name)
            for entry in await partition.entries():
                if now - entry.stored_at > max_age:
                    await partition.delete(entry.request.url)
                    removed += 1
        if removed:
            self.logger.info("Purged expired cache entries", removed=removed)
        return removed
