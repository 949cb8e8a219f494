"""
Caching strategies applied to intercepted requests.

This module provides:
- Cache-First for static assets and images
- Stale-While-Revalidate for API responses
- Network-First for everything else
- A router from partition kind to handler

Cache reads and writes are best-effort: a storage failure is logged and
treated as a miss or a skipped write. Network failures are recovered from
the cache or a synthesized fallback and only propagate when neither exists.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Dict, Optional, Set

import structlog

from utilities.config import WorkerConfig
from utilities.logger import WorkerLogger
from worker.metrics import MetricsCollector
from worker.models import (
    CACHE_TIME_HEADER,
    FetchRequest,
    FetchResponse,
    PartitionKind,
    utcnow,
)
from worker.network import NetworkError, NetworkFetcher
from worker.offline import offline_api_response, offline_page_response
from worker.storage import CachePartition, CacheStorage, Clock

logger = structlog.get_logger(__name__)


class StrategyHandler:
    """Base class holding the collaborators every strategy needs."""

    def __init__(
        self,
        partition_name: str,
        storage: CacheStorage,
        fetcher: NetworkFetcher,
        metrics: MetricsCollector,
    ):
        self.partition_name = partition_name
        self.storage = storage
        self.fetcher = fetcher
        self.metrics = metrics
        self.worker_logger = WorkerLogger(__name__).bind_context(strategy=type(self).__name__)

    async def handle(self, request: FetchRequest) -> FetchResponse:
        raise NotImplementedError

    async def _open(self) -> Optional[CachePartition]:
        try:
            return await self.storage.open(self.partition_name)
        except Exception as e:
            self.worker_logger.log_storage_failure("open", self.partition_name, str(e))
            return None

    async def _match(self, request: FetchRequest) -> Optional[FetchResponse]:
        partition = await self._open()
        if partition is None:
            return None
        try:
            return await partition.match(request.url)
        except Exception as e:
            self.worker_logger.log_storage_failure("match", self.partition_name, str(e))
            return None

    async def _put(self, request: FetchRequest, response: FetchResponse) -> None:
        partition = await self._open()
        if partition is None:
            return
        try:
            await partition.put(request, response)
        except Exception as e:
            self.worker_logger.log_storage_failure("put", self.partition_name, str(e))

    async def _fetch(self, request: FetchRequest) -> FetchResponse:
        self.metrics.increment("network_requests")
        return await self.fetcher.fetch(request)

    def _hit(self, request: FetchRequest, response: FetchResponse, stale: bool = False) -> FetchResponse:
        self.metrics.increment("cache_hits")
        self.worker_logger.log_cache_hit(self.partition_name, request.url, stale=stale)
        return response


class CacheFirstStrategy(StrategyHandler):
    """
    Serve from the partition when present, otherwise fetch and store.

    On network failure the partition is checked once more; images fall back
    to a placeholder and HTML documents to the offline page.
    """

    def __init__(
        self,
        partition_name: str,
        storage: CacheStorage,
        fetcher: NetworkFetcher,
        metrics: MetricsCollector,
        app_name: str = "FindBook",
        placeholder_url: Optional[str] = None,
        placeholder_partition: Optional[str] = None,
    ):
        super().__init__(partition_name, storage, fetcher, metrics)
        self.app_name = app_name
        self.placeholder_url = placeholder_url
        self.placeholder_partition = placeholder_partition

    async def handle(self, request: FetchRequest) -> FetchResponse:
        cached = await self._match(request)
        if cached is not None:
            return self._hit(request, cached)

        self.metrics.increment("cache_misses")
        self.worker_logger.log_cache_miss(self.partition_name, request.url)

        try:
            response = await self._fetch(request)
        except NetworkError as e:
            return await self._fallback(request, e)

        if response.status == 200:
            await self._put(request, response)
        return response

    async def _fallback(self, request: FetchRequest, error: NetworkError) -> FetchResponse:
        cached = await self._match(request)
        if cached is not None:
            self.worker_logger.log_network_failure(request.url, str(error), fallback="cache")
            return self._hit(request, cached, stale=True)

        if self.placeholder_url:
            self.worker_logger.log_network_failure(request.url, str(error), fallback="placeholder")
            return await self._placeholder(error)

        if request.accepts_html():
            self.worker_logger.log_network_failure(request.url, str(error), fallback="offline_page")
            return offline_page_response(self.app_name)

        self.worker_logger.log_network_failure(request.url, str(error))
        raise error

    async def _placeholder(self, error: NetworkError) -> FetchResponse:
        placeholder_request = FetchRequest(url=self.placeholder_url)
        if self.placeholder_partition:
            try:
                partition = await self.storage.open(self.placeholder_partition)
                cached = await partition.match(self.placeholder_url)
            except Exception as e:
                self.worker_logger.log_storage_failure("match", self.placeholder_partition, str(e))
                cached = None
            if cached is not None:
                return cached
        try:
            return await self._fetch(placeholder_request)
        except NetworkError:
            raise error


class StaleWhileRevalidateStrategy(StrategyHandler):
    """
    Serve fresh cached API responses at once and refresh them in the background.

    Entries older than ``max_age`` are refetched synchronously; if that fails
    the stale entry is still served, and with no entry at all a 503 JSON body
    describes the offline condition.
    """

    def __init__(
        self,
        partition_name: str,
        storage: CacheStorage,
        fetcher: NetworkFetcher,
        metrics: MetricsCollector,
        max_age: timedelta = timedelta(minutes=15),
        clock: Clock = utcnow,
    ):
        super().__init__(partition_name, storage, fetcher, metrics)
        self.max_age = max_age
        self.clock = clock
        self._background: Set[asyncio.Task] = set()

    def is_fresh(self, response: FetchResponse, now: Optional[datetime] = None) -> bool:
        now = now or self.clock()
        return now - response.cache_time() <= self.max_age

    async def handle(self, request: FetchRequest) -> FetchResponse:
        cached = await self._match(request)

        if cached is not None and self.is_fresh(cached):
            self._revalidate(request)
            return self._hit(request, cached)

        self.metrics.increment("cache_misses")
        self.worker_logger.log_cache_miss(self.partition_name, request.url)

        try:
            response = await self._fetch(request)
        except NetworkError as e:
            if cached is not None:
                self.worker_logger.log_network_failure(request.url, str(e), fallback="stale_cache")
                return self._hit(request, cached, stale=True)
            self.worker_logger.log_network_failure(request.url, str(e), fallback="offline_503")
            return offline_api_response()

        if response.status == 200:
            await self._store(request, response)
        return response

    async def _store(self, request: FetchRequest, response: FetchResponse) -> None:
        stamped = response.with_headers(**{CACHE_TIME_HEADER: self.clock().isoformat()})
        await self._put(request, stamped)

    def _revalidate(self, request: FetchRequest) -> None:
        task = asyncio.create_task(self._refresh(request))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh(self, request: FetchRequest) -> None:
        try:
            response = await self._fetch(request)
            if response.status == 200:
                await self._store(request, response)
        except Exception as e:
            # Background refresh failures never reach the caller
            logger.debug("Background refresh failed", url=request.url, error=str(e))

    async def wait_for_background_tasks(self) -> None:
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


class NetworkFirstStrategy(StrategyHandler):
    """Always try the network; fall back to the partition when it fails."""

    async def handle(self, request: FetchRequest) -> FetchResponse:
        try:
            response = await self._fetch(request)
        except NetworkError as e:
            cached = await self._match(request)
            if cached is not None:
                self.worker_logger.log_network_failure(request.url, str(e), fallback="cache")
                return self._hit(request, cached, stale=True)
            self.metrics.increment("cache_misses")
            self.worker_logger.log_network_failure(request.url, str(e))
            raise

        if response.status == 200:
            await self._put(request, response)
        return response


class StrategyRouter:
    """Maps each partition kind to the handler that serves it."""

    def __init__(self, handlers: Dict[PartitionKind, StrategyHandler]):
        self.handlers = handlers

    @classmethod
    def from_config(
        cls,
        worker_config: WorkerConfig,
        storage: CacheStorage,
        fetcher: NetworkFetcher,
        metrics: MetricsCollector,
        clock: Clock = utcnow,
    ) -> "StrategyRouter":
        return cls({
            PartitionKind.STATIC: CacheFirstStrategy(
                worker_config.static_cache_name, storage, fetcher, metrics,
                app_name=worker_config.app_name,
            ),
            PartitionKind.IMAGE: CacheFirstStrategy(
                worker_config.image_cache_name, storage, fetcher, metrics,
                app_name=worker_config.app_name,
                placeholder_url=worker_config.resolve_url(worker_config.placeholder_image),
                placeholder_partition=worker_config.static_cache_name,
            ),
            PartitionKind.API: StaleWhileRevalidateStrategy(
                worker_config.api_cache_name, storage, fetcher, metrics,
                max_age=timedelta(seconds=worker_config.api_cache_max_age_seconds),
                clock=clock,
            ),
            PartitionKind.DYNAMIC: NetworkFirstStrategy(
                worker_config.dynamic_cache_name, storage, fetcher, metrics,
            ),
        })

    async def handle(self, kind: PartitionKind, request: FetchRequest) -> FetchResponse:
        return await self.handlers[kind].handle(request)

    async def wait_for_background_tasks(self) -> None:
        for handler in self.handlers.values():
            if isinstance(handler, StaleWhileRevalidateStrategy):
                await handler.wait_for_background_tasks()
