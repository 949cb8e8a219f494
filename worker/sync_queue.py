"""
Background sync queue for mutations made while offline.

This module provides:
- Queue stores (in-memory and MongoDB) holding pending items
- The enqueue path used by pages while offline
- Replay of queued items when a sync event fires
- HTTP processors that apply replayed items to the backend
"""

import json
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo.errors import ConnectionFailure

from utilities.logger import WorkerLogger
from worker.metrics import MetricsCollector
from worker.models import (
    ClientMessage,
    FetchRequest,
    MessageType,
    SyncItemType,
    SyncQueueItem,
    SyncResult,
)
from worker.network import NetworkFetcher
from worker.registration import Clients, Registration

logger = structlog.get_logger(__name__)

GENERIC_SYNC_TAG = "background-sync"

SYNC_TAGS: Dict[str, SyncItemType] = {
    "background-sync-books": SyncItemType.BOOK,
    "background-sync-favorites": SyncItemType.FAVORITE,
    "background-sync-preferences": SyncItemType.PREFERENCE,
}

TAG_FOR_TYPE: Dict[SyncItemType, str] = {v: k for k, v in SYNC_TAGS.items()}

SYNCED_MESSAGES: Dict[SyncItemType, MessageType] = {
    SyncItemType.BOOK: MessageType.BOOKS_SYNCED,
    SyncItemType.FAVORITE: MessageType.FAVORITES_SYNCED,
    SyncItemType.PREFERENCE: MessageType.PREFERENCES_SYNCED,
}

ActionProcessor = Callable[[SyncQueueItem], Awaitable[None]]


class SyncProcessingError(Exception):
    """Raised by a processor when a queued item could not be applied."""


class SyncQueueStore(Protocol):
    """Durable storage for pending sync items."""

    async def add(self, item: SyncQueueItem) -> None:
        ...

    async def list(self, item_type: SyncItemType) -> List[SyncQueueItem]:
        ...

    async def update(self, item: SyncQueueItem) -> None:
        ...

    async def remove(self, item_id: str) -> bool:
        ...


class MemorySyncQueueStore:
    """Sync queue store kept in process memory, ordered by insertion."""

    def __init__(self):
        self._items: Dict[str, SyncQueueItem] = {}

    async def add(self, item: SyncQueueItem) -> None:
        self._items[item.id] = item

    async def list(self, item_type: SyncItemType) -> List[SyncQueueItem]:
        return [i for i in self._items.values() if i.type == item_type]

    async def update(self, item: SyncQueueItem) -> None:
        if item.id in self._items:
            self._items[item.id] = item

    async def remove(self, item_id: str) -> bool:
        return self._items.pop(item_id, None) is not None


class MongoSyncQueueStore:
    """
    Sync queue store persisted in a MongoDB collection.
    Items survive worker restarts and are listed oldest first.
    """

    def __init__(self, connection_url: str, database_name: str, collection_name: str):
        """
        Initialize MongoDB store.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
            collection_name: Name of the collection
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.collection_name = collection_name
        self.client: Optional[AsyncIOMotorClient] = None
        self.collection: Optional[AsyncIOMotorCollection] = None

    async def connect(self) -> None:
        """Establish connection to MongoDB and create indexes."""
        try:
            self.client = AsyncIOMotorClient(self.connection_url)
            self.collection = self.client[self.database_name][self.collection_name]
            await self.client.admin.command('ping')
            await self.collection.create_index("id", unique=True)
            await self.collection.create_index([("type", 1), ("created_at", 1)])
            logger.info("Successfully connected to MongoDB",
                        database=self.database_name,
                        collection=self.collection_name)
        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    async def add(self, item: SyncQueueItem) -> None:
        await self.collection.insert_one(item.model_dump(mode="json"))

    async def list(self, item_type: SyncItemType) -> List[SyncQueueItem]:
        cursor = self.collection.find({"type": item_type.value}, {"_id": 0}).sort("created_at", 1)
        return [SyncQueueItem(**doc) async for doc in cursor]

    async def update(self, item: SyncQueueItem) -> None:
        await self.collection.replace_one({"id": item.id}, item.model_dump(mode="json"))

    async def remove(self, item_id: str) -> bool:
        result = await self.collection.delete_one({"id": item_id})
        return result.deleted_count > 0


class HttpActionProcessor:
    """Applies a queued item by POSTing its payload to a backend endpoint."""

    def __init__(self, fetcher: NetworkFetcher, url: str):
        self.fetcher = fetcher
        self.url = url

    async def __call__(self, item: SyncQueueItem) -> None:
        request = FetchRequest(
            url=self.url,
            method="POST",
            headers={"content-type": "application/json", "x-sync-item-id": item.id},
            body=json.dumps(item.payload).encode("utf-8"),
        )
        response = await self.fetcher.fetch(request)
        if not response.ok:
            raise SyncProcessingError(f"{self.url} answered {response.status}")


class BackgroundSyncQueue:
    """Queues offline mutations and replays them when a sync event fires."""

    def __init__(
        self,
        store: SyncQueueStore,
        processors: Dict[SyncItemType, ActionProcessor],
        clients: Clients,
        metrics: MetricsCollector,
        registration: Optional[Registration] = None,
    ):
        """
        Initialize the queue.

        Args:
            store: Durable item storage
            processors: Callable per item type that applies one item
            clients: Connected pages notified after each batch
            metrics: Worker counters
            registration: Host registration used to request sync events
        """
        self.store = store
        self.processors = processors
        self.clients = clients
        self.metrics = metrics
        self.registration = registration
        self.logger = logger.bind(component="background_sync")
        self.worker_logger = WorkerLogger(__name__).bind_context(component="background_sync")

    async def enqueue(self, item_type: SyncItemType, payload: Dict[str, Any]) -> SyncQueueItem:
        """
        Record a mutation for later replay and request a sync event for it.

        Args:
            item_type: Kind of mutation
            payload: Mutation body

        Returns:
            The stored queue item
        """
        item = SyncQueueItem(type=item_type, payload=payload)
        await self.store.add(item)
        if self.registration is not None:
            try:
                await self.registration.register_sync(TAG_FOR_TYPE[item_type])
            except Exception as e:
                self.logger.warning("Background sync registration failed", error=str(e))
        self.logger.info("Queued item for background sync", item_id=item.id, item_type=item_type.value)
        return item

    async def pending(self, item_type: SyncItemType) -> List[SyncQueueItem]:
        return await self.store.list(item_type)

    async def handle_sync(self, tag: str) -> List[SyncResult]:
        """
        Replay the queue(s) a sync tag refers to.

        Args:
            tag: Sync event tag

        Returns:
            One result per replayed item type; empty for unknown tags
        """
        if tag == GENERIC_SYNC_TAG:
            tags = list(SYNC_TAGS)
        elif tag in SYNC_TAGS:
            tags = [tag]
        else:
            self.logger.debug("Ignoring unknown sync tag", tag=tag)
            return []

        results = []
        for item_tag in tags:
            results.append(await self.replay(item_tag))
            if self.registration is not None:
                self.registration.consume_sync_tag(item_tag)
        return results

    async def replay(self, tag: str) -> SyncResult:
        """Apply every queued item of the tag's type, then notify all pages."""
        item_type = SYNC_TAGS[tag]
        result = SyncResult(tag=tag, type=item_type)
        self.logger.info("Performing background sync", tag=tag)

        try:
            items = await self.store.list(item_type)
        except Exception as e:
            self.logger.error("Failed to load sync queue", tag=tag, error=str(e))
            items = []

        processor = self.processors.get(item_type)
        for item in items:
            result.total += 1
            try:
                if processor is None:
                    raise SyncProcessingError(f"No processor for {item_type.value}")
                await processor(item)
                await self.store.remove(item.id)
            except Exception as e:
                result.failed += 1
                self.worker_logger.log_sync_item(item.id, item_type.value, False, str(e))
                await self._record_failure(item, e)
                continue
            result.succeeded += 1
            self.metrics.increment("background_syncs")
            self.worker_logger.log_sync_item(item.id, item_type.value, True)

        await self._notify(result)
        return result

    async def _record_failure(self, item: SyncQueueItem, error: Exception) -> None:
        try:
            await self.store.update(
                item.model_copy(update={"attempts": item.attempts + 1, "last_error": str(error)})
            )
        except Exception as e:
            self.logger.error("Failed to update sync item", item_id=item.id, error=str(e))

    async def _notify(self, result: SyncResult) -> None:
        message = ClientMessage(
            type=SYNCED_MESSAGES[result.type],
            data={"count": result.succeeded, "failed": result.failed},
        )
        for client in self.clients.match_all():
            await client.post_message(message)
        self.logger.info(
            "Background sync completed",
            tag=result.tag,
            total=result.total,
            succeeded=result.succeeded,
            failed=result.failed,
        )


def build_http_processors(fetcher: NetworkFetcher, endpoints: Dict[str, str]) -> Dict[SyncItemType, ActionProcessor]:
    """One HttpActionProcessor per item type with a configured endpoint."""
    return {
        SyncItemType(type_name): HttpActionProcessor(fetcher, url)
        for type_name, url in endpoints.items()
    }
