"""
Named cache partitions.

A partition maps request URLs to stored responses. Each put/match on a
single entry is atomic; overlapping writes to the same entry are
last-write-wins.
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Protocol

import structlog

from worker.models import CacheEntry, FetchRequest, FetchResponse, utcnow
from worker.network import NetworkFetcher

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


class StorageError(Exception):
    """Raised when a partition cannot be opened, read or written."""


class CachePartition(Protocol):
    """Capability interface of a single named partition."""

    name: str

    async def match(self, url: str) -> Optional[FetchResponse]:
        ...

    async def put(self, request: FetchRequest, response: FetchResponse) -> None:
        ...

    async def delete(self, url: str) -> bool:
        ...

    async def keys(self) -> List[str]:
        ...

    async def entries(self) -> List[CacheEntry]:
        ...

    async def add_all(self, urls: Iterable[str], fetcher: NetworkFetcher) -> None:
        ...


class CacheStorage(Protocol):
    """Capability interface of the set of all partitions."""

    async def open(self, name: str) -> CachePartition:
        ...

    async def has(self, name: str) -> bool:
        ...

    async def keys(self) -> List[str]:
        ...

    async def delete(self, name: str) -> bool:
        ...

    async def estimate(self) -> Dict[str, Dict[str, int]]:
        ...


class MemoryPartition:
    """In-memory partition keyed by request URL."""

    def __init__(self, name: str, clock: Clock = utcnow):
        self.name = name
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    async def match(self, url: str) -> Optional[FetchResponse]:
        entry = self._entries.get(url)
        return entry.response if entry else None

    async def put(self, request: FetchRequest, response: FetchResponse) -> None:
        self._entries[request.url] = CacheEntry(
            request=request,
            response=response,
            stored_at=self.clock(),
        )

    async def delete(self, url: str) -> bool:
        return self._entries.pop(url, None) is not None

    async def keys(self) -> List[str]:
        return list(self._entries)

    async def entries(self) -> List[CacheEntry]:
        return list(self._entries.values())

    async def add_all(self, urls: Iterable[str], fetcher: NetworkFetcher) -> None:
        """
        Fetch every URL and store the results, all or nothing.

        Raises:
            StorageError: If any fetch fails or does not return 200
        """
        requests = [FetchRequest(url=url) for url in urls]
        try:
            responses = await asyncio.gather(*(fetcher.fetch(r) for r in requests))
        except Exception as e:
            raise StorageError(f"add_all failed for {self.name}: {e}") from e

        bad = [r.url for r, resp in zip(requests, responses) if resp.status != 200]
        if bad:
            raise StorageError(f"add_all failed for {self.name}: bad status for {bad}")

        for request, response in zip(requests, responses):
            await self.put(request, response)

    def size_bytes(self) -> int:
        return sum(len(e.response.body) for e in self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)


class MemoryCacheStorage:
    """In-memory set of named partitions."""

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock
        self._partitions: Dict[str, MemoryPartition] = {}

    async def open(self, name: str) -> MemoryPartition:
        """Open a partition, creating it if needed."""
        if name not in self._partitions:
            self._partitions[name] = MemoryPartition(name, clock=self.clock)
            logger.debug("Created cache partition", partition=name)
        return self._partitions[name]

    async def has(self, name: str) -> bool:
        return name in self._partitions

    async def keys(self) -> List[str]:
        return list(self._partitions)

    async def delete(self, name: str) -> bool:
        return self._partitions.pop(name, None) is not None

    async def estimate(self) -> Dict[str, Dict[str, int]]:
        """Entry count and body bytes per partition."""
        return {
            name: {"entries": len(p), "bytes": p.size_bytes()}
            for name, p in self._partitions.items()
        }
