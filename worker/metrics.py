"""
Performance counters scoped to a single worker instance.
"""

from typing import Dict

import structlog

from worker.models import ClientMessage, MessageType, MetricsSnapshot

logger = structlog.get_logger(__name__)

COUNTERS = ("cache_hits", "cache_misses", "network_requests", "background_syncs")


class MetricsCollector:
    """Counts cache hits, misses, network requests and replayed sync items."""

    def __init__(self):
        self._counters: Dict[str, int] = {name: 0 for name in COUNTERS}
        self.logger = logger.bind(component="metrics")

    def increment(self, name: str, by: int = 1) -> None:
        if name not in self._counters:
            raise KeyError(f"Unknown counter: {name}")
        self._counters[name] += by

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(**self._counters)

    def message(self) -> ClientMessage:
        return ClientMessage(
            type=MessageType.CACHE_METRICS,
            data=self.snapshot().model_dump(by_alias=True),
        )

    async def report(self, clients) -> int:
        """
        Post the current counters to every connected page.

        Args:
            clients: Clients registry

        Returns:
            Number of pages the report was sent to
        """
        message = self.message()
        targets = clients.match_all()
        for client in targets:
            await client.post_message(message)
        self.logger.debug("Reported cache metrics", clients=len(targets), **message.data)
        return len(targets)
