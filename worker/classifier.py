"""
Request classification into cache partitions.

Rules are kept as an ordered table of (predicate, partition) pairs and
checked top to bottom; the first match wins and anything unmatched falls
through to the dynamic partition.
"""

import re
from typing import Callable, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import structlog

from utilities.config import WorkerConfig
from worker.models import FetchRequest, PartitionKind

logger = structlog.get_logger(__name__)

STATIC_PREFIX = "/assets/"
STATIC_EXTENSIONS = (".css", ".js", ".ico")

Predicate = Callable[[str], bool]


def static_asset_predicate(asset_paths: Iterable[str]) -> Predicate:
    """Match listed asset paths exactly, anything under /assets/, and css/js/ico files."""
    paths = frozenset(urlparse(p).path or "/" for p in asset_paths)

    def predicate(url: str) -> bool:
        path = urlparse(url).path or "/"
        return (
            path in paths
            or path.startswith(STATIC_PREFIX)
            or path.endswith(STATIC_EXTENSIONS)
        )

    return predicate


def pattern_predicate(patterns: Iterable[str]) -> Predicate:
    """Match a URL against any of the given regular expressions."""
    compiled = [re.compile(p) for p in patterns]

    def predicate(url: str) -> bool:
        return any(p.search(url) for p in compiled)

    return predicate


class CacheClassifier:
    """Routes request URLs to cache partitions."""

    def __init__(self, rules: List[Tuple[Predicate, PartitionKind]], default: PartitionKind = PartitionKind.DYNAMIC):
        """
        Initialize the classifier.

        Args:
            rules: Ordered (predicate, partition) pairs
            default: Partition used when no rule matches
        """
        self.rules = list(rules)
        self.default = default

    @classmethod
    def from_config(cls, worker_config: WorkerConfig) -> "CacheClassifier":
        """Build the standard static → api → image → dynamic table."""
        rules: List[Tuple[Predicate, PartitionKind]] = [
            (static_asset_predicate(worker_config.static_assets), PartitionKind.STATIC),
        ]
        # An empty pattern set disables API caching entirely
        if worker_config.api_cache_patterns:
            rules.append((pattern_predicate(worker_config.api_cache_patterns), PartitionKind.API))
        rules.append((pattern_predicate(worker_config.image_cache_patterns), PartitionKind.IMAGE))
        return cls(rules)

    def classify(self, url: str) -> PartitionKind:
        """Return the partition a URL belongs to."""
        for predicate, kind in self.rules:
            if predicate(url):
                return kind
        return self.default

    @staticmethod
    def should_intercept(request: FetchRequest) -> bool:
        """Only GET requests are intercepted."""
        return request.method == "GET"

    def route(self, request: FetchRequest) -> Optional[PartitionKind]:
        """Classify an intercepted request, or None if it passes through."""
        if not self.should_intercept(request):
            return None
        return self.classify(request.url)
