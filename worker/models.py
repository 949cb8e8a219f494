"""
Pydantic models for the offline worker.

This module defines models for:
- Intercepted requests and cached responses
- Background sync queue items and replay results
- Page messages and performance counters
- Push payloads and rendered notifications
"""

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

CACHE_TIME_HEADER = "sw-cache-time"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class PartitionKind(str, Enum):
    """Logical cache partitions a request can be routed to."""
    STATIC = "static"
    DYNAMIC = "dynamic"
    API = "api"
    IMAGE = "image"


class FetchRequest(BaseModel):
    """A request intercepted by the worker."""
    url: str = Field(..., description="Absolute request URL")
    method: str = Field(default="GET", description="HTTP method")
    headers: Dict[str, str] = Field(default_factory=dict, description="Request headers")
    body: Optional[bytes] = Field(default=None, description="Request body")

    @field_validator('method')
    @classmethod
    def normalize_method(cls, v):
        return v.upper()

    @field_validator('headers')
    @classmethod
    def normalize_headers(cls, v):
        return {k.lower(): val for k, val in v.items()}

    @property
    def path(self) -> str:
        return urlparse(self.url).path

    def accepts_html(self) -> bool:
        """True for HTML document requests."""
        return self.path.endswith(".html") or "text/html" in self.headers.get("accept", "")


class FetchResponse(BaseModel):
    """A network or cached response."""
    status: int = Field(default=200, description="HTTP status code")
    headers: Dict[str, str] = Field(default_factory=dict, description="Response headers")
    body: bytes = Field(default=b"", description="Response body")
    url: Optional[str] = Field(default=None, description="URL the response was fetched from")

    @field_validator('headers')
    @classmethod
    def normalize_headers(cls, v):
        return {k.lower(): val for k, val in v.items()}

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json_body(self) -> Any:
        return json.loads(self.body)

    def with_headers(self, **headers: str) -> "FetchResponse":
        """Copy of this response with extra headers merged in."""
        merged = dict(self.headers)
        merged.update({k.replace("_", "-").lower(): v for k, v in headers.items()})
        return self.model_copy(update={"headers": merged})

    def cache_time(self) -> datetime:
        """Write time embedded in the ``sw-cache-time`` header, epoch when absent."""
        raw = self.headers.get(CACHE_TIME_HEADER)
        if not raw:
            return EPOCH
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return EPOCH
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


class CacheEntry(BaseModel):
    """A stored request/response pair."""
    request: FetchRequest
    response: FetchResponse
    stored_at: datetime = Field(default_factory=utcnow)


class SyncItemType(str, Enum):
    """Kinds of mutations that can be queued for replay."""
    BOOK = "book"
    FAVORITE = "favorite"
    PREFERENCE = "preference"


class SyncQueueItem(BaseModel):
    """A deferred mutation recorded for replay once connectivity is restored."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Unique item identifier")
    type: SyncItemType = Field(..., description="Mutation kind")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Mutation body")
    created_at: datetime = Field(default_factory=utcnow)
    attempts: int = Field(default=0, ge=0, description="Failed replay attempts so far")
    last_error: Optional[str] = Field(default=None)


class SyncResult(BaseModel):
    """Outcome of replaying one batch of queued items."""
    tag: str
    type: SyncItemType
    total: int = 0
    succeeded: int = 0
    failed: int = 0


class MessageType(str, Enum):
    """Messages the worker posts to connected pages."""
    CACHE_METRICS = "CACHE_METRICS"
    BOOKS_SYNCED = "BOOKS_SYNCED"
    FAVORITES_SYNCED = "FAVORITES_SYNCED"
    PREFERENCES_SYNCED = "PREFERENCES_SYNCED"


class ClientMessage(BaseModel):
    """Cross-context message posted to a page."""
    type: MessageType
    data: Any = None


class MetricsSnapshot(BaseModel):
    """Point-in-time view of the worker's performance counters."""
    model_config = ConfigDict(populate_by_name=True)

    cache_hits: int = Field(default=0, alias="cacheHits")
    cache_misses: int = Field(default=0, alias="cacheMisses")
    network_requests: int = Field(default=0, alias="networkRequests")
    background_syncs: int = Field(default=0, alias="backgroundSyncs")


class NotificationAction(BaseModel):
    """A button shown on a notification."""
    action: str
    title: str
    icon: Optional[str] = None


class PushPayload(BaseModel):
    """JSON body delivered with a push event."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    title: Optional[str] = None
    body: Optional[str] = None
    image: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    require_interaction: Optional[bool] = Field(default=None, alias="requireInteraction")
    actions: Optional[List[NotificationAction]] = None
    tag: Optional[str] = None
    renotify: Optional[bool] = None
    vibrate: Optional[List[int]] = None


class Notification(BaseModel):
    """A notification as rendered by the host."""
    title: str
    body: str
    icon: Optional[str] = None
    badge: Optional[str] = None
    image: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    tag: str
    actions: List[NotificationAction] = Field(default_factory=list)
    require_interaction: bool = False
    renotify: bool = False
    vibrate: Optional[List[int]] = None
    alerted: bool = Field(default=True, description="Whether showing it alerted the user")
    timestamp: datetime = Field(default_factory=utcnow)
