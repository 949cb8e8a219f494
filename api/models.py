"""
API models and schemas for the FastAPI application.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Error envelope returned by every failing endpoint."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error detail")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Worker status")
    timestamp: datetime = Field(..., description="Check time")
    version: str = Field(..., description="Worker cache version")
    worker_state: str = Field(..., description="Registration lifecycle state")
    clients: int = Field(0, description="Connected pages")


class CachesResponse(BaseModel):
    """Cache partitions and their usage."""
    partitions: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    expected: List[str] = Field(default_factory=list, description="Partitions of the current version")


class PreloadRequest(BaseModel):
    """URLs to fetch into the preload partition."""
    urls: List[str] = Field(..., min_length=1)


class EnqueueRequest(BaseModel):
    """Mutation to queue for background sync."""
    payload: Dict[str, Any] = Field(default_factory=dict)


class NotificationClickRequest(BaseModel):
    """Notification click; an empty action is a plain tap."""
    action: str = Field(default="")


class ClientResponse(BaseModel):
    """A connected page."""
    id: str
    url: str
    focused: bool
    controlled: bool
