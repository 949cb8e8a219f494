"""
Network access for the worker.

Strategy handlers depend on the NetworkFetcher protocol only, so tests can
swap in fakes; HttpxFetcher is the production implementation.
"""

from typing import Optional, Protocol

import httpx
import structlog

from utilities.config import WorkerConfig
from worker.models import FetchRequest, FetchResponse

logger = structlog.get_logger(__name__)


class NetworkError(Exception):
    """Raised when a request could not be completed over the network."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(f"{message} ({url})")


class NetworkFetcher(Protocol):
    """Capability to perform a request over the network."""

    async def fetch(self, request: FetchRequest) -> FetchResponse:
        ...


class HttpxFetcher:
    """
    NetworkFetcher backed by a shared httpx AsyncClient.
    Non-2xx statuses are returned as responses; only transport failures raise.
    """

    def __init__(self, worker_config: WorkerConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the fetcher.

        Args:
            worker_config: Worker configuration (timeout)
            transport: Optional httpx transport, used by tests
        """
        self.client_config = {
            "timeout": worker_config.request_timeout,
            "follow_redirects": True,
            "limits": httpx.Limits(max_keepalive_connections=20, max_connections=100),
        }
        if transport is not None:
            self.client_config["transport"] = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.logger = logger.bind(component="network_fetcher")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(**self.client_config)
        return self._client

    async def fetch(self, request: FetchRequest) -> FetchResponse:
        """
        Perform a request.

        Args:
            request: Request to send

        Returns:
            FetchResponse with the status, headers and body received

        Raises:
            NetworkError: If the request failed at the transport level
        """
        try:
            response = await self.client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
            )
        except httpx.HTTPError as e:
            self.logger.debug("Fetch failed", url=request.url, error=str(e))
            raise NetworkError(request.url, str(e) or type(e).__name__) from e

        return FetchResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=response.content,
            url=str(response.url),
        )

    async def aclose(self) -> None:
        """Close the underlying client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
