"""
Test doubles shared across the test suite.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

from worker.models import FetchRequest, FetchResponse
from worker.network import NetworkError

ORIGIN = "https://findbook.test"
API_URL = "https://www.googleapis.com/books/v1/volumes?q=dune"
COVER_URL = "https://books.google.com/books/content?id=abc&printsec=frontcover&img=1"


class FakeFetcher:
    """NetworkFetcher serving canned responses keyed by URL."""

    def __init__(self):
        self.responses: Dict[str, FetchResponse] = {}
        self.failing: Set[str] = set()
        self.offline = False
        self.calls: List[FetchRequest] = []

    def add(self, url: str, body: bytes = b"ok", status: int = 200, headers: Optional[Dict[str, str]] = None):
        self.responses[url] = FetchResponse(status=status, headers=headers or {}, body=body, url=url)

    def fail(self, url: str):
        self.failing.add(url)

    async def fetch(self, request: FetchRequest) -> FetchResponse:
        self.calls.append(request)
        if self.offline or request.url in self.failing:
            raise NetworkError(request.url, "Failed to fetch")
        response = self.responses.get(request.url)
        if response is None:
            return FetchResponse(status=404, body=b"not found", url=request.url)
        return response

    def urls(self) -> List[str]:
        return [c.url for c in self.calls]


class FakeClock:
    """Controllable time source."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
