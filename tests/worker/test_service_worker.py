"""
Tests for the service worker event dispatcher.
"""

import json
from unittest.mock import AsyncMock

import pytest

from tests.helpers import API_URL, ORIGIN
from worker.models import FetchRequest, MessageType, SyncItemType
from worker.network import NetworkError
from worker.registration import WorkerState


@pytest.fixture
def static_site(fetcher):
    fetcher.add(f"{ORIGIN}/", body=b"<html>root</html>")
    fetcher.add(f"{ORIGIN}/index.html", body=b"<html>index</html>")
    return fetcher


class TestFetchEvents:
    """Test end-to-end request interception."""

    @pytest.mark.asyncio
    async def test_install_then_serve_index_offline(self, worker, static_site, storage, worker_config):
        await worker.install()
        await worker.activate()

        static = await storage.open(worker_config.static_cache_name)
        assert sorted(await static.keys()) == [f"{ORIGIN}/", f"{ORIGIN}/index.html"]

        static_site.offline = True
        response = await worker.handle_fetch(FetchRequest(url=f"{ORIGIN}/index.html"))

        assert response.status == 200
        assert response.body == b"<html>index</html>"

    @pytest.mark.asyncio
    async def test_dynamic_entry_served_offline(self, worker, fetcher, storage, worker_config):
        url = f"{ORIGIN}/app/unknown"
        fetcher.add(url, body=b"dynamic")

        await worker.handle_fetch(FetchRequest(url=url))
        dynamic = await storage.open(worker_config.dynamic_cache_name)
        assert await dynamic.keys() == [url]

        fetcher.offline = True
        response = await worker.handle_fetch(FetchRequest(url=url))
        assert response.body == b"dynamic"

    @pytest.mark.asyncio
    async def test_non_get_not_intercepted(self, worker, fetcher):
        request = FetchRequest(url=f"{ORIGIN}/api/favorites", method="POST", body=b"{}")

        assert await worker.handle_fetch(request) is None
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_api_offline_returns_503(self, worker, fetcher):
        fetcher.offline = True

        response = await worker.handle_fetch(FetchRequest(url=API_URL))

        assert response.status == 503
        assert response.json_body()["error"] == "Offline"

    @pytest.mark.asyncio
    async def test_dynamic_offline_without_entry_propagates(self, worker, fetcher):
        fetcher.offline = True

        with pytest.raises(NetworkError):
            await worker.handle_fetch(FetchRequest(url=f"{ORIGIN}/app/never-seen"))


class TestMessages:
    """Test messages posted by pages."""

    @pytest.mark.asyncio
    async def test_skip_waiting(self, worker, registration):
        await worker.handle_message(None, {"type": "SKIP_WAITING"})
        assert registration.waiting_skipped is True

    @pytest.mark.asyncio
    async def test_get_metrics_replies_to_sender(self, worker, clients, metrics):
        page = clients.connect(f"{ORIGIN}/")
        other = clients.connect(f"{ORIGIN}/search")
        metrics.increment("cache_hits")

        data = await worker.handle_message(page.id, {"type": "GET_METRICS"})

        assert data["cacheHits"] == 1
        reply = page.drain()
        assert reply[0].type == MessageType.CACHE_METRICS
        assert other.drain() == []

    @pytest.mark.asyncio
    async def test_clear_cache(self, worker, static_site, storage):
        await worker.install()

        deleted = await worker.handle_message(None, {"type": "CLEAR_CACHE"})

        assert len(deleted) == 4
        assert await storage.keys() == []

    @pytest.mark.asyncio
    async def test_preload(self, worker, fetcher):
        fetcher.add(f"{ORIGIN}/books/popular")

        stored = await worker.handle_message(None, {"type": "PRELOAD", "urls": ["/books/popular"]})

        assert stored == 1

    @pytest.mark.asyncio
    async def test_sync_now_replays_queue(self, worker, fetcher, worker_config):
        fetcher.add(worker_config.resolve_url("/api/favorites"), status=201)
        await worker.sync_queue.enqueue(SyncItemType.FAVORITE, {"book_id": "b1"})

        results = await worker.handle_message(None, {"type": "SYNC_NOW", "tag": "background-sync-favorites"})

        assert results[0]["succeeded"] == 1
        assert results[0]["type"] == "favorite"
        posted = fetcher.calls[-1]
        assert posted.method == "POST"
        assert json.loads(posted.body) == {"book_id": "b1"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [[1], "GET_METRICS", None, 42])
    async def test_non_object_message_ignored(self, worker, clients, message):
        page = clients.connect(f"{ORIGIN}/")

        assert await worker.handle_message(page.id, message) is None
        assert page.drain() == []

    @pytest.mark.asyncio
    async def test_unknown_message_ignored(self, worker):
        assert await worker.handle_message(None, {"type": "DANCE"}) is None


class TestOtherEvents:
    """Test sync, push and notification dispatch."""

    @pytest.mark.asyncio
    async def test_sync_event(self, worker, clients):
        page = clients.connect(f"{ORIGIN}/")

        results = await worker.handle_sync("background-sync-books")

        assert results[0].total == 0
        assert page.drain()[0].type == MessageType.BOOKS_SYNCED

    @pytest.mark.asyncio
    async def test_push_click_close(self, worker, clients):
        notification = await worker.handle_push(b'{"title": "New Book", "body": "Check it out"}')
        assert notification.tag == "findbook-notification"

        client = await worker.handle_notification_click(notification.tag)
        assert client.url == "/"

        await worker.handle_push({"title": "Another"})
        await worker.handle_notification_close("findbook-notification")
        assert [e["event"] for e in worker.notifications.events] == ["shown", "clicked", "shown", "closed"]


class TestPeriodicJobs:
    """Test scheduled metrics reports and shutdown."""

    @pytest.mark.asyncio
    async def test_start_and_stop_reporting(self, worker):
        worker.start_reporting()
        try:
            assert worker.scheduler.running
            assert {job.id for job in worker.scheduler.get_jobs()} == {"cache_metrics", "purge_expired"}
        finally:
            worker.stop_reporting()
        assert worker.scheduler is None

    @pytest.mark.asyncio
    async def test_report_metrics(self, worker, clients):
        clients.connect(f"{ORIGIN}/")
        assert await worker.report_metrics() == 1

    @pytest.mark.asyncio
    async def test_close_releases_collaborators(self, worker, fetcher, sync_store):
        fetcher.aclose = AsyncMock()
        sync_store.disconnect = AsyncMock()
        worker.start_reporting()

        await worker.close()

        fetcher.aclose.assert_awaited_once()
        sync_store.disconnect.assert_awaited_once()
        assert worker.scheduler is None

    @pytest.mark.asyncio
    async def test_lifecycle_states(self, worker, static_site, registration):
        assert registration.state == WorkerState.PARSED
        await worker.install()
        assert registration.state == WorkerState.INSTALLED
        await worker.activate()
        assert registration.state == WorkerState.ACTIVATED
