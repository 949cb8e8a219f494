"""
Tests for the push notification relay.
"""

import json

import pytest

from tests.helpers import ORIGIN
from worker.metrics import MetricsCollector
from worker.models import PushPayload
from worker.notifications import DISMISS_ACTION, EVENT_HISTORY_LIMIT, VIEW_ACTION, NotificationRelay


@pytest.fixture
def relay(worker_config, registration, clients):
    return NotificationRelay(worker_config, registration, clients)


class TestRender:
    """Test notification defaults."""

    def test_defaults(self, relay):
        notification = relay.render(PushPayload())

        assert notification.title == "FindBook"
        assert notification.body == "New notification from FindBook"
        assert notification.icon == "/assets/icons/icon-192x192.png"
        assert notification.badge == "/assets/icons/badge-72x72.png"
        assert notification.tag == "findbook-notification"
        assert [a.action for a in notification.actions] == [VIEW_ACTION, DISMISS_ACTION]

    def test_payload_overrides(self, relay):
        payload = PushPayload.model_validate({
            "title": "Sale",
            "image": "https://img.test/sale.png",
            "requireInteraction": True,
            "actions": [{"action": "open", "title": "Open"}],
            "tag": "sale",
            "vibrate": [100, 50, 100],
        })

        notification = relay.render(payload)

        assert notification.image == "https://img.test/sale.png"
        assert notification.require_interaction is True
        assert [a.action for a in notification.actions] == ["open"]
        assert notification.tag == "sale"
        assert notification.vibrate == [100, 50, 100]


class TestPush:
    """Test push event handling."""

    @pytest.mark.asyncio
    async def test_new_book_push(self, relay, registration):
        data = json.dumps({"title": "New Book", "body": "Check it out"}).encode("utf-8")

        notification = await relay.push(data)

        assert notification.title == "New Book"
        assert notification.body == "Check it out"
        assert [a.action for a in notification.actions] == ["view", "dismiss"]
        assert notification.tag == "findbook-notification"
        assert await registration.get_notifications() == [notification]
        assert relay.events[-1]["event"] == "shown"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", [None, b"", "", {}])
    async def test_push_without_data_is_noop(self, relay, registration, data):
        assert await relay.push(data) is None
        assert await registration.get_notifications() == []
        assert len(relay.events) == 0

    @pytest.mark.asyncio
    async def test_same_tag_replaces_silently(self, relay, registration):
        await relay.push({"title": "First"})
        second = await relay.push({"title": "Second"})

        shown = await registration.get_notifications()
        assert [n.title for n in shown] == ["Second"]
        assert second.alerted is False

    @pytest.mark.asyncio
    async def test_renotify_alerts_again(self, relay):
        await relay.push({"title": "First"})
        second = await relay.push({"title": "Second", "renotify": True})

        assert second.alerted is True

    @pytest.mark.asyncio
    async def test_invalid_json_raises(self, relay):
        with pytest.raises(ValueError):
            await relay.push(b"{not json")


class TestClick:
    """Test notification clicks."""

    @pytest.mark.asyncio
    async def test_default_tap_opens_root(self, relay, registration, clients):
        await relay.push({"title": "Hello"})

        client = await relay.click("findbook-notification")

        assert client.url == "/"
        assert client.focused is True
        assert await registration.get_notifications() == []
        assert relay.events[-1]["event"] == "clicked"

    @pytest.mark.asyncio
    async def test_view_opens_data_url(self, relay, clients):
        await relay.push({"title": "Dune", "data": {"url": "/books/dune"}, "tag": "dune"})

        client = await relay.click("dune", VIEW_ACTION)

        assert client.url == "/books/dune"
        assert client.focused is True
        assert clients.match_all() == []

    @pytest.mark.asyncio
    async def test_view_focuses_existing_window(self, relay, clients):
        existing = clients.connect("/books/dune")
        await relay.push({"title": "Dune", "data": {"url": "/books/dune"}})

        client = await relay.click("findbook-notification", VIEW_ACTION)

        assert client is existing
        assert existing.focused is True
        assert len(clients.match_all()) == 1

    @pytest.mark.asyncio
    async def test_view_focuses_page_connected_with_absolute_url(self, relay, clients):
        existing = clients.connect(f"{ORIGIN}/books/dune")
        await relay.push({"title": "Dune", "data": {"url": "/books/dune"}})

        client = await relay.click("findbook-notification", VIEW_ACTION)

        assert client is existing
        assert len(clients.match_all()) == 1

    @pytest.mark.asyncio
    async def test_opened_windows_receive_no_reports(self, relay, clients):
        for number in (1, 2):
            await relay.push({"title": "Book", "data": {"url": f"/books/{number}"}, "tag": f"book-{number}"})
        opened = [await relay.click(f"book-{number}") for number in (1, 2)]

        metrics = MetricsCollector()
        for _ in range(100):
            await metrics.report(clients)

        assert clients.match_all() == []
        assert [window.inbox.qsize() for window in opened] == [0, 0]

    @pytest.mark.asyncio
    async def test_dismiss_takes_no_action(self, relay, registration, clients):
        await relay.push({"title": "Hello"})

        assert await relay.click("findbook-notification", DISMISS_ACTION) is None
        assert clients.match_all() == []
        assert await registration.get_notifications() == []


class TestClose:
    """Test notification close without interaction."""

    @pytest.mark.asyncio
    async def test_close_recorded(self, relay, registration, clients):
        await relay.push({"title": "Hello"})

        await relay.close("findbook-notification")

        assert relay.events[-1]["event"] == "closed"
        assert relay.events[-1]["tag"] == "findbook-notification"
        assert clients.match_all() == []


@pytest.mark.asyncio
async def test_event_history_is_capped(relay):
    for number in range(EVENT_HISTORY_LIMIT + 10):
        await relay.close(f"tag-{number}")

    assert len(relay.events) == EVENT_HISTORY_LIMIT
    assert relay.events[0]["tag"] == "tag-10"
    assert relay.events[-1]["tag"] == f"tag-{EVENT_HISTORY_LIMIT + 9}"
