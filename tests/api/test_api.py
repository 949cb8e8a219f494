"""
Tests for the FastAPI application.
"""

import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from api.main import app
from tests.helpers import API_URL, ORIGIN


@pytest.fixture
def static_site(fetcher):
    fetcher.add(f"{ORIGIN}/", body=b"<html>root</html>")
    fetcher.add(f"{ORIGIN}/index.html", body=b"<html>index</html>", headers={"content-type": "text/html"})
    return fetcher


@pytest.fixture
def client(worker, static_site):
    """Test client running the lifespan against a fake-backed worker."""
    with patch('api.main.worker', worker):
        with TestClient(app) as test_client:
            yield test_client


def test_health_check(client):
    """Test health check endpoint."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["worker_state"] == "activated"
    assert data["version"] == "1.2.0"
    assert "timestamp" in data


def test_health_check_without_worker():
    """Without a running worker the service reports unhealthy."""
    response = TestClient(app).get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "unhealthy"


def test_fetch_static_from_precache(client, fetcher):
    fetcher.offline = True

    response = client.get("/fetch", params={"url": "/index.html"})

    assert response.status_code == 200
    assert response.text == "<html>index</html>"
    assert response.headers["content-type"] == "text/html"


def test_fetch_api_offline_returns_503(client, fetcher):
    fetcher.offline = True

    response = client.get("/fetch", params={"url": API_URL})

    assert response.status_code == 503
    assert response.json()["error"] == "Offline"


def test_fetch_without_fallback_returns_502(client, fetcher):
    fetcher.offline = True

    response = client.get("/fetch", params={"url": "/app/never-seen"})

    assert response.status_code == 502
    data = response.json()
    assert data["error"] == "Network request failed"
    assert data["status_code"] == 502


def test_caches_listing(client, worker_config):
    response = client.get("/caches")
    assert response.status_code == 200
    data = response.json()
    assert data["expected"] == worker_config.partition_names()
    assert data["partitions"][worker_config.static_cache_name]["entries"] == 2


def test_clear_and_preload_caches(client, fetcher, worker_config):
    fetcher.add(f"{ORIGIN}/books/popular", body=b"popular")

    response = client.post("/caches/preload", json={"urls": ["/books/popular"]})
    assert response.json() == {"stored": 1}

    response = client.delete("/caches")
    assert worker_config.preload_cache_name in response.json()["deleted"]
    assert client.get("/caches").json()["partitions"] == {}


def test_preload_requires_urls(client):
    response = client.post("/caches/preload", json={"urls": []})
    assert response.status_code == 422


def test_lifecycle_endpoints(client):
    assert client.post("/lifecycle/install").json()["state"] == "installed"
    data = client.post("/lifecycle/activate").json()
    assert data == {"state": "activated", "deleted": []}


def test_queue_and_sync(client, fetcher, worker_config):
    fetcher.add(worker_config.resolve_url("/api/favorites"), status=201)

    response = client.post("/queue/favorite", json={"payload": {"book_id": "b1"}})
    assert response.status_code == 201
    assert response.json()["type"] == "favorite"
    assert len(client.get("/queue/favorite").json()) == 1

    response = client.post("/sync/background-sync-favorites")
    assert response.json()[0]["succeeded"] == 1
    assert client.get("/queue/favorite").json() == []


def test_unknown_queue_type(client):
    response = client.post("/queue/magazine", json={"payload": {}})
    assert response.status_code == 404
    assert response.json()["status_code"] == 404


def test_push_and_notifications(client):
    response = client.post("/push", content=json.dumps({"title": "New Book", "body": "Check it out"}))
    notification = response.json()["notification"]
    assert notification["title"] == "New Book"
    assert [a["action"] for a in notification["actions"]] == ["view", "dismiss"]
    assert notification["tag"] == "findbook-notification"

    shown = client.get("/notifications").json()
    assert [n["title"] for n in shown] == ["New Book"]

    response = client.post("/notifications/findbook-notification/click")
    assert response.json()["client"]["url"] == "/"
    assert client.get("/notifications").json() == []


def test_empty_push_is_noop(client):
    response = client.post("/push", content=b"")
    assert response.json() == {"notification": None}


def test_invalid_push_payload(client):
    response = client.post("/push", content=b"{broken")
    assert response.status_code == 400


def test_dismiss_and_close(client):
    client.post("/push", content=json.dumps({"title": "A", "tag": "a"}))
    response = client.post("/notifications/a/click", json={"action": "dismiss"})
    assert response.json() == {"client": None}

    client.post("/push", content=json.dumps({"title": "B", "tag": "b"}))
    assert client.post("/notifications/b/close").json() == {"closed": "b"}


def test_metrics(client, fetcher):
    client.get("/fetch", params={"url": "/index.html"})

    data = client.get("/metrics").json()

    assert set(data) == {"cacheHits", "cacheMisses", "networkRequests", "backgroundSyncs"}
    assert data["cacheHits"] == 1


def test_message_to_unknown_client(client):
    response = client.post("/clients/nope/messages", json={"type": "GET_METRICS"})
    assert response.status_code == 404


def test_page_connection_receives_messages(client):
    with client.websocket_connect("/clients?url=/") as websocket:
        hello = websocket.receive_json()
        assert hello["type"] == "CONNECTED"
        client_id = hello["data"]["clientId"]

        pages = client.get("/clients").json()
        assert [p["id"] for p in pages] == [client_id]
        assert pages[0]["controlled"] is True

        websocket.send_json([1])
        websocket.send_json({"type": "GET_METRICS"})
        message = websocket.receive_json()
        assert message["type"] == "CACHE_METRICS"
        assert "cacheHits" in message["data"]

        response = client.post(f"/clients/{client_id}/messages", json={"type": "SKIP_WAITING"})
        assert response.json() == {"result": None}

    assert client.get("/clients").json() == []
