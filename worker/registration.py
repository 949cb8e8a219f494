"""
Host-side state the worker talks to: its registration and connected pages.

This module provides:
- Registration lifecycle state, pending sync tags and shown notifications
- Connected page handles with a message inbox
- The clients registry (match, claim, open window)
"""

import asyncio
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import structlog

from worker.models import ClientMessage, Notification

logger = structlog.get_logger(__name__)

# Messages kept for a page that is not reading its inbox
INBOX_LIMIT = 100


class WorkerState(str, Enum):
    """Lifecycle states of a worker registration."""
    PARSED = "parsed"
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVATING = "activating"
    ACTIVATED = "activated"


class Registration:
    """Registration of the worker with its host."""

    def __init__(self, scope: str = "/", push_subscription: Optional[Dict[str, Any]] = None):
        self.scope = scope
        self.state = WorkerState.PARSED
        self.waiting_skipped = False
        self.sync_tags: Set[str] = set()
        self.push_subscription = push_subscription
        self._notifications: Dict[str, Notification] = {}
        self.logger = logger.bind(component="registration")

    def skip_waiting(self) -> None:
        """Take control without waiting for existing pages to close."""
        self.waiting_skipped = True
        self.logger.debug("Skip waiting requested")

    async def register_sync(self, tag: str) -> None:
        """Ask the host to fire a sync event for the tag once online."""
        self.sync_tags.add(tag)

    def consume_sync_tag(self, tag: str) -> None:
        self.sync_tags.discard(tag)

    async def get_push_subscription(self) -> Optional[Dict[str, Any]]:
        return self.push_subscription

    async def show_notification(self, notification: Notification) -> Notification:
        """
        Show a notification, replacing any with the same tag.

        A replacement only alerts the user again when it asks to renotify.
        """
        replacing = notification.tag in self._notifications
        shown = notification.model_copy(update={"alerted": not replacing or notification.renotify})
        self._notifications[notification.tag] = shown
        return shown

    async def get_notifications(self, tag: Optional[str] = None) -> List[Notification]:
        if tag is None:
            return list(self._notifications.values())
        found = self._notifications.get(tag)
        return [found] if found else []

    def close_notification(self, tag: str) -> Optional[Notification]:
        return self._notifications.pop(tag, None)


class Client:
    """A connected page."""

    def __init__(self, url: str, client_id: Optional[str] = None):
        self.id = client_id or uuid.uuid4().hex
        self.url = url
        self.focused = False
        self.controlled = False
        self.inbox: "asyncio.Queue[ClientMessage]" = asyncio.Queue(maxsize=INBOX_LIMIT)

    async def post_message(self, message: ClientMessage) -> None:
        """Queue a message, dropping the oldest one when the inbox is full."""
        if self.inbox.full():
            self.inbox.get_nowait()
        self.inbox.put_nowait(message)

    async def focus(self) -> "Client":
        self.focused = True
        return self

    def drain(self) -> List[ClientMessage]:
        """Take every message currently waiting in the inbox."""
        messages = []
        while not self.inbox.empty():
            messages.append(self.inbox.get_nowait())
        return messages


class Clients:
    """Registry of pages connected to the worker."""

    def __init__(self):
        self._clients: Dict[str, Client] = {}
        self.logger = logger.bind(component="clients")

    def connect(self, url: str, client_id: Optional[str] = None) -> Client:
        client = Client(url, client_id)
        self._clients[client.id] = client
        self.logger.debug("Client connected", client_id=client.id, url=url)
        return client

    def disconnect(self, client_id: str) -> None:
        self._clients.pop(client_id, None)

    def get(self, client_id: str) -> Optional[Client]:
        return self._clients.get(client_id)

    def match_all(self) -> List[Client]:
        return list(self._clients.values())

    async def claim(self) -> int:
        """Take control of every open page."""
        for client in self._clients.values():
            client.controlled = True
        return len(self._clients)

    async def open_window(self, url: str) -> Client:
        """
        Open a new window at the URL.

        The window only joins the registry once its page connects, so the
        returned handle receives no messages in the meantime.
        """
        client = Client(url)
        client.controlled = True
        await client.focus()
        self.logger.debug("Window opened", url=url)
        return client
