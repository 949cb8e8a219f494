"""
Push notification relay.

Renders push payloads as notifications and turns clicks into window
navigation. Every shown, clicked and closed notification is recorded in
``events`` for analytics; only the most recent events are kept.
"""

import json
from collections import deque
from typing import Any, Deque, Dict, Optional, Union

import structlog

from utilities.config import WorkerConfig
from utilities.logger import WorkerLogger
from worker.models import Notification, NotificationAction, PushPayload, utcnow
from worker.registration import Client, Clients, Registration

logger = structlog.get_logger(__name__)

VIEW_ACTION = "view"
DISMISS_ACTION = "dismiss"

# Most recent notification events kept for analytics
EVENT_HISTORY_LIMIT = 500

DEFAULT_ACTIONS = [
    NotificationAction(action=VIEW_ACTION, title="View"),
    NotificationAction(action=DISMISS_ACTION, title="Dismiss"),
]

PushData = Union[bytes, str, Dict[str, Any], None]


class NotificationRelay:
    """Shows push notifications and handles clicks and closes."""

    def __init__(self, worker_config: WorkerConfig, registration: Registration, clients: Clients):
        self.config = worker_config
        self.registration = registration
        self.clients = clients
        self.events: Deque[Dict[str, Any]] = deque(maxlen=EVENT_HISTORY_LIMIT)
        self.worker_logger = WorkerLogger(__name__).bind_context(component="notifications")

    def render(self, payload: PushPayload) -> Notification:
        """Apply defaults to a push payload."""
        app_name = self.config.app_name
        return Notification(
            title=payload.title or app_name,
            body=payload.body or f"New notification from {app_name}",
            icon=self.config.notification_icon,
            badge=self.config.notification_badge,
            image=payload.image,
            data=payload.data or {},
            tag=payload.tag or self.config.notification_tag,
            actions=payload.actions or list(DEFAULT_ACTIONS),
            require_interaction=bool(payload.require_interaction),
            renotify=bool(payload.renotify),
            vibrate=payload.vibrate,
        )

    async def push(self, data: PushData) -> Optional[Notification]:
        """
        Handle a push event.

        Args:
            data: JSON payload as bytes, text or an already decoded mapping

        Returns:
            The notification shown, or None when the push carried no data
        """
        if not data:
            logger.debug("Push received without data")
            return None

        if isinstance(data, (bytes, str)):
            data = json.loads(data)
        payload = PushPayload.model_validate(data)

        notification = await self.registration.show_notification(self.render(payload))
        self._record("shown", notification.tag)
        return notification

    async def click(self, tag: str, action: str = "") -> Optional[Client]:
        """
        Handle a notification click.

        Args:
            tag: Tag of the clicked notification
            action: Action button pressed, empty for a plain tap

        Returns:
            The client window opened or focused, if any
        """
        notification = self.registration.close_notification(tag)
        self._record("clicked", tag, action or None)

        if action and action != VIEW_ACTION:
            return None

        data = notification.data if notification else {}
        return await self._open_or_focus(data.get("url") or "/")

    async def close(self, tag: str) -> None:
        """Record a notification dismissed without interaction."""
        self.registration.close_notification(tag)
        self._record("closed", tag)

    async def _open_or_focus(self, url: str) -> Client:
        target = self.config.resolve_url(url)
        for client in self.clients.match_all():
            if self.config.resolve_url(client.url) == target:
                return await client.focus()
        return await self.clients.open_window(url)

    def _record(self, event: str, tag: str, action: Optional[str] = None) -> None:
        self.events.append({"event": event, "tag": tag, "action": action, "timestamp": utcnow().isoformat()})
        self.worker_logger.log_notification(event, tag, action)
