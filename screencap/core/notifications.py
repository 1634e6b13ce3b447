"""
Change notifications for Screencap.

NotificationBus is an in-process publish/subscribe channel. The pipeline
publishes data-change events on it and the IPC server forwards them to the
frontend. A broken subscriber is logged and skipped so it can never fail
the write that triggered it.

Also provides native macOS notifications for service failures.
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

EVENT_CREATED = "event.created"
EVENT_UPDATED = "event.updated"
EVENTS_CHANGED = "events.changed"
PROJECTS_NORMALIZED = "projects.normalized"

# Subscribe to this name to receive everything
ALL_EVENTS = "*"

Subscriber = Callable[[str, dict[str, Any]], None]


class NotificationBus:
    """Thread-safe publish/subscribe bus for pipeline change events."""

    def __init__(self):
        self._subscribers: dict[str, list[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, name: str, callback: Subscriber) -> Callable[[], None]:
        """
        Register ``callback(name, data)`` for ``name`` (or ALL_EVENTS).

        Returns:
            A function that removes the subscription
        """
        with self._lock:
            self._subscribers.setdefault(name, []).append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(name, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def publish(self, name: str, data: dict[str, Any] | None = None) -> int:
        """
        Deliver an event to its subscribers synchronously.

        Returns:
            Number of subscribers that handled the event without raising
        """
        data = data or {}
        with self._lock:
            callbacks = list(self._subscribers.get(name, []))
            callbacks += self._subscribers.get(ALL_EVENTS, [])

        delivered = 0
        for callback in callbacks:
            try:
                callback(name, data)
                delivered += 1
            except Exception as e:
                logger.error(f"Notification subscriber failed for {name}: {e}", exc_info=True)

        logger.debug(f"Published {name} to {delivered}/{len(callbacks)} subscribers")
        return delivered

    def event_created(self, event_id: str) -> None:
        self.publish(EVENT_CREATED, {"event_id": event_id})

    def event_updated(self, event_id: str) -> None:
        self.publish(EVENT_UPDATED, {"event_id": event_id})

    def events_changed(self, event_ids: list[str] | None = None) -> None:
        self.publish(EVENTS_CHANGED, {"event_ids": list(event_ids or [])})

    def projects_normalized(self, updated_rows: int, groups: int) -> None:
        self.publish(PROJECTS_NORMALIZED, {"updated_rows": updated_rows, "groups": groups})


def send_desktop_notification(title: str, message: str, sound: bool = False) -> bool:
    """
    Show a macOS notification.

    Returns:
        True if the notification was delivered, False when unavailable
    """
    try:
        from Foundation import NSUserNotification, NSUserNotificationCenter
    except ImportError:
        logger.debug("Foundation not available, desktop notifications disabled")
        return False

    try:
        notification = NSUserNotification.alloc().init()
        notification.setTitle_(title)
        notification.setInformativeText_(message)
        if sound:
            notification.setSoundName_("default")
        NSUserNotificationCenter.defaultUserNotificationCenter().deliverNotification_(
            notification
        )
        return True
    except Exception as e:
        logger.error(f"Failed to send notification: {e}")
        return False
