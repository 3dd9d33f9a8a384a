"""Process-wide publish/subscribe hub and the event vocabulary."""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, TypeAlias
from softphone_session.core.models import Notification

EventPayload: TypeAlias = Dict[str, Any]
EventHandler: TypeAlias = Callable[[EventPayload], None]

# Inbound triggers (foreground -> session).
TOPIC_USER_LOGIN = "bg:user:login"
TOPIC_USER_LOGOUT = "bg:user:logout"
TOPIC_USER_UNLOCK = "bg:user:unlock"
TOPIC_USER_LOCK = "bg:user:lock"
TOPIC_USER_UPDATE_TOKEN = "bg:user:update-token"

# Outbound (session -> foreground and dependent services).
TOPIC_NOTIFY = "fg:notify"
TOPIC_CALLS_INIT = "bg:calls:init"
TOPIC_CALLS_DISCONNECT = "bg:calls:disconnect"


class EventBus:
    def __init__(self) -> None:
        self._subscribers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()
        self._logger = logging.getLogger("softphone.events")

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        with self._lock:
            if handler not in self._subscribers[topic]:
                self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: EventHandler) -> None:
        with self._lock:
            if handler in self._subscribers.get(topic, []):
                self._subscribers[topic].remove(handler)

    def publish(self, topic: str, payload: Optional[EventPayload] = None) -> None:
        """Run every handler for ``topic`` in subscription order."""
        with self._lock:
            handlers = list(self._subscribers.get(topic, []))

        if not handlers:
            self._logger.debug("No subscribers for topic '%s'", topic)
            return

        for handler in handlers:
            self._safe_dispatch(topic, handler, payload or {})

    def _safe_dispatch(self, topic: str, handler: EventHandler, payload: EventPayload) -> None:
        """Keep one handler failure from stopping the bus."""
        handler_name = getattr(handler, "__name__", str(handler))
        try:
            handler(payload)
        except Exception:
            self._logger.exception("Handler '%s' failed for topic '%s'", handler_name, topic)

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()


def create_login_event(username: str, password: str) -> EventPayload:
    return {"username": username, "password": password}


def create_unlock_event(password: str) -> EventPayload:
    return {"password": password}


def create_update_token_event(callback: Callable[[EventPayload], None]) -> EventPayload:
    return {"callback": callback}


def create_notify_event(
    icon: str,
    message: str,
    type: str = "info",
    timeout: Optional[int] = None,
) -> EventPayload:
    notification = Notification(icon=icon, message=message, type=type, timeout=timeout)
    return notification.model_dump(exclude_none=True)


def create_disconnect_event(reconnect: bool) -> EventPayload:
    return {"reconnect": reconnect}
