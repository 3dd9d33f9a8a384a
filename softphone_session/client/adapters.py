"""Glue between bus events and the objects that act on them."""

import logging
from softphone_session.client.events import (
    TOPIC_CALLS_DISCONNECT,
    TOPIC_CALLS_INIT,
    TOPIC_USER_LOCK,
    TOPIC_USER_LOGIN,
    TOPIC_USER_LOGOUT,
    TOPIC_USER_UNLOCK,
    TOPIC_USER_UPDATE_TOKEN,
    EventBus,
    EventPayload,
)
from softphone_session.client.session import SessionManager
from softphone_session.core.calls import CallService
from softphone_session.core.errors import LockError, SessionError, TransitionInProgress

logger = logging.getLogger("softphone.adapters")


def bind_session(bus: EventBus, manager: SessionManager) -> None:
    """Translate foreground triggers into session manager calls."""

    def on_login(payload: EventPayload) -> None:
        try:
            manager.login(payload["username"], payload["password"])
        except LockError:
            # Already surfaced to the user by the session manager.
            logger.warning("Login stopped: vault could not be opened")
        except TransitionInProgress:
            logger.info("Ignoring login request while another transition runs")

    def on_logout(payload: EventPayload) -> None:
        manager.logout()

    def on_unlock(payload: EventPayload) -> None:
        try:
            manager.unlock(payload["password"])
        except LockError:
            logger.info("Unlock rejected")
        except SessionError as e:
            logger.info("Ignoring unlock request: %s", e)

    def on_lock(payload: EventPayload) -> None:
        manager.lock()

    def on_update_token(payload: EventPayload) -> None:
        try:
            token = manager.refresh_token()
        except SessionError as e:
            logger.info("No token available: %s", e)
            token = None
        payload["callback"]({"token": token})

    bus.subscribe(TOPIC_USER_LOGIN, on_login)
    bus.subscribe(TOPIC_USER_LOGOUT, on_logout)
    bus.subscribe(TOPIC_USER_UNLOCK, on_unlock)
    bus.subscribe(TOPIC_USER_LOCK, on_lock)
    bus.subscribe(TOPIC_USER_UPDATE_TOKEN, on_update_token)


def bind_calls(bus: EventBus, service: CallService) -> None:
    """Forward session lifecycle signals to the call subsystem."""

    def on_init(payload: EventPayload) -> None:
        service.init_services()

    def on_disconnect(payload: EventPayload) -> None:
        service.disconnect(reconnect=payload.get("reconnect", True))

    bus.subscribe(TOPIC_CALLS_INIT, on_init)
    bus.subscribe(TOPIC_CALLS_DISCONNECT, on_disconnect)
