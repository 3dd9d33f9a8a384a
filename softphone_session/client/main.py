import getpass
import logging
from typing import Optional
from softphone_session.client.adapters import bind_calls, bind_session
from softphone_session.client.api import AuthClient
from softphone_session.client.config import Settings, get_settings
from softphone_session.client.database import DatabaseManager
from softphone_session.client.events import (
    TOPIC_NOTIFY,
    TOPIC_USER_LOCK,
    TOPIC_USER_LOGIN,
    TOPIC_USER_LOGOUT,
    TOPIC_USER_UNLOCK,
    EventBus,
    create_login_event,
    create_unlock_event,
)
from softphone_session.client.logs import setup_logging
from softphone_session.client.session import SessionManager
from softphone_session.client.state import StateStore
from softphone_session.core.calls import CallService
from softphone_session.core.crypto import CryptoManager, IdentityProvider

logger = logging.getLogger("softphone.main")


class LoggingCallService:
    """Stand-in call subsystem for running the session on its own."""

    def init_services(self) -> None:
        logger.info("Call services initialized")

    def disconnect(self, reconnect: bool = True) -> None:
        logger.info("Call services disconnected (reconnect=%s)", reconnect)


class Application:
    def __init__(self, settings: Settings, calls: Optional[CallService] = None, api: Optional[AuthClient] = None):
        self.settings = settings
        self.bus = EventBus()
        self.db = DatabaseManager()
        self.db.connect(settings.DATABASE_URL)
        self.crypto = CryptoManager(iterations=settings.KDF_ITERATIONS)
        self.identity = IdentityProvider(self.db, self.crypto)
        self.store = StateStore(self.db, self.identity)
        self.api = api or AuthClient(settings.PLATFORM_URL, timeout=settings.HTTP_TIMEOUT)
        self.session = SessionManager(self.store, self.identity, self.api, self.bus)

        bind_session(self.bus, self.session)
        bind_calls(self.bus, calls or LoggingCallService())


def main():
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    app = Application(settings)
    app.bus.subscribe(TOPIC_NOTIFY, lambda n: print(f"* {n['message']}"))

    commands = "login, logout, lock, unlock, status, quit"
    print(f"{settings.PROJECT_NAME} ({commands})")
    while True:
        try:
            command = input("> ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            break

        if command == "login":
            username = input("Email: ").strip()
            password = getpass.getpass("Password: ")
            app.bus.publish(TOPIC_USER_LOGIN, create_login_event(username, password))
        elif command == "logout":
            app.bus.publish(TOPIC_USER_LOGOUT)
        elif command == "lock":
            app.bus.publish(TOPIC_USER_LOCK)
        elif command == "unlock":
            password = getpass.getpass("Password: ")
            app.bus.publish(TOPIC_USER_UNLOCK, create_unlock_event(password))
        elif command == "status":
            session = app.session.session
            print(f"{app.session.phase.value}: {session.username or '-'} {session.real_name}")
        elif command in ("quit", "exit"):
            break
        elif command:
            print(f"Unknown command. Try: {commands}")


if __name__ == "__main__":
    main()
