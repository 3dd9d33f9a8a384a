"""Authentication and vault-lock state machine for the single app user.

States::

    ANONYMOUS -> AUTHENTICATING -> UNLOCKED <-> LOCKED
                       |
                       +-> (login failed) -> ANONYMOUS

Every transition runs under one lock. ``login``, ``unlock`` and
``refresh_token`` refuse to start while another transition is running;
``logout`` and ``lock`` wait for it. Events raised during a transition are
published on the bus only after the lock has been released.
"""

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field
from softphone_session.client.api import PROFILE_PATH, AuthClient
from softphone_session.client.events import (
    TOPIC_CALLS_DISCONNECT,
    TOPIC_CALLS_INIT,
    TOPIC_NOTIFY,
    EventBus,
    EventPayload,
    create_disconnect_event,
    create_notify_event,
)
from softphone_session.client.state import StateStore
from softphone_session.core.crypto import IdentityProvider
from softphone_session.core.errors import (
    AuthError,
    AuthReason,
    IdentityError,
    LockError,
    NotAuthenticated,
    SessionError,
    TransitionInProgress,
)
from softphone_session.core.models import RATE_LIMIT_MARKER, ApiResponse, extract_retry_time

logger = logging.getLogger("softphone.session")

MSG_INVALID_CREDENTIALS = "Failed to login. Please check your credentials."
MSG_RATE_LIMITED = "Too many failed login attempts; try again at {date}"
MSG_UNREACHABLE = "Could not reach the platform. Please check your connection."
MSG_BAD_RESPONSE = "The platform sent an unexpected response. Please try again later."
MSG_NOT_ENTITLED = "This account is not allowed to use the softphone."
MSG_VAULT_MISMATCH = "Your password does not match the stored vault. The vault stays locked."
MSG_UNLOCK_FAILED = "Failed to unlock. Please check your password."
MSG_REVIEW_SETTINGS = "Review your softphone and audio settings."
MSG_WELCOME = "Welcome back, {user}"
MSG_GOODBYE = "Goodbye!"
MSG_TOKEN_FAILED = "Could not refresh the platform token."


class SessionPhase(Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    UNLOCKED = "unlocked"
    LOCKED = "locked"


class Tokens(BaseModel):
    portal: Optional[str] = None
    sip: Optional[str] = None


class Session(BaseModel):
    """Read-only view of the ``user`` branch of the state tree."""

    authenticated: bool = False
    username: Optional[str] = None
    password: str = Field(default="", repr=False)
    client_id: Optional[str] = None
    user_id: Optional[int] = None
    real_name: str = ""
    tokens: Tokens = Field(default_factory=Tokens)
    developer: bool = False
    unlocked: bool = False

    @classmethod
    def from_state(cls, state: dict[str, Any], unlocked: bool) -> "Session":
        user = dict(state.get("user", {}))
        user["unlocked"] = unlocked
        return cls.model_validate(user)


class SessionManager:
    def __init__(self, store: StateStore, identity: IdentityProvider, api: AuthClient, bus: EventBus):
        self.store = store
        self.identity = identity
        self.api = api
        self.bus = bus
        self._lock = threading.Lock()
        self._outbox: list[tuple[str, EventPayload]] = []
        self._authenticating = False

    def __str__(self):
        return "[session] "

    @property
    def session(self) -> Session:
        return Session.from_state(self.store.snapshot(), unlocked=self.identity.is_unlocked)

    @property
    def phase(self) -> SessionPhase:
        if self._authenticating:
            return SessionPhase.AUTHENTICATING
        if self.store.get("user.authenticated"):
            return SessionPhase.UNLOCKED if self.identity.is_unlocked else SessionPhase.LOCKED
        return SessionPhase.ANONYMOUS

    @contextmanager
    def _transition(self, operation: str, blocking: bool):
        if not self._lock.acquire(blocking=blocking):
            raise TransitionInProgress(operation)
        try:
            yield
        finally:
            outbox, self._outbox = self._outbox, []
            self._lock.release()
            for topic, payload in outbox:
                self.bus.publish(topic, payload)

    def _emit(self, topic: str, payload: Optional[EventPayload] = None):
        self._outbox.append((topic, payload or {}))

    def _notify(self, icon: str, message: str, type: str = "info", timeout: Optional[int] = None):
        self._emit(TOPIC_NOTIFY, create_notify_event(icon, message, type, timeout))

    # --- login ---
    def login(self, username: str, password: str) -> bool:
        """Authenticate against the platform and open the vault.

        Returns False when the platform refused the login; the user has been
        notified. A ``LockError`` means the platform accepted the credentials
        but they do not open the existing vault: it is re-raised after the
        session has been put back to anonymous.
        """
        with self._transition("login", blocking=False):
            if self.store.get("user.authenticated") and self.identity.is_unlocked:
                raise SessionError("Already logged in; log out first")
            self._authenticating = True
            try:
                return self._login(username, password)
            finally:
                self._authenticating = False

    def _login(self, username: str, password: str) -> bool:
        logger.info("%slogging in %s", self, username)
        self.api.setup_client(username, password)
        try:
            res = self.api.get(PROFILE_PATH)
            if not self.api.is_ok(res):
                raise self._classify_failure(res)
            profile = self.api.parse_profile(res)
        except AuthError as e:
            self._fail_login(e)
            return False

        # Only platform client users are able to use telephony features.
        if not profile.entitled:
            logger.warning("%s%s is not entitled to use the softphone", self, username)
            self._reset()
            self._notify("warning", MSG_NOT_ENTITLED, "warning")
            return False

        try:
            if self.store.encrypted:
                self.identity.unlock_vault(username, password)
                self.store.restore_encrypted()
            else:
                self.identity.load_identity(username, password)
        except LockError:
            logger.error("%scredentials of %s do not match the existing vault", self, username)
            self._abort_login()
            self._notify("lock", MSG_VAULT_MISMATCH, "danger")
            raise
        except IdentityError:
            logger.error("%scould not establish a vault identity for %s", self, username)
            self._abort_login()
            raise

        try:
            self._complete_login(username, password, profile)
        except Exception:
            self._abort_login()
            raise
        return True

    def _classify_failure(self, res: ApiResponse) -> AuthError:
        message = res.error_message
        if message and RATE_LIMIT_MARKER in message:
            return AuthError(AuthReason.RATE_LIMITED, message, retry_at=extract_retry_time(message))
        return AuthError(AuthReason.INVALID_CREDENTIALS, message or "")

    def _fail_login(self, error: AuthError):
        logger.info("%slogin failed: %s", self, error.reason.value)
        if error.reason is AuthReason.RATE_LIMITED:
            message = MSG_RATE_LIMITED.format(date=error.retry_at)
        elif error.reason is AuthReason.NETWORK:
            message = MSG_UNREACHABLE
        elif error.reason is AuthReason.BAD_RESPONSE:
            message = MSG_BAD_RESPONSE
        else:
            message = MSG_INVALID_CREDENTIALS
        self.api.setup_client()
        self._drop_authentication()
        self._notify("warning", message, "warning")

    def _abort_login(self):
        self.identity.lock()
        self.api.setup_client()
        self._drop_authentication()

    def _drop_authentication(self):
        # Remove credentials from the in-memory store.
        self.store.set_state({"user": {"password": ""}})
        # A locked session from an earlier run is persisted as authenticated;
        # clear it on disk too so a restart does not bring it back.
        if self.store.get("user.authenticated"):
            self.store.set_state({
                "settings": {"vault": {"active": False, "unlocked": False}},
                "user": {"authenticated": False},
            }, persist=True, encrypt=False)

    def _complete_login(self, username: str, password: str, profile):
        # Readable without the key, so the lock screen always knows who is logged in.
        self.store.set_state({
            "settings": {"vault": {"active": True, "unlocked": True}},
            "user": {"authenticated": True, "username": username},
        }, persist=True, encrypt=False)

        if self.store.get("app.installed"):
            start_layer = "settings"
            self._notify("settings", MSG_REVIEW_SETTINGS, "warning", timeout=0)
        else:
            start_layer = "contacts"
            self._notify("user", MSG_WELCOME.format(user=profile.real_name), "success")

        self.store.set_state({
            # The installed and updated flags are one-shot.
            "app": {"installed": False, "updated": False},
            "ui": {"layer": start_layer, "menubar": {"default": "active"}},
        }, persist=True, encrypt=False)
        self.store.set_state({
            "user": {
                "client_id": profile.client_id,
                "user_id": profile.id,
                "password": password,
                "real_name": profile.real_name,
                "tokens": {"sip": profile.token},
            },
        }, persist=True)
        logger.info("%s%s logged in", self, username)
        self._emit(TOPIC_CALLS_INIT)

    # --- lock / unlock ---
    def unlock(self, password: str):
        with self._transition("unlock", blocking=False):
            username = self.store.get("user.username")
            if not username:
                raise NotAuthenticated("No known user to unlock the vault for")
            if self.identity.is_unlocked:
                raise SessionError("Vault is already unlocked")
            try:
                self.identity.unlock_vault(username, password)
                self.store.restore_encrypted()
            except LockError:
                # The vault was locked when we started; keep it that way.
                self.identity.lock()
                self._notify("lock", MSG_UNLOCK_FAILED, "warning")
                raise

            self.store.set_state({"settings": {"vault": {"unlocked": True}}}, persist=True, encrypt=False)
            if not self.store.get("user.authenticated"):
                # Sealed state may still hold the password of a session that
                # was logged out from the lock screen.
                self.store.set_state({"user": {"password": ""}})
                return
            self.store.set_state({"user": {"password": password}}, persist=True)
            self._emit(TOPIC_CALLS_INIT)

    def lock(self):
        with self._transition("lock", blocking=True):
            if not self.identity.is_unlocked:
                return
            logger.info("%slocking vault", self)
            if self.store.encrypted:
                self.store.set_state({}, persist=True, encrypt=True)
            self.identity.lock()
            self.store.set_state({"settings": {"vault": {"unlocked": False}}}, persist=True, encrypt=False)
            self.store.set_state({"user": {"password": ""}})

    # --- token ---
    def refresh_token(self) -> Optional[str]:
        """Fetch a fresh autologin token for opening platform urls."""
        with self._transition("refresh token", blocking=False):
            if not self.store.get("user.authenticated") or not self.identity.is_unlocked:
                raise NotAuthenticated("Token refresh requires an unlocked session")
            try:
                token = self.api.get_autologin_token()
            except AuthError as e:
                logger.warning("%stoken refresh failed: %s", self, e.reason.value)
                self._notify("warning", MSG_TOKEN_FAILED, "warning")
                return None
            self.store.set_state({"user": {"tokens": {"portal": token}}})
            return token

    # --- logout ---
    def logout(self):
        """Reset the session to anonymous.

        The vault salt is never touched here; removing it would make the
        stored encrypted state unreadable.
        """
        with self._transition("logout", blocking=True):
            self._reset()
            self._notify("user", MSG_GOODBYE, "success")

    def _reset(self):
        logger.info("%slogging out and cleaning up state", self)
        # Logout may come from the lock screen, where no key is available to
        # persist encrypted state with.
        can_persist = bool(self.store.get("user.authenticated")) and self.identity.is_unlocked
        self.store.set_state({"user": {"password": ""}}, persist=can_persist)
        self.identity.lock()
        self.store.set_state({
            "settings": {"vault": {"active": False, "unlocked": False}},
            "ui": {"layer": "login"},
            "user": {"authenticated": False},
        }, persist=True, encrypt=False)
        # Remove credentials from basic auth.
        self.api.setup_client()
        # Disconnect without reconnect attempt.
        self._emit(TOPIC_CALLS_DISCONNECT, create_disconnect_event(False))
        self.store.set_state({"ui": {"menubar": {"default": "inactive"}}})
