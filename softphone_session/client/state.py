import copy
import logging
import threading
from typing import Any, Callable, Optional
from softphone_session.client.database import DatabaseManager, deep_merge
from softphone_session.core.crypto import IdentityProvider
from softphone_session.core.errors import VaultLocked

logger = logging.getLogger("softphone.state")

Subscriber = Callable[[int, dict], None]


def initial_state() -> dict[str, Any]:
    return {
        "app": {"installed": True, "updated": False},
        "settings": {"vault": {"active": False, "unlocked": False}},
        "ui": {"layer": "login", "menubar": {"default": "inactive"}},
        "user": {
            "authenticated": False,
            # Unlocks experimental developer-only features.
            "developer": False,
            "password": "",
            "username": None,
            "client_id": None,
            "user_id": None,
            "real_name": "",
            "tokens": {"portal": None, "sip": None},
        },
    }


class StateStore:
    """The application's state tree.

    Writes are deep merges. A persisted write either goes to the plaintext
    snapshot (only the merged partial) or to the encrypted snapshot (the
    whole tree, sealed with the vault key). Merge, persist and notify happen
    under one lock, so no reader sees a half-applied update.
    """

    def __init__(self, db: DatabaseManager, identity: IdentityProvider):
        self.db = db
        self.identity = identity
        self.version = 0
        self._lock = threading.RLock()
        self._subscribers: list[Subscriber] = []
        self._state = deep_merge(initial_state(), db.load_plain_state())

    @property
    def encrypted(self) -> bool:
        return self.identity.vault_configured

    @property
    def unlocked(self) -> bool:
        return self.identity.is_unlocked

    def subscribe(self, callback: Subscriber):
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber):
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def get(self, path: str, default: Any = None) -> Any:
        with self._lock:
            node: Any = self._state
            for part in path.split("."):
                if not isinstance(node, dict) or part not in node:
                    return default
                node = node[part]
            return copy.deepcopy(node)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._state)

    def set_state(self, partial: dict[str, Any], persist: bool = False, encrypt: Optional[bool] = None):
        with self._lock:
            if encrypt is None:
                encrypt = self.encrypted
            if persist and encrypt and not self.unlocked:
                raise VaultLocked("Cannot persist encrypted state while the vault is locked")

            deep_merge(self._state, copy.deepcopy(partial))
            self.version += 1

            if persist:
                if encrypt:
                    self.db.save_encrypted_state(self.identity.crypto.encrypt_state(self._state))
                else:
                    self.db.merge_plain_state(partial)

            for callback in list(self._subscribers):
                try:
                    callback(self.version, partial)
                except Exception:
                    logger.exception("State subscriber %r failed", callback)

    def restore_encrypted(self) -> bool:
        """Merge the decrypted vault snapshot back into the tree.

        Fields that were last written in plaintext (authentication flag,
        vault flags, ui) win over the older copies sealed in the vault.
        """
        with self._lock:
            if not self.unlocked:
                raise VaultLocked()
            token = self.db.load_encrypted_state()
            if not token:
                return False
            deep_merge(self._state, self.identity.crypto.decrypt_state(token))
            deep_merge(self._state, self.db.load_plain_state())
            self.version += 1
            return True
