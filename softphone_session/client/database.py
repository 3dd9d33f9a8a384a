import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional
from sqlmodel import Field, Session, SQLModel, create_engine
from softphone_session.core.errors import IdentityError

logger = logging.getLogger("softphone.database")


class VaultConfig(SQLModel, table=True):
    __table_args__ = {"extend_existing": True}
    id: int = Field(default=1, primary_key=True)
    kdf_salt: Optional[str] = None
    validation_token: Optional[str] = None


class StateSnapshot(SQLModel, table=True):
    __table_args__ = {"extend_existing": True}
    id: int = Field(default=1, primary_key=True)
    plain_state: str = "{}"
    encrypted_state: Optional[str] = None
    updated_at: float = Field(default_factory=lambda: datetime.now().timestamp())


def deep_merge(target: dict, partial: dict) -> dict:
    for key, value in partial.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            deep_merge(target[key], value)
        elif isinstance(value, dict):
            target[key] = deep_merge({}, value)
        else:
            target[key] = value
    return target


class DatabaseManager:
    def __init__(self):
        self.engine = None
        self.url = None

    def connect(self, url: str):
        if url.startswith("sqlite:///"):
            Path(url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
        self.url = url
        self.engine = create_engine(url, connect_args={"check_same_thread": False})
        self.init_db()
        logger.debug("Database connected: %s", url)

    def init_db(self):
        if not self.engine: raise ValueError("DB not connected")
        SQLModel.metadata.create_all(self.engine)
        with Session(self.engine) as session:
            if not session.get(VaultConfig, 1):
                session.add(VaultConfig(id=1))
            if not session.get(StateSnapshot, 1):
                session.add(StateSnapshot(id=1))
            session.commit()

    def _session(self) -> Session:
        if not self.engine: raise ValueError("DB not connected")
        return Session(self.engine, expire_on_commit=False)

    # --- vault identity ---
    def get_config(self) -> VaultConfig:
        with self._session() as session:
            config = session.get(VaultConfig, 1)
            if config is None:
                config = VaultConfig(id=1)
                session.add(config)
                session.commit()
            return config

    def create_vault(self, kdf_salt: str, validation_token: str) -> VaultConfig:
        """Store the salt and validation token together, once.

        There is deliberately no way to delete or regenerate the salt.
        """
        with self._session() as session:
            config = session.get(VaultConfig, 1) or VaultConfig(id=1)
            if config.kdf_salt and config.kdf_salt != kdf_salt:
                raise IdentityError("A vault salt already exists and cannot be replaced")
            config.kdf_salt = kdf_salt
            config.validation_token = validation_token
            session.add(config)
            session.commit()
            return config

    # --- state snapshots ---
    def _snapshot(self, session: Session) -> StateSnapshot:
        snapshot = session.get(StateSnapshot, 1)
        if snapshot is None:
            snapshot = StateSnapshot(id=1)
            session.add(snapshot)
        return snapshot

    def load_plain_state(self) -> dict[str, Any]:
        with self._session() as session:
            return json.loads(self._snapshot(session).plain_state or "{}")

    def merge_plain_state(self, partial: dict[str, Any]) -> dict[str, Any]:
        with self._session() as session:
            snapshot = self._snapshot(session)
            merged = deep_merge(json.loads(snapshot.plain_state or "{}"), partial)
            snapshot.plain_state = json.dumps(merged, sort_keys=True)
            snapshot.updated_at = datetime.now().timestamp()
            session.add(snapshot)
            session.commit()
            return merged

    def load_encrypted_state(self) -> Optional[str]:
        with self._session() as session:
            return self._snapshot(session).encrypted_state

    def save_encrypted_state(self, token: str):
        with self._session() as session:
            snapshot = self._snapshot(session)
            snapshot.encrypted_state = token
            snapshot.updated_at = datetime.now().timestamp()
            session.add(snapshot)
            session.commit()
