import base64
import json
import logging
import os
from typing import Any
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from .errors import IdentityError, InvalidPassword, NoVaultConfigured, VaultLocked

logger = logging.getLogger("softphone.crypto")

DEFAULT_ITERATIONS = 600000
VALIDATION_PLAINTEXT = "VERIFY"


class CryptoManager:
    def __init__(self, iterations: int = DEFAULT_ITERATIONS):
        self.iterations = iterations
        self._key: bytearray | None = None
        self._fernet: Fernet | None = None

    @property
    def is_unlocked(self) -> bool:
        return self._key is not None

    def generate_salt(self) -> str:
        salt = os.urandom(16)
        return base64.b64encode(salt).decode('utf-8')

    def derive_key(self, material: str, salt_b64: str) -> bytes:
        salt = base64.b64decode(salt_b64)
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self.iterations,
        )
        return base64.urlsafe_b64encode(kdf.derive(material.encode('utf-8')))

    def use_key(self, key: bytes):
        self.clear()
        self._key = bytearray(key)
        self._fernet = Fernet(key)

    def clear(self):
        if self._key is not None:
            for i in range(len(self._key)):
                self._key[i] = 0
        self._key = None
        self._fernet = None

    def encrypt_text(self, text: str) -> str:
        if not self._fernet:
            raise VaultLocked()
        return self._fernet.encrypt(text.encode('utf-8')).decode('utf-8')

    def decrypt_text(self, token: str) -> str:
        if not self._fernet:
            raise VaultLocked()
        return self._fernet.decrypt(token.encode('utf-8')).decode('utf-8')

    def encrypt_state(self, state: dict[str, Any]) -> str:
        return self.encrypt_text(json.dumps(state, sort_keys=True))

    def decrypt_state(self, token: str) -> dict[str, Any]:
        try:
            return json.loads(self.decrypt_text(token))
        except InvalidToken:
            raise InvalidPassword("Invalid password or corrupted vault data")


class IdentityProvider:
    """Derives the vault key from the user's credentials.

    The salt and the encrypted validation token live in the persistence
    backend. The salt is created once, on the first successful derivation,
    and is never replaced afterwards: every encrypted snapshot depends on it.
    A candidate key only replaces the loaded one after it has been checked.
    """

    def __init__(self, db, crypto: CryptoManager):
        self.db = db
        self.crypto = crypto

    @staticmethod
    def _material(username: str, password: str) -> str:
        return f"{username}{password}"

    @property
    def vault_configured(self) -> bool:
        config = self.db.get_config()
        return bool(config.kdf_salt and config.validation_token)

    @property
    def is_unlocked(self) -> bool:
        return self.crypto.is_unlocked

    def load_identity(self, username: str, password: str) -> bytes:
        if self.vault_configured:
            return self.unlock_vault(username, password)

        salt = self.crypto.generate_salt()
        key = self.crypto.derive_key(self._material(username, password), salt)
        try:
            val_token = Fernet(key).encrypt(VALIDATION_PLAINTEXT.encode('utf-8')).decode('utf-8')
            self.db.create_vault(kdf_salt=salt, validation_token=val_token)
        except IdentityError:
            raise
        except Exception as e:
            raise IdentityError(f"Failed to create vault identity: {e}") from e

        self.crypto.use_key(key)
        logger.info("Created new vault identity for %s", username)
        return key

    def unlock_vault(self, username: str, password: str) -> bytes:
        config = self.db.get_config()
        if not config.kdf_salt or not config.validation_token:
            raise NoVaultConfigured()

        key = self.crypto.derive_key(self._material(username, password), config.kdf_salt)
        try:
            check_str = Fernet(key).decrypt(config.validation_token.encode('utf-8')).decode('utf-8')
            if check_str != VALIDATION_PLAINTEXT:
                raise InvalidToken
        except InvalidToken:
            logger.warning("Vault unlock rejected for %s", username)
            raise InvalidPassword()

        self.crypto.use_key(key)
        logger.info("Vault unlocked for %s", username)
        return key

    def lock(self):
        self.crypto.clear()
