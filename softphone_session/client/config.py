import sys
from functools import lru_cache
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_app_data_path() -> Path:
    app_name = "SoftphoneSession"
    home = Path.home()

    if sys.platform == "win32":
        path = home / "AppData" / "Roaming" / app_name
    elif sys.platform == "darwin":
        path = home / "Library" / "Application Support" / app_name
    else:
        path = home / ".local" / "share" / app_name
    return path


class Settings(BaseSettings):
    PROJECT_NAME: str = "Softphone Session"

    # Identity provider (the telephony platform API).
    PLATFORM_URL: str = "https://partner.voipgrid.nl/"
    HTTP_TIMEOUT: float = 10.0

    # Persisted state and vault identity.
    DATABASE_URL: str = f"sqlite:///{(get_app_data_path() / 'state.db').as_posix()}"

    # PBKDF2 rounds for the vault key. Changing this invalidates existing vaults.
    KDF_ITERATIONS: int = 600000

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
