# queue_server/app/config.py
"""Server settings, read from the environment (prefix ``QUEUE_``) or a .env file."""
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[2]
DB_PATH = str(PROJECT_ROOT / "queue.db")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="QUEUE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = f"sqlite:///{DB_PATH}"
    debug: bool = False

    # safety-net pass; bounds staleness of positions when a change trigger is missed
    recalc_interval_seconds: float = 5.0
    recalc_on_change: bool = True

    default_estimated_duration: int = 15

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
