"""Service settings.

Values come from environment variables prefixed with ``POS_`` (or a local
``.env`` file). :func:`get_settings` caches the merged result.
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="POS_", env_file=".env", extra="ignore")

    app_name: str = "Restaurant POS Backend"
    log_level: str = "INFO"
    # Grace window between payment confirmation and automatic table release
    release_grace_seconds: int = Field(10, ge=0)
    countdown_tick_seconds: float = Field(1.0, gt=0)
    timezone: str = "UTC"
    seed_demo_data: bool = True
    cors_origins: List[str] = ["*"]
    port: int = 8000


@lru_cache
def get_settings() -> Settings:
    return Settings()
