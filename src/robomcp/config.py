"""Process settings read from the environment."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for one client process; env vars use the `ROBOSYSTEMS_` prefix."""

    # Remote API
    api_url: str = "http://localhost:8000"
    api_key: str = Field(min_length=1)
    graph_id: str = Field(default="default", min_length=1)

    # HTTP client
    request_timeout_seconds: float = 30.0

    # Host surface
    host: str = "127.0.0.1"
    port: int = 8765
    metrics_interval_seconds: float = 300.0

    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="ROBOSYSTEMS_", env_file=None, extra="ignore")

    @property
    def masked_api_key(self) -> str:
        return f"{self.api_key[:10]}..."


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
