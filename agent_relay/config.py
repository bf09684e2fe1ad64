"""
Configuration management for the relay.
Loads settings from environment variables and an optional .env file.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Server settings, read from RELAY_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="RELAY_", env_file=".env", extra="ignore")

    # Storage
    database_url: str = Field(default="sqlite:///./relay.db")

    # HTTP binding
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3500)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    # Admission control
    cooldown_seconds: float = Field(default=30.0, ge=0)
    limiter_idle_factor: float = Field(default=10.0, ge=1)

    # Live fan-out
    live_queue_size: int = Field(default=256, ge=1)

    # Logging
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = Field(default=None)


class ClientSettings(BaseSettings):
    """Polling client settings. Same variable names the JS client reads."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    server_url: str = Field(default="http://localhost:3500")
    agent_key: str = Field(default="")
    agent_name: str = Field(default="unnamed-agent")
    poll_interval: int = Field(default=15000, ge=100)  # milliseconds
    webhook_url: str = Field(default="")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
