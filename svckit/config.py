"""Base configuration using Pydantic Settings.

Service settings inherit from ``BaseServiceSettings``. Values are loaded
from environment variables and .env files.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseServiceSettings(BaseSettings):
    """Settings shared by every service built on the listener runner."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── General ───────────────────────────────
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    service_name: str = "svckit"

    # ── Listener ──────────────────────────────
    service_host: str = "0.0.0.0"
    service_port: int = Field(default=8080, ge=0, le=65535)
    read_timeout: float = Field(default=5.0, gt=0)
    write_timeout: float = Field(default=10.0, gt=0)
    idle_timeout: float = Field(default=10.0, gt=0)

    # ── Shutdown ──────────────────────────────
    shutdown_timeout: float = Field(default=10.0, gt=0)
    event_buffer: int = Field(default=100, ge=1)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def json_logs(self) -> bool:
        return self.is_production
