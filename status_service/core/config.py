"""Status Service — configuration."""

from __future__ import annotations

from svckit.config import BaseServiceSettings


class StatusServiceSettings(BaseServiceSettings):
    service_name: str = "status_service"
    service_port: int = 8080


settings = StatusServiceSettings()
