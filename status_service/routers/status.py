"""Status Service — status endpoint."""

from __future__ import annotations

from svckit.health import create_status_router

router = create_status_router(prefix="/v1")
