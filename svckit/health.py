"""Reusable status router.

Provides ``GET {prefix}/status``, answering ``{"status": "ok"}`` while the
process serves.
"""

from __future__ import annotations

from fastapi import APIRouter, Response
from pydantic import BaseModel

from svckit.responses import respond_ok


class StatusBody(BaseModel):
    status: str


def create_status_router(*, prefix: str = "/v1") -> APIRouter:
    """Build a router exposing the service status.

    Args:
        prefix: Path prefix for the ``/status`` route.

    Returns:
        A FastAPI ``APIRouter`` with ``{prefix}/status``.
    """
    router = APIRouter(prefix=prefix, tags=["status"])

    @router.get("/status", summary="Service status")
    async def service_status() -> Response:
        return respond_ok(StatusBody(status="ok"))

    return router
