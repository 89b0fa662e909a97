"""JSON response helper."""

from __future__ import annotations

from typing import Any

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response


def respond_ok(body: Any = None) -> Response:
    """Return 204 with no body for ``None``, else 200 with ``body`` as JSON.

    The content type is ``application/json`` in both cases.
    """
    if body is None:
        return Response(
            status_code=status.HTTP_204_NO_CONTENT,
            media_type=JSONResponse.media_type,
        )
    return JSONResponse(jsonable_encoder(body), status_code=status.HTTP_200_OK)
