from __future__ import annotations

import socket
from collections.abc import Iterator

import pytest
from fastapi import FastAPI

from svckit.health import create_status_router


@pytest.fixture()
def status_app() -> FastAPI:
    app = FastAPI()
    app.include_router(create_status_router())
    return app


@pytest.fixture()
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture()
def occupied_port() -> Iterator[int]:
    """A port with a live listener on it, so binding it again fails."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen()
        yield sock.getsockname()[1]
