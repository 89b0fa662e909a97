"""Listener runner — owns the HTTP listener lifecycle.

The runner binds a TCP socket, serves an ASGI app on it with uvicorn from a
dedicated asyncio task, and publishes exactly one terminal event on
``errors`` when serving ends:

  * ``ServerClosed`` when the listener was closed on purpose (benign)
  * the failure itself otherwise (bind error, aborted startup, ...)

Signal handling is left to the caller (see ``svckit.shutdown``).
"""

from __future__ import annotations

import asyncio
import contextlib
import socket
from collections.abc import Callable, Iterator
from typing import Any

import structlog
import uvicorn
from starlette.types import ASGIApp, Message, Receive, Scope, Send

log = structlog.get_logger()

ShutdownHook = Callable[[], None]


class ServerClosed(Exception):
    """The listener was closed deliberately. Not a failure."""

    def __init__(self, message: str = "server closed") -> None:
        super().__init__(message)


class ListenerError(Exception):
    """The listener could not bind, start or keep serving."""


def is_benign(event: BaseException | None) -> bool:
    """Return True for the events that must not be treated as failures."""
    return event is None or isinstance(event, ServerClosed)


class DeadlineApp:
    """ASGI wrapper enforcing per-request read and write deadlines.

    ``read_timeout`` bounds each wait for request body chunks until the body
    is complete. ``write_timeout`` bounds the whole request/response cycle.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        read_timeout: float,
        write_timeout: float,
    ) -> None:
        self.app = app
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        body_complete = False

        async def receive_with_deadline() -> Message:
            nonlocal body_complete
            if body_complete:
                return await receive()
            message = await asyncio.wait_for(receive(), self.read_timeout)
            if message["type"] != "http.request" or not message.get("more_body", False):
                body_complete = True
            return message

        try:
            await asyncio.wait_for(
                self.app(scope, receive_with_deadline, send), self.write_timeout
            )
        except asyncio.TimeoutError:
            log.warning(
                "request_deadline_exceeded",
                method=scope.get("method"),
                path=scope.get("path"),
            )
            raise


class _Server(uvicorn.Server):
    """uvicorn server that leaves process signals alone and reports readiness."""

    def __init__(self, config: uvicorn.Config) -> None:
        super().__init__(config)
        self.ready = asyncio.Event()

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield

    async def startup(self, sockets: list[socket.socket] | None = None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            self.ready.set()


class ListenerRunner:
    """Run an ASGI app on a TCP listener from a background task."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        host: str = "0.0.0.0",
        port: int = 8080,
        read_timeout: float = 5.0,
        write_timeout: float = 10.0,
        idle_timeout: float = 10.0,
        shutdown_timeout: float = 10.0,
        event_buffer: int = 100,
        log_level: str = "info",
    ) -> None:
        self.host = host
        self.port = port
        self.errors: asyncio.Queue[BaseException] = asyncio.Queue(maxsize=event_buffer)

        config = uvicorn.Config(
            DeadlineApp(app, read_timeout=read_timeout, write_timeout=write_timeout),
            host=host,
            port=port,
            timeout_keep_alive=idle_timeout,
            timeout_graceful_shutdown=shutdown_timeout,
            log_config=None,
            log_level=log_level.lower(),
        )
        self._server = _Server(config)
        self._hooks: list[ShutdownHook] = []
        self._sock: socket.socket | None = None
        self._bound: tuple[str, int] | None = None
        self._task: asyncio.Task[None] | None = None
        self._done = asyncio.Event()
        self._running = False
        self._closing = False

    # ── Lifecycle ─────────────────────────────

    def start(self) -> asyncio.Task[None]:
        """Schedule ``run`` on its own task and return the task."""
        if self._task is not None:
            raise RuntimeError("listener runner already started")
        self._task = asyncio.create_task(self.run(), name="listener-runner")
        return self._task

    async def run(self) -> None:
        """Serve until closed, then publish the terminal event."""
        if self._running:
            raise RuntimeError("listener runner already running")
        self._running = True

        log.info("[+] Start server", host=self.host, port=self.port)
        event: BaseException
        try:
            await self.listen_and_serve()
        except Exception as exc:
            event = exc
        else:
            event = ServerClosed()
        finally:
            self._done.set()

        self.errors.put_nowait(event)
        log.info("[-] End server", outcome=type(event).__name__)

    async def listen_and_serve(self) -> None:
        """Bind and serve; return normally only after a deliberate close."""
        if self._closing:
            return

        try:
            self._sock = socket.create_server(
                (self.host, self.port),
                family=socket.AF_INET6 if ":" in self.host else socket.AF_INET,
                backlog=self._server.config.backlog,
            )
        except OSError as exc:
            raise ListenerError(
                f"listen tcp {self.host}:{self.port}: {exc.strerror or exc}"
            ) from exc

        sockname: Any = self._sock.getsockname()
        self._bound = (sockname[0], sockname[1])

        try:
            await self._server.serve(sockets=[self._sock])
        except SystemExit as exc:
            # uvicorn exits on a failed lifespan startup
            raise ListenerError(f"server startup aborted (exit code {exc.code})") from exc
        except OSError as exc:
            raise ListenerError(f"serve {self.host}:{self.port}: {exc}") from exc
        finally:
            for server in getattr(self._server, "servers", []):
                server.close()
            self._sock.close()

        if not self._server.started and not self._closing:
            raise ListenerError("server exited before accepting connections")

    async def shutdown(self, timeout: float) -> None:
        """Close the listener and wait up to ``timeout`` for serving to end.

        Shutdown hooks run once, in registration order, before the listener is
        asked to exit. Calls after the first are no-ops.
        """
        if self._closing:
            return
        self._closing = True

        self._run_hooks()
        self._server.should_exit = True

        if not self._running:
            return
        try:
            await asyncio.wait_for(self._done.wait(), timeout)
        except asyncio.TimeoutError:
            log.warning("graceful_shutdown_timeout", timeout=timeout)
            self._server.force_exit = True

    def register_on_shutdown(self, hook: ShutdownHook) -> None:
        self._hooks.append(hook)

    def _run_hooks(self) -> None:
        for hook in self._hooks:
            try:
                hook()
            except Exception:
                log.exception(
                    "shutdown_hook_failed", hook=getattr(hook, "__name__", repr(hook))
                )

    # ── Introspection ─────────────────────────

    async def wait_ready(self, timeout: float = 5.0) -> bool:
        """Wait until connections are accepted; False if serving ended first."""
        waiters = [
            asyncio.ensure_future(self._server.ready.wait()),
            asyncio.ensure_future(self._done.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
        return self._server.ready.is_set() and not self._done.is_set()

    @property
    def address(self) -> tuple[str, int]:
        """The bound ``(host, port)``; the configured one before binding."""
        return self._bound or (self.host, self.port)

    @property
    def closing(self) -> bool:
        return self._closing

    @property
    def done(self) -> bool:
        return self._done.is_set()
