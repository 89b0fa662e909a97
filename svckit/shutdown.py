"""Shutdown coordination.

``ShutdownCoordinator`` races OS termination signals against the listener
runner's terminal event and drives a single, time-bounded graceful shutdown,
whichever fires first.
"""

from __future__ import annotations

import asyncio
import enum
import signal
from collections.abc import Awaitable, Iterable
from typing import Any, Protocol

import structlog

from svckit.runner import is_benign

log = structlog.get_logger()

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)

# Extra time granted to the runner past its own deadline before giving up on it
SHUTDOWN_GRACE = 0.5


class Stoppable(Protocol):
    errors: asyncio.Queue[BaseException]

    async def shutdown(self, timeout: float) -> None: ...


class State(str, enum.Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


async def wait_first(**sources: Awaitable[Any]) -> dict[str, Any]:
    """Wait for the first of several awaitables to complete.

    Returns ``{name: result}`` for every source that had completed when the
    wait returned (usually one). The others are cancelled and reaped before
    returning. An exception raised by a completed source propagates.
    """
    tasks = {
        asyncio.ensure_future(aw): name for name, aw in sources.items()
    }
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    return {tasks[task]: task.result() for task in done}


class ShutdownCoordinator:
    """Single point of truth for "should the server stop now".

    Exactly one shutdown sequence runs per coordinator, whatever triggers it
    and however many times it is triggered.
    """

    def __init__(
        self,
        runner: Stoppable,
        *,
        timeout: float = 10.0,
        signals: Iterable[signal.Signals] = DEFAULT_SIGNALS,
    ) -> None:
        self._runner = runner
        self.timeout = timeout
        self._signals = tuple(signals)
        self._received: asyncio.Queue[signal.Signals] = asyncio.Queue(maxsize=1)
        self._state = State.RUNNING
        self._stopped = asyncio.Event()
        self.fatal_error: BaseException | None = None
        self.trigger: str | None = None

    @property
    def state(self) -> State:
        return self._state

    async def watch(self) -> None:
        """Wait for a signal or a listener event and shut down once."""
        if self._state is not State.RUNNING:
            return

        loop = asyncio.get_running_loop()
        installed = self._install_signal_handlers(loop)
        try:
            events = await wait_first(
                signal=self._received.get(),
                listener=self._runner.errors.get(),
            )

            error = events.get("listener")
            if error is not None and not is_benign(error):
                self.trigger = self.trigger or "listener_error"
                self.fatal_error = error
                await self.shutdown()
                log.critical(
                    "listener_failed",
                    error=str(error),
                    error_type=type(error).__name__,
                )
                return

            if "signal" in events:
                self.trigger = self.trigger or "signal"
                log.info("signal_received", signal=events["signal"].name)
            else:
                self.trigger = self.trigger or "listener_closed"
                log.info("listener_closed")
            await self.shutdown()
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)

    async def shutdown(self) -> None:
        """Run the graceful shutdown routine, at most once.

        Later or concurrent calls wait for the first one to finish.
        """
        if self._state is not State.RUNNING:
            await self._stopped.wait()
            return

        self._state = State.SHUTTING_DOWN
        self.trigger = self.trigger or "manual"
        log.info("[+] Start shutdown", trigger=self.trigger, timeout=self.timeout)
        try:
            await asyncio.wait_for(
                self._runner.shutdown(self.timeout), self.timeout + SHUTDOWN_GRACE
            )
        except asyncio.TimeoutError:
            log.warning("shutdown_deadline_exceeded", timeout=self.timeout)
        finally:
            self._state = State.STOPPED
            self._stopped.set()
            log.info("[-] End shutdown")

    def _on_signal(self, sig: signal.Signals) -> None:
        try:
            self._received.put_nowait(sig)
        except asyncio.QueueFull:
            log.debug("signal_ignored", signal=sig.name)

    def _install_signal_handlers(
        self, loop: asyncio.AbstractEventLoop
    ) -> list[signal.Signals]:
        installed: list[signal.Signals] = []
        for sig in self._signals:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, ValueError, RuntimeError) as exc:
                # Windows, or not the main thread
                log.warning("signal_handler_unavailable", signal=sig.name, error=str(exc))
                continue
            installed.append(sig)
        return installed
