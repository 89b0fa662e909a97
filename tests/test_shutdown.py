from __future__ import annotations

import asyncio
import os
import signal

import pytest
from structlog.testing import capture_logs

from svckit.runner import ListenerError, ServerClosed
from svckit.shutdown import SHUTDOWN_GRACE, ShutdownCoordinator, State, wait_first


class FakeRunner:
    """Stands in for ListenerRunner: counts shutdowns, publishes ServerClosed."""

    def __init__(self, *, hang: bool = False) -> None:
        self.errors: asyncio.Queue[BaseException] = asyncio.Queue(maxsize=100)
        self.calls = 0
        self.hang = hang

    async def shutdown(self, timeout: float) -> None:
        self.calls += 1
        if self.hang:
            await asyncio.sleep(3600)
        self.errors.put_nowait(ServerClosed())


def _events(logs: list[dict], level: str | None = None) -> list[str]:
    return [e["event"] for e in logs if level is None or e["log_level"] == level]


async def _start_watch(coordinator: ShutdownCoordinator) -> asyncio.Task[None]:
    watcher = asyncio.create_task(coordinator.watch())
    # give the watcher a chance to install its signal handlers
    await asyncio.sleep(0.05)
    return watcher


@pytest.mark.asyncio
async def test_signal_triggers_single_shutdown() -> None:
    runner = FakeRunner()
    coordinator = ShutdownCoordinator(runner, timeout=1.0, signals=[signal.SIGUSR1])
    watcher = await _start_watch(coordinator)

    with capture_logs() as logs:
        os.kill(os.getpid(), signal.SIGUSR1)
        await asyncio.wait_for(watcher, 2.0)

    assert runner.calls == 1
    assert coordinator.state is State.STOPPED
    assert coordinator.trigger == "signal"
    assert coordinator.fatal_error is None
    events = _events(logs)
    assert events.index("[+] Start shutdown") < events.index("[-] End shutdown")
    assert _events(logs, "critical") == []


@pytest.mark.asyncio
async def test_repeated_signals_shut_down_once() -> None:
    runner = FakeRunner()
    coordinator = ShutdownCoordinator(runner, timeout=1.0, signals=[signal.SIGUSR1])
    watcher = await _start_watch(coordinator)

    os.kill(os.getpid(), signal.SIGUSR1)
    os.kill(os.getpid(), signal.SIGUSR1)
    await asyncio.wait_for(watcher, 2.0)

    assert runner.calls == 1
    assert coordinator.state is State.STOPPED


@pytest.mark.asyncio
async def test_listener_error_shuts_down_then_logs_fatal_once() -> None:
    runner = FakeRunner()
    coordinator = ShutdownCoordinator(runner, timeout=1.0, signals=[])
    failure = ListenerError("listen tcp 0.0.0.0:8080: address already in use")
    runner.errors.put_nowait(failure)

    with capture_logs() as logs:
        await asyncio.wait_for(coordinator.watch(), 2.0)

    assert runner.calls == 1
    assert coordinator.fatal_error is failure
    assert coordinator.trigger == "listener_error"
    assert coordinator.state is State.STOPPED

    assert _events(logs, "critical") == ["listener_failed"]
    events = _events(logs)
    assert (
        events.index("[+] Start shutdown")
        < events.index("[-] End shutdown")
        < events.index("listener_failed")
    )


@pytest.mark.asyncio
async def test_benign_close_is_never_fatal() -> None:
    runner = FakeRunner()
    coordinator = ShutdownCoordinator(runner, timeout=1.0, signals=[])
    runner.errors.put_nowait(ServerClosed())

    with capture_logs() as logs:
        await asyncio.wait_for(coordinator.watch(), 2.0)

    assert coordinator.fatal_error is None
    assert coordinator.trigger == "listener_closed"
    assert runner.calls == 1
    assert _events(logs, "critical") == []


@pytest.mark.asyncio
async def test_concurrent_shutdowns_run_once() -> None:
    runner = FakeRunner()
    coordinator = ShutdownCoordinator(runner, timeout=1.0, signals=[])

    await asyncio.gather(*(coordinator.shutdown() for _ in range(3)))
    await coordinator.shutdown()

    assert runner.calls == 1
    assert coordinator.state is State.STOPPED
    assert coordinator.trigger == "manual"


@pytest.mark.asyncio
async def test_hung_shutdown_is_bounded() -> None:
    runner = FakeRunner(hang=True)
    coordinator = ShutdownCoordinator(runner, timeout=0.2, signals=[])
    loop = asyncio.get_running_loop()

    started = loop.time()
    with capture_logs() as logs:
        await coordinator.shutdown()
    elapsed = loop.time() - started

    assert elapsed < 0.2 + SHUTDOWN_GRACE + 0.5
    assert coordinator.state is State.STOPPED
    assert "shutdown_deadline_exceeded" in _events(logs, "warning")
    assert _events(logs)[-1] == "[-] End shutdown"


@pytest.mark.asyncio
async def test_manual_shutdown_releases_watcher() -> None:
    runner = FakeRunner()
    coordinator = ShutdownCoordinator(runner, timeout=1.0, signals=[])
    watcher = await _start_watch(coordinator)

    await coordinator.shutdown()
    await asyncio.wait_for(watcher, 2.0)

    assert runner.calls == 1
    assert coordinator.trigger == "manual"
    assert coordinator.fatal_error is None


@pytest.mark.asyncio
async def test_watch_after_shutdown_returns_immediately() -> None:
    runner = FakeRunner()
    coordinator = ShutdownCoordinator(runner, timeout=1.0, signals=[])
    await coordinator.shutdown()

    await asyncio.wait_for(coordinator.watch(), 0.5)

    assert runner.calls == 1


@pytest.mark.asyncio
async def test_wait_first_cancels_the_losers() -> None:
    slow_cancelled = asyncio.Event()

    async def slow() -> str:
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            slow_cancelled.set()
            raise
        return "slow"

    async def fast() -> str:
        await asyncio.sleep(0.01)
        return "fast"

    result = await wait_first(slow=slow(), fast=fast())

    assert result == {"fast": "fast"}
    assert slow_cancelled.is_set()


@pytest.mark.asyncio
async def test_wait_first_propagates_errors() -> None:
    async def boom() -> None:
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        await wait_first(boom=boom(), idle=asyncio.sleep(30))


@pytest.mark.asyncio
async def test_wait_first_keeps_queued_items_of_cancelled_getters() -> None:
    first: asyncio.Queue[int] = asyncio.Queue()
    second: asyncio.Queue[int] = asyncio.Queue()
    first.put_nowait(1)

    result = await wait_first(first=first.get(), second=second.get())
    second.put_nowait(2)

    assert result == {"first": 1}
    assert second.get_nowait() == 2
