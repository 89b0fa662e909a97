"""Status Service — application factory and process entry point.

Runs the FastAPI app on a listener runner and hands process lifetime to a
shutdown coordinator:
  1. SIGINT/SIGTERM, or a listener failure, triggers one graceful shutdown
  2. The process exits 0 after a clean shutdown, 1 after a listener failure
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import FastAPI

from status_service.core.config import StatusServiceSettings, settings
from status_service.core.events import lifespan
from status_service.routers import status
from svckit.logging import setup_logging
from svckit.runner import ListenerRunner
from svckit.shutdown import ShutdownCoordinator, State

log = structlog.get_logger()


def create_app(config: StatusServiceSettings = settings) -> FastAPI:
    application = FastAPI(
        title="Status Service",
        version="0.1.0",
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
        openapi_url="/openapi.json" if config.debug else None,
        lifespan=lifespan,
    )

    application.include_router(status.router)

    return application


def _on_shutdown() -> None:
    log.info("on_shutdown")


async def serve(config: StatusServiceSettings = settings) -> int:
    """Serve until a signal or a listener failure; return the exit code."""
    runner = ListenerRunner(
        create_app(config),
        host=config.service_host,
        port=config.service_port,
        read_timeout=config.read_timeout,
        write_timeout=config.write_timeout,
        idle_timeout=config.idle_timeout,
        shutdown_timeout=config.shutdown_timeout,
        event_buffer=config.event_buffer,
        log_level=config.log_level,
    )
    runner.register_on_shutdown(_on_shutdown)
    coordinator = ShutdownCoordinator(runner, timeout=config.shutdown_timeout)

    watcher = asyncio.create_task(coordinator.watch(), name="shutdown-coordinator")
    # let the coordinator install its signal handlers before serving
    await asyncio.sleep(0)

    await runner.start()
    # the runner always publishes a terminal event, so the watcher ends too
    await watcher

    log.info("[-] end", state=coordinator.state.value, trigger=coordinator.trigger)
    if coordinator.fatal_error is not None:
        return 1
    if coordinator.state is not State.STOPPED:
        log.error("shutdown_incomplete", state=coordinator.state.value)
        return 1
    return 0


def main() -> int:
    setup_logging(
        log_level=settings.log_level,
        json_logs=settings.json_logs,
        service_name=settings.service_name,
    )
    log.info(
        "status_service starting",
        host=settings.service_host,
        port=settings.service_port,
    )
    return asyncio.run(serve(settings))


if __name__ == "__main__":
    raise SystemExit(main())
