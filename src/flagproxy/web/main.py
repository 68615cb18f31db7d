"""Command-line entrypoint for running the flag proxy."""

from __future__ import annotations

import asyncio
import os

import structlog
import uvicorn

from ..common.settings import FlagProxySettings, TcpListen, UnixSocketListen
from .app import create_app

LOGGER = structlog.get_logger("flagproxy.main")


def uvicorn_config(settings: FlagProxySettings) -> uvicorn.Config:
    target = settings.listen_target
    if isinstance(target, TcpListen):
        bind = {"host": target.host, "port": target.port}
    else:
        bind = {"uds": str(target.path)}
    return uvicorn.Config(
        create_app(settings),
        log_config=None,
        log_level=settings.log_level.lower(),
        access_log=False,
        timeout_graceful_shutdown=settings.shutdown_timeout_seconds,
        **bind,
    )


async def _wait_started(server: uvicorn.Server, serve_task: asyncio.Task) -> None:
    while not server.started:
        if serve_task.done():
            # Startup failed; surface the exception from serve().
            await serve_task
            raise RuntimeError("http server exited during startup")
        await asyncio.sleep(0.05)


async def main() -> None:
    settings = FlagProxySettings()
    target = settings.listen_target
    server = uvicorn.Server(uvicorn_config(settings))
    LOGGER.info("http_starting", pid=os.getpid(), listen=str(target))

    # uvicorn handles SIGINT/SIGTERM and closes connections still open after
    # the graceful shutdown timeout.
    serve_task = asyncio.create_task(server.serve())
    await _wait_started(server, serve_task)
    if isinstance(target, UnixSocketListen) and target.mode is not None:
        os.chmod(target.path, target.mode)
    LOGGER.info("http_listening", listen=str(target))

    await serve_task
    LOGGER.info("http_stopped")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
