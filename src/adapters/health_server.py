"""HTTP health surface: /health/live, /health/ready and /health."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from aiohttp import web

from core.status import StatusReporter

LOGGER = logging.getLogger(__name__)

# A bridge waiting for a QR scan is degraded, not down.
_OK_STATUSES = {"alive", "ready", "healthy", "degraded"}


def _respond(report: dict) -> web.Response:
    status = 200 if report.get("status") in _OK_STATUSES else 503
    return web.json_response(report, status=status)


def build_app(reporter: StatusReporter) -> web.Application:
    async def live(request: web.Request) -> web.Response:
        return _respond(reporter.liveness())

    # Readiness and health hit SQLite; keep them off the event loop.
    async def ready(request: web.Request) -> web.Response:
        return _respond(await asyncio.to_thread(reporter.readiness))

    async def health(request: web.Request) -> web.Response:
        return _respond(await asyncio.to_thread(reporter.health))

    app = web.Application()
    app.router.add_get("/health/live", live)
    app.router.add_get("/health/ready", ready)
    app.router.add_get("/health", health)
    return app


class HealthServer:
    def __init__(self, reporter: StatusReporter, host: str = "0.0.0.0", port: int = 8080) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        self._runner = web.AppRunner(build_app(self._reporter), access_log=None)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        LOGGER.info("Health endpoints listening on %s:%s", self._host, self._port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
