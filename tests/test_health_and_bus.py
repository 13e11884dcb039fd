from __future__ import annotations

import asyncio
import json
import threading

from adapters.health_server import _respond, build_app
from adapters.redis_bus import decode_invalidation


def test_degraded_is_still_served_as_ok() -> None:
    assert _respond({"status": "healthy"}).status == 200
    assert _respond({"status": "degraded"}).status == 200
    assert _respond({"status": "unhealthy"}).status == 503
    assert _respond({"status": "not_ready"}).status == 503


def test_response_body_is_the_report() -> None:
    response = _respond({"status": "alive", "uptime": 1.0})

    assert json.loads(response.text) == {"status": "alive", "uptime": 1.0}


def test_decode_invalidation_payloads() -> None:
    assert decode_invalidation(b'{"guildId": "123"}') == "123"
    assert decode_invalidation('{"guildId": 456}') == "456"
    assert decode_invalidation('{"guildId": null}') is None
    assert decode_invalidation("not json") is None
    assert decode_invalidation("[1, 2]") is None


class _ThreadRecordingReporter:
    def __init__(self) -> None:
        self.threads: dict[str, int] = {}

    def liveness(self) -> dict:
        self.threads["live"] = threading.get_ident()
        return {"status": "alive"}

    def readiness(self) -> dict:
        self.threads["ready"] = threading.get_ident()
        return {"status": "ready"}

    def health(self) -> dict:
        self.threads["health"] = threading.get_ident()
        return {"status": "unhealthy"}


def test_database_backed_checks_run_off_the_event_loop() -> None:
    reporter = _ThreadRecordingReporter()
    handlers = {
        route.resource.canonical: route.handler
        for route in build_app(reporter).router.routes()
        if route.method == "GET"
    }

    async def scenario() -> dict:
        return {path: (await handler(None)).status for path, handler in handlers.items()}

    statuses = asyncio.run(scenario())

    assert statuses == {"/health/live": 200, "/health/ready": 200, "/health": 503}
    loop_thread = threading.get_ident()
    assert reporter.threads["live"] == loop_thread
    assert reporter.threads["ready"] != loop_thread
    assert reporter.threads["health"] != loop_thread
