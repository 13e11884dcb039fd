"""Read-only status queries for health probes and the admin /status command."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from core.ports import HealthProbePort

LOGGER = logging.getLogger(__name__)


class SessionSnapshotSource(Protocol):
    def snapshot(self) -> dict:
        ...


def format_uptime(seconds: float) -> str:
    total_minutes = int(seconds // 60)
    days, remainder = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(remainder, 60)
    return f"{days}d {hours}h {minutes}m"


class StatusReporter:
    def __init__(
        self,
        probe: HealthProbePort,
        session: Optional[SessionSnapshotSource] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._probe = probe
        self._session = session
        self._clock = clock
        self._started = clock()

    def uptime(self) -> float:
        return max(self._clock() - self._started, 0.0)

    def liveness(self) -> dict:
        uptime = self.uptime()
        return {
            "status": "alive",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "uptime": round(uptime, 1),
            "uptime_human": format_uptime(uptime),
        }

    def readiness(self) -> dict:
        try:
            database = self._probe.self_test()
        except Exception as error:
            LOGGER.warning("Database self-test failed: %s", error)
            database = {"success": False, "error": str(error)}
        ready = bool(database.get("success"))
        return {
            "status": "ready" if ready else "not_ready",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": {"database": database},
        }

    def health(self) -> dict:
        readiness = self.readiness()
        report = self.liveness()
        messenger = self._session.snapshot() if self._session is not None else {"state": "disabled", "connected": False}
        database_ok = readiness["status"] == "ready"
        messenger_ok = messenger.get("connected", False) or messenger.get("state") == "disabled"
        if database_ok and messenger_ok:
            status = "healthy"
        elif database_ok:
            status = "degraded"
        else:
            status = "unhealthy"
        report.update(
            {
                "status": status,
                "checks": {"database": readiness["checks"]["database"], "messenger": messenger},
            }
        )
        return report
