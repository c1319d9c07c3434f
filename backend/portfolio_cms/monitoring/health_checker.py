"""
Database health checker

Runs a liveness probe on its own timer. A failure streak that reaches the
threshold triggers exactly one reconnect attempt; the next attempt can only
happen after a success resets the streak.
"""

import asyncio
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from .alerts import AlertLog
from .base import PeriodicMonitor

Probe = Callable[[], Awaitable[object]]
FailureListener = Callable[[str], None]


@dataclass
class ConnectionHealthStatus:
    healthy: bool = True
    last_check_time: Optional[str] = None
    consecutive_failures: int = 0
    recovery_time: Optional[str] = None
    response_time_ms: Optional[float] = None
    last_error: Optional[str] = None
    reconnect_attempts: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class HealthChecker(PeriodicMonitor):
    """
    Periodic database liveness check with a bounded reconnect

    Args:
        probe: Coroutine function running the round-trip query
        reconnect: Coroutine function re-establishing the connection
        alerts: Alert log for failures and recoveries
        failure_threshold: Consecutive failures that trigger a reconnect
        interval: Seconds between scheduled checks
        timeout: Seconds allowed for one probe
    """

    def __init__(
        self,
        probe: Probe,
        reconnect: Optional[Probe] = None,
        alerts: Optional[AlertLog] = None,
        failure_threshold: int = 3,
        interval: float = 30.0,
        timeout: float = 5.0,
    ):
        super().__init__(interval, name="database-health-checker")
        self._probe = probe
        self._reconnect = reconnect
        self.alerts = alerts or AlertLog()
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.status = ConnectionHealthStatus()
        self._failure_listeners: List[FailureListener] = []

    def add_failure_listener(self, listener: FailureListener) -> None:
        self._failure_listeners.append(listener)

    async def run_once(self) -> None:
        await self.check()

    async def check(self) -> ConnectionHealthStatus:
        started = time.perf_counter()
        self.status.last_check_time = _now()
        try:
            async with asyncio.timeout(self.timeout):
                await self._probe()
        except Exception as e:
            await self._on_failure(e)
        else:
            self._on_success((time.perf_counter() - started) * 1000)
        return self.status

    def _on_success(self, response_time_ms: float) -> None:
        previous_failures = self.status.consecutive_failures
        self.status.healthy = True
        self.status.consecutive_failures = 0
        self.status.response_time_ms = round(response_time_ms, 2)
        self.status.last_error = None

        if previous_failures > 0:
            self.status.recovery_time = _now()
            self.alerts.alert(
                f"Database connection recovered after {previous_failures} failed check(s)",
                level="info",
                source="database",
                response_time_ms=self.status.response_time_ms,
            )
        else:
            self.logger.debug(f"Database health check passed in {self.status.response_time_ms}ms")

    async def _on_failure(self, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        self.status.healthy = False
        self.status.consecutive_failures += 1
        self.status.last_error = message
        self.status.response_time_ms = None

        self.alerts.alert(
            f"Database health check failed: {message}",
            source="database",
            consecutive_failures=self.status.consecutive_failures,
        )
        for listener in self._failure_listeners:
            try:
                listener(message)
            except Exception as e:
                self.logger.error(f"Health failure listener raised: {e}")

        if self.status.consecutive_failures == self.failure_threshold:
            await self._attempt_reconnect()

    async def _attempt_reconnect(self) -> None:
        if self._reconnect is None:
            return
        self.status.reconnect_attempts += 1
        self.alerts.alert(
            f"{self.failure_threshold} consecutive health check failures, attempting reconnect",
            level="warning",
            source="database",
        )
        try:
            async with asyncio.timeout(self.timeout):
                await self._reconnect()
        except Exception as e:
            self.alerts.alert(f"Database reconnect failed: {e}", source="database")
            return

        self.status.healthy = True
        self.status.consecutive_failures = 0
        self.status.last_error = None
        self.status.recovery_time = _now()
        self.alerts.alert("Database reconnected", level="info", source="database")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
