"""
Service self-monitor

Polls the service's own /health endpoint over HTTP, tracks response times and
per-minute error buckets, raises alerts with a per-type cooldown, and runs
ad-hoc stress tests against an endpoint.
"""

import asyncio
import time
from collections import deque, OrderedDict
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

import aiohttp

from .alerts import AlertLog
from .base import PeriodicMonitor

SLOW_RESPONSE_MS = 2000
RESPONSE_TIME_WINDOW = 10
ERROR_BUCKET_MINUTES = 60
ERROR_RATE_WINDOW_MINUTES = 5
STRESS_FAILURE_ALERT_RATE = 0.1


class ServiceMonitor(PeriodicMonitor):
    """HTTP health poller for the running service"""

    def __init__(
        self,
        base_url: str,
        alerts: Optional[AlertLog] = None,
        health_endpoint: str = "/health",
        interval: float = 60.0,
        timeout: float = 10.0,
        alert_threshold: int = 3,
        alert_cooldown: float = 300.0,
        clock=time.time,
    ):
        super().__init__(interval, name="service-monitor")
        self.base_url = base_url.rstrip("/")
        self.health_endpoint = health_endpoint
        self.alerts = alerts or AlertLog()
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.alert_threshold = alert_threshold
        self.alert_cooldown = alert_cooldown
        self._clock = clock
        self.session: Optional[aiohttp.ClientSession] = None

        self.status = "unknown"
        self.consecutive_failures = 0
        self.last_check: Optional[str] = None
        self.last_error: Optional[str] = None
        self.response_times: Deque[float] = deque(maxlen=RESPONSE_TIME_WINDOW)
        self._buckets: "OrderedDict[int, Dict[str, int]]" = OrderedDict()
        self._last_alert_at: Dict[str, float] = {}

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(timeout=self.timeout)
        return self.session

    async def stop(self) -> None:
        await super().stop()
        if self.session is not None:
            await self.session.close()
            self.session = None

    async def run_once(self) -> None:
        await self.check()

    # ===================================================================
    # Health polling
    # ===================================================================

    async def check(self) -> Dict[str, Any]:
        session = await self._ensure_session()
        url = f"{self.base_url}{self.health_endpoint}"
        started = time.perf_counter()
        self.last_check = datetime.now(timezone.utc).isoformat()
        try:
            async with session.get(url) as response:
                await response.read()
                elapsed_ms = (time.perf_counter() - started) * 1000
                if response.status >= 400:
                    raise aiohttp.ClientResponseError(
                        response.request_info, response.history,
                        status=response.status, message=f"HTTP {response.status}",
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._record_failure(str(e) or e.__class__.__name__)
        else:
            self._record_success(elapsed_ms)
        return self.get_status()

    def _record_success(self, elapsed_ms: float) -> None:
        self.response_times.append(round(elapsed_ms, 2))
        self._count(error=False)
        recovered = self.consecutive_failures >= self.alert_threshold
        self.consecutive_failures = 0
        self.last_error = None
        self.status = "healthy"

        if recovered:
            self._alert("recovery", "Service recovered", level="info")
        if elapsed_ms > SLOW_RESPONSE_MS:
            self._alert(
                "slow_response",
                f"Slow health response: {elapsed_ms:.0f}ms",
                level="warning",
                response_time_ms=round(elapsed_ms, 2),
            )

    def _record_failure(self, message: str) -> None:
        self._count(error=True)
        self.consecutive_failures += 1
        self.last_error = message
        self.status = "unhealthy"
        self.logger.warning(f"Service health check failed ({self.consecutive_failures}): {message}")
        if self.consecutive_failures >= self.alert_threshold:
            self._alert(
                "service_down",
                f"Service health check failed {self.consecutive_failures} times in a row: {message}",
                consecutive_failures=self.consecutive_failures,
            )

    def _alert(self, alert_type: str, message: str, level: str = "error", **details: Any) -> bool:
        now = self._clock()
        last = self._last_alert_at.get(alert_type)
        if last is not None and now - last < self.alert_cooldown:
            return False
        self._last_alert_at[alert_type] = now
        self.alerts.alert(message, level=level, source="service", alert_type=alert_type, **details)
        return True

    # ===================================================================
    # Error rate buckets
    # ===================================================================

    def _count(self, error: bool) -> None:
        minute = int(self._clock() // 60)
        bucket = self._buckets.setdefault(minute, {"requests": 0, "errors": 0})
        bucket["requests"] += 1
        if error:
            bucket["errors"] += 1
        oldest_kept = minute - ERROR_BUCKET_MINUTES
        for key in [key for key in self._buckets if key <= oldest_kept]:
            del self._buckets[key]

    def error_rate(self, minutes: int = ERROR_RATE_WINDOW_MINUTES) -> float:
        """Percentage of failed checks over the last ``minutes``"""
        current = int(self._clock() // 60)
        window = [bucket for minute, bucket in self._buckets.items() if minute > current - minutes]
        requests = sum(bucket["requests"] for bucket in window)
        errors = sum(bucket["errors"] for bucket in window)
        return round(errors / requests * 100, 2) if requests else 0.0

    def average_response_time(self) -> Optional[float]:
        if not self.response_times:
            return None
        return round(sum(self.response_times) / len(self.response_times), 2)

    def get_status(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "last_check": self.last_check,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
            "average_response_time_ms": self.average_response_time(),
            "recent_response_times_ms": list(self.response_times),
            "error_rate": self.error_rate(),
            "monitoring": self.running,
        }

    # ===================================================================
    # Stress testing
    # ===================================================================

    async def stress_test(self, endpoint: str = "/health", requests: int = 100, concurrency: int = 10) -> Dict[str, Any]:
        """
        Fire ``requests`` GETs at ``endpoint`` from ``concurrency`` workers

        Returns:
            Totals, average response time, success rate and the distinct errors
        """
        session = await self._ensure_session()
        url = f"{self.base_url}{endpoint}"
        queue: asyncio.Queue = asyncio.Queue()
        for index in range(requests):
            queue.put_nowait(index)

        durations: List[float] = []
        errors: Dict[str, int] = {}
        successful = 0

        async def worker() -> None:
            nonlocal successful
            while True:
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                started = time.perf_counter()
                try:
                    async with session.get(url) as response:
                        await response.read()
                        if response.status >= 400:
                            errors[f"HTTP {response.status}"] = errors.get(f"HTTP {response.status}", 0) + 1
                        else:
                            successful += 1
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    key = str(e) or e.__class__.__name__
                    errors[key] = errors.get(key, 0) + 1
                finally:
                    durations.append((time.perf_counter() - started) * 1000)

        self.logger.info(f"Stress test: {requests} requests to {url} with concurrency {concurrency}")
        started = time.perf_counter()
        await asyncio.gather(*(worker() for _ in range(max(1, min(concurrency, requests)))))
        total_ms = (time.perf_counter() - started) * 1000

        failed = requests - successful
        result = {
            "endpoint": endpoint,
            "total_requests": requests,
            "successful_requests": successful,
            "failed_requests": failed,
            "concurrency": concurrency,
            "total_time_ms": round(total_ms, 2),
            "avg_response_time_ms": round(sum(durations) / len(durations), 2) if durations else 0.0,
            "success_rate": round(successful / requests * 100, 2) if requests else 0.0,
            "errors": [{"error": error, "count": count} for error, count in errors.items()],
        }

        if requests and failed / requests > STRESS_FAILURE_ALERT_RATE:
            self.alerts.alert(
                f"Stress test failure rate {100 - result['success_rate']:.1f}% on {endpoint}",
                level="warning",
                source="service",
                failed_requests=failed,
            )
        return result
