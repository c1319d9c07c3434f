"""
Connection pool monitor

Samples pool occupancy on a fixed interval, keeps peak counters and a bounded
load history, raises high-usage alerts and drives the scaler, the idle cleanup
pass and opportunistic health checks on configurable tick schedules.
"""

import asyncio
import logging
import math
import random
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional

from portfolio_cms.core.config import Settings
from .alerts import AlertLog
from .base import PeriodicMonitor
from .health_checker import HealthChecker
from .scaler import ScalingDecision, SmartPoolScaler

pool_manager_log = logging.getLogger("portfolio_cms.pool_manager")

LOW_USAGE_MARK = 20
SHRINK_HINT_USAGE = 10
SHRINK_HINT_QUIET_SECONDS = 24 * 60 * 60
NEAR_CAPACITY_RATIO = 0.9
IDLE_CLEANUP_RATIO = 0.7


@dataclass
class PoolSnapshot:
    active: int = 0
    idle: int = 0
    total: int = 0


class PoolHandle(ABC):
    """What the monitor needs from a live pool"""

    @property
    @abstractmethod
    def min_size(self) -> int:
        ...

    @abstractmethod
    def snapshot(self) -> PoolSnapshot:
        ...

    @abstractmethod
    def set_max(self, new_max: int) -> bool:
        """Resize the physical pool; False when the pool cannot be resized"""

    @abstractmethod
    def release_idle(self, keep: int) -> int:
        """Close idle connections above ``keep``; returns how many were closed"""


class SQLAlchemyPoolHandle(PoolHandle):
    """
    Adapter over the pool of a SQLAlchemy engine

    The pool is looked up on the engine at every call since ``dispose()``
    during a reconnect swaps in a fresh pool; a resize is re-applied to each
    new pool. QueuePool reports checked-out connections as active and
    checked-in ones as idle. Its physical maximum is ``size() + _max_overflow``,
    so resizing moves the overflow allowance.
    Pools without those accessors (SQLite static pools) sample as zeros and
    cannot be resized.
    """

    def __init__(self, engine, min_size: int):
        self.engine = engine
        self._min_size = min_size
        self._target_max: Optional[int] = None
        self._resized_pool = None

    @property
    def min_size(self) -> int:
        return self._min_size

    @property
    def pool(self):
        pool = self.engine.pool
        if self._target_max is not None and pool is not self._resized_pool:
            self._resize(pool, self._target_max)
        return pool

    def _resize(self, pool, new_max: int) -> bool:
        size = getattr(pool, "size", None)
        if not callable(size) or not hasattr(pool, "_max_overflow"):
            return False
        pool._max_overflow = max(0, new_max - size())
        self._resized_pool = pool
        return True

    def snapshot(self) -> PoolSnapshot:
        pool = self.pool
        checkedout = getattr(pool, "checkedout", None)
        checkedin = getattr(pool, "checkedin", None)
        if not callable(checkedout) or not callable(checkedin):
            return PoolSnapshot()
        active = checkedout()
        idle = checkedin()
        return PoolSnapshot(active=active, idle=idle, total=active + idle)

    def set_max(self, new_max: int) -> bool:
        applied = self._resize(self.engine.pool, new_max)
        if applied:
            self._target_max = new_max
        return applied

    def release_idle(self, keep: int) -> int:
        """
        Always 0 for QueuePool

        The engine is built with ``pool_size`` equal to the pool minimum and
        QueuePool closes overflow connections as they are returned, so the
        checked-in count never rises above ``keep`` and there is nothing to
        release.
        """
        return 0


class TickSchedule:
    """
    Decides on which ticks an action runs

    ``every`` = 0 disables the action. In random mode the action runs with
    probability 1/every, using the injected generator.
    """

    def __init__(self, every: int = 1, randomized: bool = False, rng: Optional[random.Random] = None):
        self.every = every
        self.randomized = randomized
        self._rng = rng or random.Random()

    def due(self, tick: int) -> bool:
        if self.every <= 0:
            return False
        if self.randomized:
            return self._rng.random() < 1.0 / self.every
        return tick % self.every == 0


@dataclass
class PoolStats:
    active: int = 0
    idle: int = 0
    total: int = 0
    usage_rate: int = 0
    current_max: int = 0
    peak_active: int = 0
    peak_idle: int = 0
    peak_total: int = 0
    error_count: int = 0
    last_error: Optional[Dict[str, str]] = None
    connection_failures: int = 0
    last_connection_time: Optional[str] = None
    last_high_usage: Optional[str] = None
    last_low_usage: Optional[str] = None
    last_scale_up: Optional[str] = None
    last_scale_down: Optional[str] = None
    last_check: Optional[str] = None


@dataclass
class LoadHistoryRecord:
    timestamp: float
    active: int
    idle: int
    total: int
    usage_rate: int


@dataclass
class TickResult:
    tick: int
    snapshot: PoolSnapshot
    usage_rate: int
    decision: Optional[ScalingDecision] = None
    released: int = 0
    health_checked: bool = False


def usage_rate_of(snapshot: PoolSnapshot) -> int:
    if snapshot.total <= 0:
        return 0
    return round(snapshot.active / snapshot.total * 100)


class PoolMonitor(PeriodicMonitor):
    """
    Owns the pool statistics and load history

    Args:
        pool: Handle onto the live pool
        scaler: Scaler whose logical max the monitor reports
        alerts: Alert log for high usage
        health_checker: Optional checker run on health ticks
        clock: Wall clock used for history timestamps
    """

    def __init__(
        self,
        pool: PoolHandle,
        scaler: SmartPoolScaler,
        alerts: Optional[AlertLog] = None,
        health_checker: Optional[HealthChecker] = None,
        interval: float = 60.0,
        history_size: int = 100,
        high_usage_threshold: int = 80,
        scale_schedule: Optional[TickSchedule] = None,
        cleanup_schedule: Optional[TickSchedule] = None,
        health_schedule: Optional[TickSchedule] = None,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(interval, name="pool-monitor")
        self.pool = pool
        self.scaler = scaler
        self.alerts = alerts or AlertLog()
        self.health_checker = health_checker
        self.high_usage_threshold = high_usage_threshold
        self.scale_schedule = scale_schedule or TickSchedule(1)
        self.cleanup_schedule = cleanup_schedule or TickSchedule(2)
        self.health_schedule = health_schedule or TickSchedule(10)
        self._clock = clock

        self.stats = PoolStats(current_max=scaler.current_max)
        self.history: Deque[LoadHistoryRecord] = deque(maxlen=history_size)
        self.tick_count = 0
        self.skipped_ticks = 0
        self._last_high_usage_at: Optional[float] = None
        self._tick_lock = asyncio.Lock()

        if health_checker is not None:
            health_checker.add_failure_listener(self.record_connection_failure)

    @classmethod
    def from_settings(
        cls,
        config: Settings,
        pool: PoolHandle,
        scaler: SmartPoolScaler,
        alerts: AlertLog,
        health_checker: Optional[HealthChecker] = None,
        rng: Optional[random.Random] = None,
    ) -> "PoolMonitor":
        randomized = config.POOL_SCHEDULE_MODE == "random"
        rng = rng or random.Random()
        return cls(
            pool=pool,
            scaler=scaler,
            alerts=alerts,
            health_checker=health_checker,
            interval=config.POOL_MONITOR_INTERVAL,
            history_size=config.POOL_HISTORY_SIZE,
            high_usage_threshold=config.POOL_HIGH_USAGE_ALERT,
            scale_schedule=TickSchedule(config.POOL_SCALE_EVERY_N_TICKS, randomized, rng),
            cleanup_schedule=TickSchedule(config.POOL_CLEANUP_EVERY_N_TICKS, randomized, rng),
            health_schedule=TickSchedule(config.POOL_HEALTH_EVERY_N_TICKS, randomized, rng),
        )

    async def run_once(self) -> None:
        await self.tick()

    # ===================================================================
    # Sampling
    # ===================================================================

    async def tick(self) -> Optional[TickResult]:
        """
        Take one sample and run whatever actions are scheduled for it

        Returns:
            The tick result, or None when a previous tick is still in progress
        """
        if self._tick_lock.locked():
            self.skipped_ticks += 1
            self.logger.warning("Previous pool monitor tick still running, skipping")
            return None

        async with self._tick_lock:
            self.tick_count += 1
            snapshot = self._sample()
            usage_rate = usage_rate_of(snapshot)
            now = self._clock()

            self._update_stats(snapshot, usage_rate, now)
            self.history.append(LoadHistoryRecord(
                timestamp=now,
                active=snapshot.active,
                idle=snapshot.idle,
                total=snapshot.total,
                usage_rate=usage_rate,
            ))
            self.logger.info(
                f"Pool status: active {snapshot.active}, idle {snapshot.idle}, total {snapshot.total}, "
                f"max {self.scaler.current_max}, usage {usage_rate}%"
            )
            self._check_thresholds(snapshot, usage_rate, now)

            result = TickResult(tick=self.tick_count, snapshot=snapshot, usage_rate=usage_rate)

            if self.scale_schedule.due(self.tick_count):
                try:
                    result.decision = self.scaler.evaluate(usage_rate, snapshot.active)
                except Exception as e:
                    self.record_error(f"Pool scaling failed: {e}")
                self._sync_scaler_stats()

            if self.cleanup_schedule.due(self.tick_count):
                result.released = self._cleanup_idle(snapshot)

            if self.health_checker is not None and self.health_schedule.due(self.tick_count):
                await self.health_checker.check()
                result.health_checked = True

            return result

    def _sample(self) -> PoolSnapshot:
        try:
            snapshot = self.pool.snapshot()
            self.stats.last_connection_time = _iso(self._clock())
            return snapshot
        except Exception as e:
            self.record_error(f"Failed to read pool status: {e}")
            return PoolSnapshot()

    def _update_stats(self, snapshot: PoolSnapshot, usage_rate: int, now: float) -> None:
        stats = self.stats
        stats.active = snapshot.active
        stats.idle = snapshot.idle
        stats.total = snapshot.total
        stats.usage_rate = usage_rate
        stats.peak_active = max(stats.peak_active, snapshot.active)
        stats.peak_idle = max(stats.peak_idle, snapshot.idle)
        stats.peak_total = max(stats.peak_total, snapshot.total)
        stats.last_check = _iso(now)
        if usage_rate > self.high_usage_threshold:
            stats.last_high_usage = _iso(now)
            self._last_high_usage_at = now
        elif usage_rate < LOW_USAGE_MARK:
            stats.last_low_usage = _iso(now)

    def _check_thresholds(self, snapshot: PoolSnapshot, usage_rate: int, now: float) -> None:
        if usage_rate >= self.high_usage_threshold:
            self.alerts.alert(
                f"High connection pool usage: {usage_rate}%",
                level="warning",
                source="pool",
                active=snapshot.active,
                total=snapshot.total,
                max=self.scaler.current_max,
            )

        if snapshot.active >= self.scaler.current_max * NEAR_CAPACITY_RATIO and snapshot.active > 0:
            self.logger.warning(
                f"Active connections {snapshot.active} near pool max {self.scaler.current_max}"
            )

        if (
            usage_rate < SHRINK_HINT_USAGE
            and self._last_high_usage_at is not None
            and now - self._last_high_usage_at > SHRINK_HINT_QUIET_SECONDS
        ):
            self.logger.info(
                f"Pool usage {usage_rate}% with no high usage for 24h, consider lowering the pool size"
            )

    def _sync_scaler_stats(self) -> None:
        self.stats.current_max = self.scaler.current_max
        self.stats.last_scale_up = self.scaler.last_scale_up
        self.stats.last_scale_down = self.scaler.last_scale_down

    # ===================================================================
    # Idle cleanup
    # ===================================================================

    def _cleanup_idle(self, snapshot: PoolSnapshot) -> int:
        threshold = max(2, math.floor(snapshot.total * IDLE_CLEANUP_RATIO))
        if snapshot.idle <= threshold:
            return 0
        return self._release_idle(snapshot)

    def _release_idle(self, snapshot: PoolSnapshot) -> int:
        keep = max(1, self.pool.min_size)
        if snapshot.idle <= keep:
            return 0
        try:
            released = self.pool.release_idle(keep)
        except Exception as e:
            self.record_error(f"Idle connection cleanup failed: {e}")
            return 0
        if released:
            message = f"Released {released} idle connection(s), keeping {keep}"
            self.logger.info(message)
            pool_manager_log.info(message)
        return released

    def force_cleanup(self) -> Dict[str, Any]:
        """Release idle connections down to the floor regardless of the cleanup threshold"""
        before = self._sample()
        released = self._release_idle(before)
        after = self._sample()
        return {"released": released, "before": asdict(before), "after": asdict(after)}

    # ===================================================================
    # Errors and reporting
    # ===================================================================

    def record_error(self, message: str) -> None:
        self.stats.error_count += 1
        self.stats.last_error = {"message": message, "time": _iso(self._clock())}
        self.logger.error(message)

    def record_connection_failure(self, message: str) -> None:
        self.stats.connection_failures += 1
        self.record_error(f"Health check failed: {message}")

    def resize(self, new_max: int) -> ScalingDecision:
        snapshot = self._sample()
        decision = self.scaler.resize(new_max, active=snapshot.active, usage_rate=usage_rate_of(snapshot))
        self._sync_scaler_stats()
        return decision

    def analyze_load_trend(self, minutes: float = 5) -> Dict[str, Any]:
        """
        Compare the first and second half of recent usage samples

        Fewer than 5 samples in the window yields ``insufficient_data``.
        """
        cutoff = self._clock() - minutes * 60
        recent: List[LoadHistoryRecord] = [record for record in self.history if record.timestamp >= cutoff]
        if len(recent) < 5:
            return {"trend": "insufficient_data", "data_points": len(recent)}

        rates = [record.usage_rate for record in recent]
        half = len(rates) // 2
        first_half = sum(rates[:half]) / half
        second_half = sum(rates[half:]) / (len(rates) - half)

        if second_half > first_half * 1.2:
            trend = "increasing"
        elif second_half < first_half * 0.8:
            trend = "decreasing"
        else:
            trend = "stable"

        return {
            "trend": trend,
            "average_usage": round(sum(rates) / len(rates), 2),
            "first_half_average": round(first_half, 2),
            "second_half_average": round(second_half, 2),
            "data_points": len(recent),
        }

    def get_status(self) -> Dict[str, Any]:
        self._sync_scaler_stats()
        policy = self.scaler.policy
        return {
            "pool_stats": asdict(self.stats),
            "connection_status": self.health_checker.status.to_dict() if self.health_checker else None,
            "load_trend": self.analyze_load_trend(),
            "config": {
                "min_connections": policy.min_connections,
                "current_max": self.scaler.current_max,
                "max_scalable": policy.max_scalable,
                "monitor_interval": self.interval,
                "scale_up_threshold": policy.scale_up_threshold,
                "scale_down_threshold": policy.scale_down_threshold,
            },
            "recent_scaling": self.scaler.recent_events(5),
            "history_records": len(self.history),
            "ticks": self.tick_count,
            "skipped_ticks": self.skipped_ticks,
            "last_check": self.stats.last_check,
        }


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
