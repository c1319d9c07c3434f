"""
Unit Tests: Connection Pool Monitor
===================================

Tests for PoolMonitor covering:
1. Sampling, peaks and bounded load history
2. High-usage alerts
3. Tick schedules for scaling, cleanup and health checks
4. Idle connection cleanup thresholds
5. Load trend analysis and status reporting
"""

import asyncio
import random

import pytest
from unittest.mock import AsyncMock, Mock

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, QueuePool

from portfolio_cms.monitoring import (
    AlertLog,
    PoolHandle,
    PoolMonitor,
    ScalingAction,
    ScalingPolicy,
    SmartPoolScaler,
    SQLAlchemyPoolHandle,
    TickSchedule,
)
from portfolio_cms.monitoring.pool_monitor import PoolSnapshot, usage_rate_of
from portfolio_cms.repositories.sqlalchemy_repository import SQLAlchemyRepositoryProvider


class FakePoolHandle(PoolHandle):
    """Pool handle with scripted occupancy"""

    def __init__(self, active: int = 0, idle: int = 0, min_size: int = 5):
        self.active = active
        self.idle = idle
        self._min_size = min_size
        self.max_calls = []
        self.release_calls = []

    @property
    def min_size(self) -> int:
        return self._min_size

    def snapshot(self) -> PoolSnapshot:
        return PoolSnapshot(active=self.active, idle=self.idle, total=self.active + self.idle)

    def set_max(self, new_max: int) -> bool:
        self.max_calls.append(new_max)
        return True

    def release_idle(self, keep: int) -> int:
        self.release_calls.append(keep)
        released = max(0, self.idle - keep)
        self.idle -= released
        return released


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestUsageRate:

    def test_empty_pool_has_zero_usage(self):
        assert usage_rate_of(PoolSnapshot()) == 0

    def test_usage_rounds_percentage(self):
        assert usage_rate_of(PoolSnapshot(active=2, idle=1, total=3)) == 67


class TestTickSchedule:

    def test_fixed_schedule_runs_every_n_ticks(self):
        schedule = TickSchedule(every=2)
        assert [schedule.due(tick) for tick in range(1, 7)] == [False, True, False, True, False, True]

    def test_zero_disables(self):
        schedule = TickSchedule(every=0)
        assert not any(schedule.due(tick) for tick in range(1, 20))

    def test_random_schedule_uses_injected_generator(self):
        rng = Mock()
        rng.random = Mock(side_effect=[0.05, 0.5])
        schedule = TickSchedule(every=10, randomized=True, rng=rng)

        assert schedule.due(1) is True
        assert schedule.due(2) is False

    def test_random_schedule_is_reproducible(self):
        first = TickSchedule(every=3, randomized=True, rng=random.Random(42))
        second = TickSchedule(every=3, randomized=True, rng=random.Random(42))

        assert [first.due(t) for t in range(30)] == [second.due(t) for t in range(30)]


class TestPoolMonitor:
    """Test suite for PoolMonitor"""

    @pytest.fixture
    def pool(self):
        return FakePoolHandle(active=2, idle=3)

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def alerts(self):
        return AlertLog()

    @pytest.fixture
    def scaler(self, pool):
        # Zero cooldowns so scaling depends only on the schedule and thresholds
        policy = ScalingPolicy(scale_up_cooldown=-1, scale_down_cooldown=-1)
        return SmartPoolScaler(policy, pool=pool)

    @pytest.fixture
    def health_checker(self):
        checker = Mock()
        checker.check = AsyncMock()
        checker.add_failure_listener = Mock()
        checker.status = Mock()
        checker.status.to_dict = Mock(return_value={"healthy": True})
        return checker

    @pytest.fixture
    def monitor(self, pool, scaler, alerts, health_checker, clock):
        return PoolMonitor(
            pool=pool,
            scaler=scaler,
            alerts=alerts,
            health_checker=health_checker,
            history_size=5,
            high_usage_threshold=80,
            scale_schedule=TickSchedule(1),
            cleanup_schedule=TickSchedule(2),
            health_schedule=TickSchedule(10),
            clock=clock,
        )

    # ===================
    # Sampling Tests
    # ===================

    @pytest.mark.asyncio
    async def test_tick_records_stats_and_history(self, monitor, pool):
        """Test one tick updates the counters and appends a history record"""
        # Act
        result = await monitor.tick()

        # Assert
        assert result.tick == 1
        assert result.usage_rate == 40
        assert monitor.stats.active == 2
        assert monitor.stats.idle == 3
        assert monitor.stats.total == 5
        assert monitor.stats.usage_rate == 40
        assert len(monitor.history) == 1

    @pytest.mark.asyncio
    async def test_peaks_are_kept(self, monitor, pool):
        pool.active, pool.idle = 8, 2
        await monitor.tick()
        pool.active, pool.idle = 1, 1
        await monitor.tick()

        assert monitor.stats.peak_active == 8
        assert monitor.stats.peak_total == 10
        assert monitor.stats.active == 1

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, monitor):
        for _ in range(8):
            await monitor.tick()

        assert len(monitor.history) == 5

    @pytest.mark.asyncio
    async def test_failed_sample_counts_error(self, monitor, pool):
        pool.snapshot = Mock(side_effect=RuntimeError("pool gone"))

        result = await monitor.tick()

        assert result.usage_rate == 0
        assert monitor.stats.error_count == 1
        assert "pool gone" in monitor.stats.last_error["message"]

    # ===================
    # Alert and Scaling Tests
    # ===================

    @pytest.mark.asyncio
    async def test_high_usage_raises_alert(self, monitor, pool, alerts):
        """Test usage at the threshold raises a pool alert"""
        pool.active, pool.idle = 8, 2

        await monitor.tick()

        recent = alerts.recent(5)
        assert any(alert["source"] == "pool" and "80%" in alert["message"] for alert in recent)

    @pytest.mark.asyncio
    async def test_low_usage_raises_no_alert(self, monitor, alerts):
        await monitor.tick()

        assert len(alerts) == 0

    @pytest.mark.asyncio
    async def test_scheduled_scale_up(self, monitor, pool):
        """Test a high-usage tick scales the pool and reports it"""
        pool.active, pool.idle = 9, 1

        result = await monitor.tick()

        assert result.decision.action == ScalingAction.SCALED_UP
        assert result.decision.applied is True
        assert pool.max_calls == [12]
        assert monitor.stats.current_max == 12
        assert monitor.stats.last_scale_up is not None

    @pytest.mark.asyncio
    async def test_scaling_disabled_by_schedule(self, pool, scaler, alerts, clock):
        monitor = PoolMonitor(pool, scaler, alerts, scale_schedule=TickSchedule(0), clock=clock)
        pool.active, pool.idle = 9, 1

        result = await monitor.tick()

        assert result.decision is None
        assert scaler.current_max == 10

    @pytest.mark.asyncio
    async def test_health_check_runs_every_tenth_tick(self, monitor, health_checker):
        for _ in range(10):
            await monitor.tick()

        health_checker.check.assert_awaited_once()

    # ===================
    # Cleanup Tests
    # ===================

    @pytest.mark.asyncio
    async def test_cleanup_skipped_below_idle_threshold(self, monitor, pool):
        """Test idle connections at or under 70% of the pool are kept"""
        pool.active, pool.idle = 4, 6

        await monitor.tick()
        result = await monitor.tick()

        assert result.released == 0
        assert pool.release_calls == []

    @pytest.mark.asyncio
    async def test_cleanup_releases_down_to_minimum(self, monitor, pool):
        """Test idle connections above the threshold are released to the floor"""
        pool.active, pool.idle = 1, 9

        await monitor.tick()
        result = await monitor.tick()

        assert result.released == 4
        assert pool.release_calls == [5]
        assert pool.idle == 5

    def test_force_cleanup_ignores_threshold(self, monitor, pool):
        pool.active, pool.idle = 4, 7

        result = monitor.force_cleanup()

        assert result["released"] == 2
        assert result["before"]["idle"] == 7
        assert result["after"]["idle"] == 5

    # ===================
    # Concurrency Tests
    # ===================

    @pytest.mark.asyncio
    async def test_overlapping_tick_is_skipped(self, monitor, health_checker):
        """Test a tick that starts while another runs is skipped"""
        release = asyncio.Event()

        async def slow_check():
            await release.wait()

        health_checker.check = AsyncMock(side_effect=slow_check)
        monitor.health_schedule = TickSchedule(1)

        first = asyncio.create_task(monitor.tick())
        await asyncio.sleep(0)
        second = await monitor.tick()
        release.set()
        first_result = await first

        assert second is None
        assert first_result is not None
        assert monitor.skipped_ticks == 1

    # ===================
    # Reporting Tests
    # ===================

    @pytest.mark.asyncio
    async def test_trend_needs_five_samples(self, monitor):
        for _ in range(4):
            await monitor.tick()

        assert monitor.analyze_load_trend()["trend"] == "insufficient_data"

    @pytest.mark.asyncio
    async def test_increasing_trend(self, monitor, pool):
        for active in [1, 1, 5, 8, 9]:
            pool.active, pool.idle = active, 10 - active
            await monitor.tick()

        trend = monitor.analyze_load_trend()

        assert trend["trend"] == "increasing"
        assert trend["data_points"] == 5

    @pytest.mark.asyncio
    async def test_old_samples_leave_trend_window(self, monitor, clock):
        for _ in range(5):
            await monitor.tick()
        clock.now += 600

        assert monitor.analyze_load_trend(minutes=5)["data_points"] == 0

    @pytest.mark.asyncio
    async def test_status_shape(self, monitor):
        await monitor.tick()

        status = monitor.get_status()

        assert status["pool_stats"]["total"] == 5
        assert status["config"]["min_connections"] == 5
        assert status["config"]["current_max"] == 10
        assert status["config"]["max_scalable"] == 20
        assert status["connection_status"] == {"healthy": True}
        assert status["ticks"] == 1

    def test_resize_through_monitor(self, monitor, pool):
        decision = monitor.resize(14)

        assert decision.new_max == 14
        assert pool.max_calls == [14]
        assert monitor.stats.current_max == 14

    def test_health_failures_are_counted(self, monitor, health_checker):
        health_checker.add_failure_listener.assert_called_once_with(monitor.record_connection_failure)

        monitor.record_connection_failure("connection refused")

        assert monitor.stats.connection_failures == 1
        assert monitor.stats.error_count == 1


class TestSQLAlchemyPoolHandle:
    """Test suite for the SQLAlchemy pool adapter"""

    def make_engine(self, pool):
        engine = Mock()
        engine.pool = pool
        return engine

    def make_queue_pool(self, size=5, max_overflow=5, checkedout=0, checkedin=0):
        pool = Mock()
        pool.checkedout = Mock(return_value=checkedout)
        pool.checkedin = Mock(return_value=checkedin)
        pool.size = Mock(return_value=size)
        pool._max_overflow = max_overflow
        return pool

    def test_queue_pool_counts(self):
        pool = self.make_queue_pool(checkedout=3, checkedin=2)
        handle = SQLAlchemyPoolHandle(self.make_engine(pool), min_size=5)

        assert handle.snapshot() == PoolSnapshot(active=3, idle=2, total=5)
        assert handle.set_max(12) is True
        assert pool._max_overflow == 7

    def test_pool_without_counters_samples_zero(self):
        handle = SQLAlchemyPoolHandle(self.make_engine(object()), min_size=1)

        assert handle.snapshot() == PoolSnapshot()
        assert handle.set_max(10) is False

    def test_replaced_pool_is_sampled_and_resized(self):
        """Test a pool swapped in by dispose() is read live and inherits the resize"""
        old_pool = self.make_queue_pool(checkedout=4)
        engine = self.make_engine(old_pool)
        handle = SQLAlchemyPoolHandle(engine, min_size=5)
        handle.set_max(14)

        engine.pool = self.make_queue_pool(checkedout=1, max_overflow=5)

        assert handle.snapshot().active == 1
        assert engine.pool._max_overflow == 9

    # ===================
    # Live Engine Tests
    # ===================

    @pytest.mark.asyncio
    async def test_reconnect_keeps_handle_on_live_pool(self, tmp_path):
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'pool.db'}",
            poolclass=AsyncAdaptedQueuePool,
            pool_size=2,
            max_overflow=3,
        )
        provider = SQLAlchemyRepositoryProvider(engine, pool_min_size=2)
        handle = provider.pool_handle()

        try:
            await provider.reconnect()

            async with engine.connect():
                assert handle.snapshot().active == engine.pool.checkedout() == 1

            assert handle.set_max(9) is True
            assert engine.pool._max_overflow == 7

            await provider.reconnect()

            handle.snapshot()
            assert engine.pool._max_overflow == 7
        finally:
            await engine.dispose()

    def test_queue_pool_never_holds_idle_above_pool_size(self, tmp_path):
        """Test returned overflow connections are closed, leaving nothing to release"""
        engine = create_engine(
            f"sqlite:///{tmp_path / 'idle.db'}",
            poolclass=QueuePool,
            pool_size=2,
            max_overflow=3,
        )
        handle = SQLAlchemyPoolHandle(engine, min_size=2)

        try:
            connections = [engine.connect() for _ in range(5)]
            assert handle.snapshot().active == 5
            for connection in connections:
                connection.close()

            assert handle.snapshot() == PoolSnapshot(active=0, idle=2, total=2)
            assert handle.release_idle(keep=2) == 0
        finally:
            engine.dispose()
