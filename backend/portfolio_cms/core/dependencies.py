"""
Dependency injection for the Portfolio CMS
Owns the repository provider, upload service and monitors for one application
"""

from dataclasses import dataclass, field
from typing import AsyncIterator, Optional
import logging
import time

from fastapi import Depends, Request

from portfolio_cms.core.config import Settings
from portfolio_cms.monitoring import (
    AlertLog,
    HealthChecker,
    MemoryMonitor,
    PoolMonitor,
    ScalingPolicy,
    ServiceMonitor,
    SmartPoolScaler,
)
from portfolio_cms.repositories import Repositories, RepositoryProvider
from portfolio_cms.services.upload_service import UploadService

logger = logging.getLogger(__name__)


@dataclass
class ServiceRegistry:
    """Long-lived services shared by every request of one application"""
    settings: Settings
    provider: RepositoryProvider
    uploads: UploadService
    alerts: AlertLog
    health_checker: Optional[HealthChecker] = None
    pool_monitor: Optional[PoolMonitor] = None
    service_monitor: Optional[ServiceMonitor] = None
    memory_monitor: Optional[MemoryMonitor] = None
    started_at: float = field(default_factory=time.time)

    @classmethod
    def build(cls, config: Settings, provider: RepositoryProvider) -> "ServiceRegistry":
        alerts = AlertLog()
        health_checker = HealthChecker(
            probe=provider.ping,
            reconnect=provider.reconnect,
            alerts=alerts,
            failure_threshold=config.HEALTH_FAILURE_THRESHOLD,
            interval=config.HEALTH_CHECK_INTERVAL,
            timeout=config.HEALTH_CHECK_TIMEOUT,
        )

        pool_monitor = None
        pool = provider.pool_handle()
        if pool is not None:
            scaler = SmartPoolScaler(ScalingPolicy.from_settings(config), pool=pool)
            pool_monitor = PoolMonitor.from_settings(config, pool, scaler, alerts, health_checker)

        service_monitor = None
        if config.SERVICE_MONITOR_ENABLED:
            service_monitor = ServiceMonitor(
                base_url=config.SERVICE_BASE_URL or f"http://127.0.0.1:{config.PORT}",
                alerts=alerts,
                interval=config.SERVICE_CHECK_INTERVAL,
                timeout=config.SERVICE_TIMEOUT,
                alert_threshold=config.SERVICE_ALERT_THRESHOLD,
                alert_cooldown=config.SERVICE_ALERT_COOLDOWN,
            )

        return cls(
            settings=config,
            provider=provider,
            uploads=UploadService.from_settings(config),
            alerts=alerts,
            health_checker=health_checker,
            pool_monitor=pool_monitor,
            service_monitor=service_monitor,
            memory_monitor=MemoryMonitor(
                threshold_mb=config.MEMORY_WARNING_THRESHOLD_MB,
                interval=config.MEMORY_CHECK_INTERVAL,
                alerts=alerts,
            ),
        )

    def start_monitors(self) -> None:
        if self.health_checker is not None:
            self.health_checker.start()
        if self.pool_monitor is not None and self.settings.POOL_MONITOR_ENABLED:
            self.pool_monitor.start()
        if self.service_monitor is not None:
            self.service_monitor.start()
        if self.memory_monitor is not None:
            self.memory_monitor.start()

    async def stop_monitors(self) -> None:
        for monitor in (self.pool_monitor, self.health_checker, self.service_monitor, self.memory_monitor):
            if monitor is None:
                continue
            try:
                await monitor.stop()
            except Exception as e:
                logger.warning(f"Error stopping {monitor.name}: {e}")

    @property
    def uptime_seconds(self) -> float:
        return round(time.time() - self.started_at, 1)


def get_services(request: Request) -> ServiceRegistry:
    return request.app.state.services


async def get_repositories(services: ServiceRegistry = Depends(get_services)) -> AsyncIterator[Repositories]:
    async with services.provider.session() as repositories:
        yield repositories


def get_upload_service(services: ServiceRegistry = Depends(get_services)) -> UploadService:
    return services.uploads


async def upload_slot(uploads: UploadService = Depends(get_upload_service)) -> AsyncIterator[UploadService]:
    """Hold one concurrent-upload slot for the duration of the request"""
    uploads.gate.acquire()
    try:
        yield uploads
    finally:
        uploads.gate.release()
