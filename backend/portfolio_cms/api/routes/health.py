"""
Health, monitoring and pool administration endpoints
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
import logging

from portfolio_cms.core.dependencies import ServiceRegistry, get_services
from portfolio_cms.core.exceptions import DatabaseException, NotFoundException
from portfolio_cms.monitoring import ServiceMonitor
from portfolio_cms.monitoring.system import memory_snapshot
from portfolio_cms.schemas.health import PoolResizeRequest, StressTestRequest
from portfolio_cms.security.authentication import CurrentUser, get_admin_user

logger = logging.getLogger(__name__)

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _database_summary(services: ServiceRegistry) -> dict:
    summary = services.provider.describe()
    if services.health_checker is not None:
        summary["healthy"] = services.health_checker.status.healthy
        summary["last_check_time"] = services.health_checker.status.last_check_time
    return summary


def _get_health_recommendations(services: ServiceRegistry, memory: dict) -> list:
    """Operator hints derived from the current monitor state"""
    recommendations = []

    checker = services.health_checker
    if checker is not None and not checker.status.healthy:
        recommendations.append("Check database connectivity and configuration")
    if checker is not None and (checker.status.response_time_ms or 0) > 1000:
        recommendations.append("Database response time is slow - consider connection pool tuning")

    if services.pool_monitor is not None:
        stats = services.pool_monitor.stats
        if stats.usage_rate >= services.pool_monitor.high_usage_threshold:
            recommendations.append("Connection pool utilization high - consider raising DB_POOL_MAX_SCALABLE")

    if memory["process_rss_mb"] > services.settings.MEMORY_WARNING_THRESHOLD_MB:
        recommendations.append("Process memory above threshold - consider a restart")

    if not recommendations:
        recommendations.append("All systems operating normally")
    return recommendations


@router.get("/health")
async def health_check(services: ServiceRegistry = Depends(get_services)):
    """Basic health check endpoint"""
    database = _database_summary(services)
    healthy = database.get("healthy", True)
    return {
        "status": "healthy" if healthy else "degraded",
        "environment": services.settings.ENVIRONMENT,
        "version": services.settings.APP_VERSION,
        "uptime_seconds": services.uptime_seconds,
        "database": database,
        "timestamp": _now(),
    }


@router.get("/health/detailed")
async def detailed_health_check(services: ServiceRegistry = Depends(get_services)):
    """Health plus memory and upload statistics"""
    memory = memory_snapshot()
    database = _database_summary(services)
    return {
        "status": "healthy" if database.get("healthy", True) else "degraded",
        "environment": services.settings.ENVIRONMENT,
        "uptime_seconds": services.uptime_seconds,
        "database": database,
        "memory": memory,
        "uploads": services.uploads.get_stats(),
        "recommendations": _get_health_recommendations(services, memory),
        "timestamp": _now(),
    }


@router.get("/health/database")
async def database_health(services: ServiceRegistry = Depends(get_services)):
    """Run a health check now and report pool state"""
    if services.health_checker is None:
        raise DatabaseException("Database health checker is not configured", operation="health_check")

    status = await services.health_checker.check()
    response = {
        "success": True,
        "health": status.to_dict(),
        "database": services.provider.describe(),
        "config": {
            "failure_threshold": services.health_checker.failure_threshold,
            "check_interval": services.health_checker.interval,
            "timeout": services.health_checker.timeout,
        },
        "timestamp": _now(),
    }
    if services.pool_monitor is not None:
        response["pool"] = services.pool_monitor.get_status()
    return response


@router.get("/health/monitoring")
async def monitoring_status(services: ServiceRegistry = Depends(get_services)):
    return {
        "success": True,
        "database": services.health_checker.status.to_dict() if services.health_checker else None,
        "pool": services.pool_monitor.get_status() if services.pool_monitor else None,
        "service": services.service_monitor.get_status() if services.service_monitor else None,
        "recent_alerts": services.alerts.recent(5),
        "timestamp": _now(),
    }


# ===================================================================
# Stress testing (non-production only)
# ===================================================================

async def _run_stress_test(services: ServiceRegistry, params: StressTestRequest) -> dict:
    if services.settings.is_production:
        raise NotFoundException("Route", "/health/stress-test", message="Route not found")

    monitor = services.service_monitor
    owned = monitor is None
    if owned:
        monitor = ServiceMonitor(
            base_url=services.settings.SERVICE_BASE_URL or f"http://127.0.0.1:{services.settings.PORT}",
            alerts=services.alerts,
            timeout=services.settings.SERVICE_TIMEOUT,
        )
    try:
        result = await monitor.stress_test(params.endpoint, params.requests, params.concurrency)
    finally:
        if owned:
            await monitor.stop()
    return {"success": True, "data": result}


@router.get("/health/stress-test")
async def stress_test_get(
    endpoint: str = Query("/health"),
    requests: int = Query(50, ge=1, le=1000),
    concurrency: int = Query(10, ge=1, le=100),
    services: ServiceRegistry = Depends(get_services),
):
    params = StressTestRequest(endpoint=endpoint, requests=requests, concurrency=concurrency)
    return await _run_stress_test(services, params)


@router.post("/health/stress-test")
async def stress_test_post(
    payload: Optional[StressTestRequest] = None,
    services: ServiceRegistry = Depends(get_services),
):
    return await _run_stress_test(services, payload or StressTestRequest())


# ===================================================================
# Pool administration
# ===================================================================

def _require_pool_monitor(services: ServiceRegistry):
    if services.pool_monitor is None:
        raise DatabaseException(
            f"Connection pool management is not available for the {services.provider.backend} backend",
            operation="pool_management",
        )
    return services.pool_monitor


@router.post("/health/database/pool/resize")
async def resize_pool(
    payload: PoolResizeRequest,
    admin: CurrentUser = Depends(get_admin_user),
    services: ServiceRegistry = Depends(get_services),
):
    """Set the logical pool maximum within [min, max_scalable]"""
    decision = _require_pool_monitor(services).resize(payload.max_connections)
    logger.info(f"Admin {admin.username} resized pool to {payload.max_connections}")
    return {"success": True, "data": decision.to_dict()}


@router.post("/health/database/cleanup")
async def cleanup_pool(
    admin: CurrentUser = Depends(get_admin_user),
    services: ServiceRegistry = Depends(get_services),
):
    result = _require_pool_monitor(services).force_cleanup()
    logger.info(f"Admin {admin.username} forced pool cleanup, released {result['released']}")
    return {"success": True, "data": result}
