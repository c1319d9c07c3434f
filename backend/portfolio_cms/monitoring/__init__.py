"""
Runtime monitors: connection pool sampling and scaling, database health,
service self-checks and process memory
"""

from .alerts import AlertLog
from .health_checker import ConnectionHealthStatus, HealthChecker
from .pool_monitor import PoolMonitor, PoolHandle, SQLAlchemyPoolHandle, TickSchedule
from .scaler import ScalingAction, ScalingPolicy, SmartPoolScaler
from .service_monitor import ServiceMonitor
from .system import MemoryMonitor

__all__ = [
    "AlertLog",
    "ConnectionHealthStatus",
    "HealthChecker",
    "PoolMonitor",
    "PoolHandle",
    "SQLAlchemyPoolHandle",
    "TickSchedule",
    "ScalingAction",
    "ScalingPolicy",
    "SmartPoolScaler",
    "ServiceMonitor",
    "MemoryMonitor",
]
