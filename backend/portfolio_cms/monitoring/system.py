import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import psutil

from .alerts import AlertLog
from .base import PeriodicMonitor


def memory_snapshot() -> Dict[str, Any]:
    """Process and system memory figures in MB"""
    process = psutil.Process(os.getpid())
    rss = process.memory_info().rss
    system = psutil.virtual_memory()
    return {
        "process_rss_mb": round(rss / 1024 / 1024, 2),
        "system_percent": system.percent,
        "system_available_mb": round(system.available / 1024 / 1024, 2),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class MemoryMonitor(PeriodicMonitor):
    """Logs process memory periodically and alerts above a threshold"""

    def __init__(self, threshold_mb: int = 1024, interval: float = 3600.0, alerts: Optional[AlertLog] = None):
        super().__init__(interval, name="memory-monitor")
        self.threshold_mb = threshold_mb
        self.alerts = alerts or AlertLog()
        self.last_snapshot: Optional[Dict[str, Any]] = None

    async def run_once(self) -> None:
        self.check()

    def check(self) -> Dict[str, Any]:
        snapshot = memory_snapshot()
        self.last_snapshot = snapshot
        self.logger.info(f"Process memory: {snapshot['process_rss_mb']}MB")
        if snapshot["process_rss_mb"] > self.threshold_mb:
            self.alerts.alert(
                f"High memory usage: {snapshot['process_rss_mb']}MB (threshold {self.threshold_mb}MB)",
                level="warning",
                source="memory",
            )
        return snapshot
