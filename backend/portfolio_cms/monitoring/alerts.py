"""
Alert log shared by the monitors

Alerts go to the ``portfolio_cms.alerts`` logger, which the logging setup
routes to ``alerts.log``, and into a bounded in-memory history served by the
monitoring endpoint.
"""

import logging
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

ALERT_LOGGER_NAME = "portfolio_cms.alerts"


@dataclass
class Alert:
    message: str
    level: str = "error"
    source: str = "system"
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class AlertLog:
    """Bounded alert history plus a dedicated logger"""

    def __init__(self, max_history: int = 100, logger: Optional[logging.Logger] = None):
        self._history: Deque[Alert] = deque(maxlen=max_history)
        self.logger = logger or logging.getLogger(ALERT_LOGGER_NAME)

    def alert(self, message: str, level: str = "error", source: str = "system", **details: Any) -> Alert:
        entry = Alert(message=message, level=level, source=source, details=details)
        self._history.append(entry)
        log_level = logging.getLevelName(level.upper())
        if not isinstance(log_level, int):
            log_level = logging.ERROR
        suffix = f" {details}" if details else ""
        self.logger.log(log_level, f"[{source}] {message}{suffix}")
        return entry

    def recent(self, limit: int = 5) -> List[Dict[str, Any]]:
        """Newest first"""
        return [asdict(entry) for entry in list(self._history)[::-1][:limit]]

    def __len__(self) -> int:
        return len(self._history)
