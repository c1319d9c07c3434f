"""
Smart pool scaler

Moves the pool's logical maximum between the configured floor and cap based
on sampled usage. The logical maximum is always recorded; it only changes the
physical pool when the pool handle supports resizing, which each decision
reports through ``applied``.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Deque, Dict, Any, List, Optional

from portfolio_cms.core.config import Settings
from portfolio_cms.core.exceptions import ValidationException

logger = logging.getLogger(__name__)
pool_manager_log = logging.getLogger("portfolio_cms.pool_manager")


class ScalingAction(str, Enum):
    NO_CHANGE = "no_change"
    SCALED_UP = "scaled_up"
    SCALED_DOWN = "scaled_down"


@dataclass(frozen=True)
class ScalingPolicy:
    min_connections: int = 5
    initial_max: int = 10
    max_scalable: int = 20
    scale_up_threshold: int = 80
    scale_down_threshold: int = 30
    scale_up_step: int = 2
    scale_down_step: int = 1
    scale_up_cooldown: float = 60.0
    scale_down_cooldown: float = 300.0

    @classmethod
    def from_settings(cls, config: Settings) -> "ScalingPolicy":
        return cls(
            min_connections=config.DB_POOL_MIN,
            initial_max=config.DB_POOL_MAX,
            max_scalable=config.DB_POOL_MAX_SCALABLE,
            scale_up_threshold=config.POOL_SCALE_UP_THRESHOLD,
            scale_down_threshold=config.POOL_SCALE_DOWN_THRESHOLD,
            scale_up_step=config.POOL_SCALE_UP_STEP,
            scale_down_step=config.POOL_SCALE_DOWN_STEP,
            scale_up_cooldown=config.POOL_SCALE_UP_COOLDOWN,
            scale_down_cooldown=config.POOL_SCALE_DOWN_COOLDOWN,
        )

    def clamp(self, value: int) -> int:
        return max(self.min_connections, min(value, self.max_scalable))


@dataclass
class ScalingDecision:
    action: ScalingAction
    previous_max: int
    new_max: int
    usage_rate: int
    active: int
    applied: bool = False
    reason: str = ""
    timestamp: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value
        return data


class SmartPoolScaler:
    """
    Usage-driven pool sizing with per-direction cooldowns

    Cooldowns are measured from the last action in the same direction, or from
    construction when there was none, and must be strictly exceeded.
    """

    def __init__(
        self,
        policy: ScalingPolicy,
        pool=None,
        clock: Callable[[], float] = time.monotonic,
        max_events: int = 100,
    ):
        if policy.min_connections > policy.max_scalable:
            raise ValueError("min_connections must not exceed max_scalable")
        self.policy = policy
        self.pool = pool
        self._clock = clock
        self.current_max = policy.clamp(policy.initial_max)

        started = clock()
        self._last_scale_up_at = started
        self._last_scale_down_at = started
        self.last_scale_up: Optional[str] = None
        self.last_scale_down: Optional[str] = None
        self.events: Deque[ScalingDecision] = deque(maxlen=max_events)

    def evaluate(self, usage_rate: int, active: int) -> ScalingDecision:
        """Decide and apply at most one transition for this sample"""
        policy = self.policy
        now = self._clock()

        if (
            usage_rate >= policy.scale_up_threshold
            and self.current_max < policy.max_scalable
            and now - self._last_scale_up_at > policy.scale_up_cooldown
        ):
            new_max = min(self.current_max + policy.scale_up_step, policy.max_scalable)
            self._last_scale_up_at = now
            return self._transition(
                ScalingAction.SCALED_UP, new_max, usage_rate, active,
                reason=f"usage {usage_rate}% >= {policy.scale_up_threshold}%",
            )

        if (
            usage_rate <= policy.scale_down_threshold
            and self.current_max > policy.min_connections
            and now - self._last_scale_down_at > policy.scale_down_cooldown
            and active <= self.current_max - policy.scale_down_step
        ):
            new_max = max(self.current_max - policy.scale_down_step, policy.min_connections)
            self._last_scale_down_at = now
            return self._transition(
                ScalingAction.SCALED_DOWN, new_max, usage_rate, active,
                reason=f"usage {usage_rate}% <= {policy.scale_down_threshold}%",
            )

        return ScalingDecision(
            action=ScalingAction.NO_CHANGE,
            previous_max=self.current_max,
            new_max=self.current_max,
            usage_rate=usage_rate,
            active=active,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    def resize(self, new_max: int, active: int = 0, usage_rate: int = 0) -> ScalingDecision:
        """
        Manually set the logical maximum

        Raises:
            ValidationException: If new_max is outside [min_connections, max_scalable]
        """
        policy = self.policy
        if not policy.min_connections <= new_max <= policy.max_scalable:
            raise ValidationException(
                f"Pool size must be between {policy.min_connections} and {policy.max_scalable}",
                field="max",
                value=new_max,
            )
        if new_max == self.current_max:
            return ScalingDecision(
                action=ScalingAction.NO_CHANGE,
                previous_max=self.current_max,
                new_max=new_max,
                usage_rate=usage_rate,
                active=active,
                reason="manual resize to current size",
                timestamp=datetime.now(timezone.utc).isoformat(),
            )
        action = ScalingAction.SCALED_UP if new_max > self.current_max else ScalingAction.SCALED_DOWN
        if action is ScalingAction.SCALED_UP:
            self._last_scale_up_at = self._clock()
        else:
            self._last_scale_down_at = self._clock()
        return self._transition(action, new_max, usage_rate, active, reason="manual resize")

    def _transition(self, action: ScalingAction, new_max: int, usage_rate: int, active: int, reason: str) -> ScalingDecision:
        previous = self.current_max
        self.current_max = self.policy.clamp(new_max)
        stamp = datetime.now(timezone.utc).isoformat()
        if action is ScalingAction.SCALED_UP:
            self.last_scale_up = stamp
        else:
            self.last_scale_down = stamp

        decision = ScalingDecision(
            action=action,
            previous_max=previous,
            new_max=self.current_max,
            usage_rate=usage_rate,
            active=active,
            applied=self._apply(self.current_max),
            reason=reason,
            timestamp=stamp,
        )
        self.events.append(decision)

        message = (
            f"Pool {action.value}: max {previous} -> {self.current_max} ({reason}, active {active}, "
            f"{'applied' if decision.applied else 'advisory only'})"
        )
        logger.info(message)
        pool_manager_log.info(message)
        return decision

    def _apply(self, new_max: int) -> bool:
        if self.pool is None:
            return False
        try:
            return bool(self.pool.set_max(new_max))
        except Exception as e:
            logger.error(f"Failed to apply pool max {new_max}: {e}")
            return False

    def recent_events(self, limit: int = 10) -> List[Dict[str, Any]]:
        return [event.to_dict() for event in list(self.events)[::-1][:limit]]
