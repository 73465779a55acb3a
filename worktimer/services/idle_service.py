import math
from datetime import datetime
from typing import NamedTuple, Optional

from worktimer.core.config import TimerConfig

class IdleDetection(NamedTuple):
    is_idle: bool
    idle_seconds: int

def detect_idle(now: datetime, last_heartbeat_at: Optional[datetime],
                idle_threshold_seconds: float) -> IdleDetection:
    """Decide whether a running session went without a heartbeat for too long.

    The gap is floored to whole seconds first, then must strictly exceed the
    threshold: 600.9s against a 600s threshold is not idle. ``idle_seconds``
    is the floored gap when idle and 0 otherwise.
    """
    if last_heartbeat_at is None:
        return IdleDetection(False, 0)

    gap_seconds = math.floor((now - last_heartbeat_at).total_seconds())
    if gap_seconds > idle_threshold_seconds:
        return IdleDetection(True, gap_seconds)
    return IdleDetection(False, 0)

def idle_threshold_seconds(idle_threshold_minutes: Optional[float]) -> float:
    """Per-entry threshold, falling back to the configured default"""
    minutes = idle_threshold_minutes or TimerConfig.IDLE_THRESHOLD_MINUTES
    minutes = min(minutes, TimerConfig.MAX_IDLE_THRESHOLD_MINUTES)
    return minutes * 60
