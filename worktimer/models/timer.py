from enum import Enum
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

class TimerStatus(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"

class TimerAction(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"
    HEARTBEAT = "heartbeat"

class IdleResolution(str, Enum):
    """What to do with an idle gap the caller has been warned about"""
    DISCARD = "discard"
    KEEP = "keep"

class TimerState(BaseModel):
    """Timer embedded in a time entry"""
    status: TimerStatus = TimerStatus.STOPPED
    started_at: Optional[datetime] = None        # only while running
    last_heartbeat_at: Optional[datetime] = None  # only while running
    accumulated_seconds: float = 0.0
    stopped_at: Optional[datetime] = None        # set once; the timer is finished
    idle_threshold_minutes: Optional[float] = None
    version: int = 0

class TimerActionRequest(BaseModel):
    action: TimerAction
    timestamp: Optional[str] = None  # client clock, logged only
    idle_resolution: Optional[IdleResolution] = None
    idle_threshold_minutes: Optional[float] = Field(default=None, gt=0)

class IdleWarningDetail(BaseModel):
    idle_seconds: int
    last_heartbeat_at: Optional[datetime] = None
    message: str

class IdleWarningResponse(BaseModel):
    error: str = "Idle time detected"
    idle_warning: IdleWarningDetail

class IdleDetectionInfo(BaseModel):
    is_idle: bool
    idle_seconds: int

class TimerActionResponse(BaseModel):
    success: bool = True
    timer: TimerState
    elapsed_seconds: int
    total_hours: Optional[float] = None
    total_earnings: Optional[float] = None
    hourly_rate: Optional[float] = None
    rate_source: Optional[str] = None
    rate_degraded: Optional[bool] = None

class TimerStatusResponse(BaseModel):
    success: bool = True
    timer: TimerState
    elapsed_seconds: int
    idle_detection: IdleDetectionInfo

class TimerEventRecord(BaseModel):
    """One committed timer action from the audit log"""
    event_id: int
    entry_id: int
    action: str
    from_status: str
    to_status: str
    server_timestamp: datetime
    client_timestamp: Optional[str] = None
    idle_seconds: int = 0
    idle_resolution: Optional[str] = None
    accumulated_seconds: float

class SweepResult(BaseModel):
    checked_at: datetime
    grace_minutes: float
    paused_entry_ids: List[int]
    conflicts: List[int] = []
