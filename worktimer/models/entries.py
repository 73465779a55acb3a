from enum import Enum
from pydantic import BaseModel, Field
from datetime import date as date_type, datetime
from typing import Optional, List

from worktimer.models.salary import RateSource
from worktimer.models.timer import TimerState

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

class LeaveType(str, Enum):
    SICK = "Sick"
    VACATION = "Vacation"
    PERSONAL = "Personal"
    HOLIDAY = "Holiday"
    OTHER = "Other"

class LeaveEntry(BaseModel):
    is_leave: bool = False
    leave_type: Optional[LeaveType] = None
    leave_reason: Optional[str] = None

class TimeEntry(BaseModel):
    entry_id: int
    user_id: int
    date: date_type
    time_in: str = ""
    time_out: str = ""
    break_minutes: int = 0
    total_hours: float = 0.0
    hourly_rate: float = 0.0
    total_earnings: float = 0.0
    rate_source: Optional[RateSource] = None
    rate_degraded: bool = False
    work_description: str = ""
    client: Optional[str] = None
    project: Optional[str] = None
    leave: Optional[LeaveEntry] = None
    timer: TimerState
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

class TimeEntryCreate(BaseModel):
    """Manual entry, leave day, or an empty entry to run a timer on"""
    date: date_type
    time_in: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    time_out: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    break_minutes: int = Field(default=0, ge=0)
    total_hours: Optional[float] = Field(default=None, ge=0)
    work_description: str = ""
    client: Optional[str] = None
    project: Optional[str] = None
    leave: Optional[LeaveEntry] = None

class TimeEntryUpdate(TimeEntryCreate):
    """Replaces every editable field of an entry; the timer is never edited"""

class TimeEntryList(BaseModel):
    items: List[TimeEntry]
    next_cursor: Optional[int] = None
    page_size: int
