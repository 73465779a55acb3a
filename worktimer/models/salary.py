from enum import Enum
from pydantic import BaseModel, Field
from datetime import date as date_type, datetime
from typing import Optional

class SalaryType(str, Enum):
    ANNUAL = "annual"
    MONTHLY = "monthly"

class RateSource(str, Enum):
    """Where a resolved hourly rate came from"""
    SALARY_HISTORY = "salary_history"
    NEAREST_RECORD = "nearest_record"
    DEFAULT_RATE = "default_rate"
    NONE = "none"

class WorkingConfig(BaseModel):
    hours_per_day: float = 8
    days_per_month: float = 22

class OvertimeConfig(BaseModel):
    enabled: bool = False
    threshold_hours_per_day: float = 8
    multiplier: float = 1.5

class SalaryRecord(BaseModel):
    """One entry of a user's append-only salary history"""
    record_id: Optional[int] = None
    salary_type: SalaryType
    amount: float
    effective_from: date_type
    working: WorkingConfig
    note: Optional[str] = None
    created_at: Optional[datetime] = None

class SalaryIncrementRequest(BaseModel):
    salary_type: SalaryType
    amount: float = Field(gt=0)
    effective_from: date_type
    working: Optional[WorkingConfig] = None
    note: Optional[str] = None

class OvertimeUpdate(BaseModel):
    enabled: bool
    threshold_hours_per_day: float = Field(default=8, gt=0)
    multiplier: float = Field(default=1.5, gt=1)

class UserProfile(BaseModel):
    """Profile data the rate resolver consumes"""
    user_id: int
    name: str
    email: str
    default_hourly_rate: Optional[float] = None
    working: WorkingConfig
    overtime: OvertimeConfig

class EffectiveRate(BaseModel):
    hourly_rate: float
    working: Optional[WorkingConfig] = None
    overtime: Optional[OvertimeConfig] = None
    source: RateSource
    degraded: bool = False
    degraded_reason: Optional[str] = None
    record_effective_from: Optional[date_type] = None

class HourlyRateResponse(BaseModel):
    date: date_type
    hourly_rate: float
    working: Optional[WorkingConfig] = None
    overtime: Optional[OvertimeConfig] = None
    source: RateSource
    degraded: bool = False
    degraded_reason: Optional[str] = None
