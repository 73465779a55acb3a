import logging
from datetime import date
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from worktimer.core import clock
from worktimer.core.exceptions import DegradedRateComputation, UserNotFound
from worktimer.core.security import current_user_id
from worktimer.models.salary import (
    HourlyRateResponse, OvertimeConfig, OvertimeUpdate, SalaryIncrementRequest, SalaryRecord,
)
from worktimer.services import entry_store
from worktimer.services.rate_service import get_rate_cache, hourly_from_salary, resolve_effective_rate

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/profile/hourly-rate", response_model=HourlyRateResponse)
async def get_hourly_rate(date: date, user_id: int = Depends(current_user_id)):
    """Hourly rate in force for the caller on a given date (YYYY-MM-DD)"""
    try:
        rate = resolve_effective_rate(user_id, date)
    except UserNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except DegradedRateComputation as e:
        raise HTTPException(status_code=422, detail=e.message)

    return HourlyRateResponse(
        date=date,
        hourly_rate=rate.hourly_rate,
        working=rate.working,
        overtime=rate.overtime,
        source=rate.source,
        degraded=rate.degraded,
        degraded_reason=rate.degraded_reason,
    )

@router.get("/profile/salary-history", response_model=List[SalaryRecord])
async def get_salary_history(user_id: int = Depends(current_user_id)):
    """Salary records ordered by effective date"""
    try:
        entry_store.get_user_profile(user_id)
    except UserNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)

    records = entry_store.list_salary_records(user_id)
    return sorted(records, key=lambda r: (r.effective_from, r.record_id))

@router.post("/profile/increment", response_model=SalaryRecord)
async def add_salary_increment(increment: SalaryIncrementRequest, user_id: int = Depends(current_user_id)):
    """Append a salary record; earlier records are never edited"""
    try:
        profile = entry_store.get_user_profile(user_id)
    except UserNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)

    working = increment.working or profile.working
    record = SalaryRecord(
        salary_type=increment.salary_type,
        amount=increment.amount,
        effective_from=increment.effective_from,
        working=working,
        note=increment.note,
        created_at=clock.server_now(),
    )
    default_hourly_rate = hourly_from_salary(record.salary_type, record.amount, working)
    saved = entry_store.append_salary_record(user_id, record, default_hourly_rate)

    # History changed: every cached rate for this user may now be wrong
    dropped = get_rate_cache().invalidate_user(user_id)
    logger.info(f"Salary increment for user {user_id}; dropped {dropped} cached rates")
    return saved

@router.put("/profile/overtime", response_model=OvertimeConfig)
async def update_overtime_settings(overtime: OvertimeUpdate, user_id: int = Depends(current_user_id)):
    try:
        updated = entry_store.update_overtime(user_id, overtime)
    except UserNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)

    get_rate_cache().invalidate_user(user_id)
    logger.info(f"Overtime settings updated for user {user_id}: enabled={updated.enabled}")
    return updated
