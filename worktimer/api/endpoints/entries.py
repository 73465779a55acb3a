import logging
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from worktimer.core import clock
from worktimer.core.exceptions import DegradedRateComputation, EntryNotFound, UserNotFound, WriteConflict
from worktimer.core.security import current_user_id
from worktimer.models.entries import TimeEntry, TimeEntryCreate, TimeEntryList, TimeEntryUpdate
from worktimer.models.timer import TimerStatus
from worktimer.services import entry_store
from worktimer.services.earnings_service import calculate_time_worked, compute_earnings, round2
from worktimer.services.rate_service import resolve_effective_rate

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

def overlap_response(overlap: TimeEntry) -> JSONResponse:
    return JSONResponse(status_code=409, content={
        "error": "Overlapping time entry exists",
        "overlap": {
            "entry_id": overlap.entry_id,
            "time_in": overlap.time_in,
            "time_out": overlap.time_out,
            "total_hours": overlap.total_hours,
            "work_description": overlap.work_description,
        },
    })

def price_entry(user_id: int, payload: TimeEntryCreate, fallback_hours: float = 0.0) -> Dict[str, Any]:
    """Hours, rate and earnings for an entry's editable fields"""
    try:
        rate = resolve_effective_rate(user_id, payload.date)
    except UserNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except DegradedRateComputation as e:
        raise HTTPException(status_code=422, detail=e.message)

    is_leave = bool(payload.leave and payload.leave.is_leave)
    total_hours = 0.0
    total_earnings = 0.0
    if not is_leave:
        if payload.time_in and payload.time_out:
            total_hours = calculate_time_worked(payload.time_in, payload.time_out, payload.break_minutes)
        elif payload.total_hours:
            total_hours = round2(payload.total_hours)
        else:
            total_hours = fallback_hours
        total_earnings = compute_earnings(total_hours, rate.hourly_rate, rate.overtime)

    return {
        "total_hours": total_hours,
        "hourly_rate": rate.hourly_rate,
        "total_earnings": total_earnings,
        "rate_source": rate.source,
        "rate_degraded": rate.degraded,
    }

def find_overlap(user_id: int, payload: TimeEntryCreate, exclude_entry_id: Optional[int] = None) -> Optional[TimeEntry]:
    is_leave = bool(payload.leave and payload.leave.is_leave)
    if is_leave or not (payload.time_in and payload.time_out):
        return None
    return entry_store.find_overlapping_entry(
        user_id, payload.date, payload.time_in, payload.time_out, exclude_entry_id=exclude_entry_id,
    )

@router.post("/time-entries", response_model=TimeEntry)
async def create_time_entry(new_entry: TimeEntryCreate, user_id: int = Depends(current_user_id)):
    """Create a manual entry, a leave day, or an empty entry to run a timer on"""
    overlap = find_overlap(user_id, new_entry)
    if overlap:
        logger.warning(f"Overlapping entry for user {user_id} on {new_entry.date} (existing {overlap.entry_id})")
        return overlap_response(overlap)

    priced = price_entry(user_id, new_entry)
    is_leave = bool(new_entry.leave and new_entry.leave.is_leave)

    return entry_store.create_entry(
        user_id,
        new_entry.date,
        clock.server_now(),
        time_in=new_entry.time_in or "",
        time_out=new_entry.time_out or "",
        break_minutes=new_entry.break_minutes,
        work_description=new_entry.work_description,
        client=new_entry.client,
        project=new_entry.project,
        leave=new_entry.leave if is_leave else None,
        **priced,
    )

@router.put("/time-entries/{entry_id}", response_model=TimeEntry)
async def update_time_entry(entry_id: int, changes: TimeEntryUpdate, user_id: int = Depends(current_user_id)):
    """Replace an entry's date, times, break, description and leave; hours and earnings are recomputed.

    Entries with a running or paused timer cannot be edited. A finished timer
    keeps its hours unless the edit supplies a time range or hours.
    """
    try:
        entry = entry_store.get_entry(entry_id, user_id)
    except EntryNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    if entry.deleted_at is not None:
        raise HTTPException(status_code=404, detail="Time entry not found")
    if entry.timer.status != TimerStatus.STOPPED:
        raise HTTPException(status_code=409, detail=f"Timer is {entry.timer.status.value}; stop it before editing")

    overlap = find_overlap(user_id, changes, exclude_entry_id=entry_id)
    if overlap:
        logger.warning(f"Edit of entry {entry_id} overlaps entry {overlap.entry_id}")
        return overlap_response(overlap)

    timer_hours = round2(entry.timer.accumulated_seconds / 3600) if entry.timer.stopped_at else 0.0
    priced = price_entry(user_id, changes, fallback_hours=timer_hours)
    is_leave = bool(changes.leave and changes.leave.is_leave)

    fields = {
        "work_date": changes.date.isoformat(),
        "time_in": changes.time_in or "",
        "time_out": changes.time_out or "",
        "break_minutes": changes.break_minutes,
        "total_hours": priced["total_hours"],
        "hourly_rate": priced["hourly_rate"],
        "total_earnings": priced["total_earnings"],
        "rate_source": priced["rate_source"].value,
        "rate_degraded": priced["rate_degraded"],
        "work_description": changes.work_description,
        "client": changes.client,
        "project": changes.project,
        "is_leave": is_leave,
        "leave_type": changes.leave.leave_type.value if is_leave and changes.leave.leave_type else None,
        "leave_reason": changes.leave.leave_reason if is_leave else None,
    }

    try:
        return entry_store.update_entry(entry, clock.server_now(), fields)
    except WriteConflict as e:
        return JSONResponse(status_code=409, content={"error": e.message, "code": e.code, "conflict": True})

@router.get("/time-entries", response_model=TimeEntryList)
async def list_time_entries(
    work_date: Optional[date] = Query(default=None, alias="date"),
    show_deleted: bool = False,
    limit: int = 50,
    cursor: Optional[int] = None,
    user_id: int = Depends(current_user_id),
):
    """List the caller's entries, newest first"""
    page_size = min(max(limit, 1), MAX_PAGE_SIZE)
    items = entry_store.list_entries(user_id, work_date=work_date, show_deleted=show_deleted,
                                     limit=page_size, cursor_id=cursor)
    next_cursor = items[-1].entry_id if len(items) == page_size else None
    return TimeEntryList(items=items, next_cursor=next_cursor, page_size=page_size)

@router.get("/time-entries/{entry_id}", response_model=TimeEntry)
async def get_time_entry(entry_id: int, user_id: int = Depends(current_user_id)):
    try:
        return entry_store.get_entry(entry_id, user_id)
    except EntryNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)

@router.delete("/time-entries/{entry_id}")
async def delete_time_entry(entry_id: int, user_id: int = Depends(current_user_id)):
    """Soft delete; the entry's timer can no longer be operated"""
    try:
        entry_store.soft_delete_entry(entry_id, user_id, clock.server_now())
    except EntryNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    return {"success": True}
