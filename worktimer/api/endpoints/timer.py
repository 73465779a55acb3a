import logging
import sqlite3

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from worktimer.core import clock
from worktimer.core.exceptions import (
    DegradedRateComputation, EntryNotFound, IdleWarning, InvalidTransition, TimerUnavailable, WriteConflict,
)
from worktimer.core.security import current_user_id
from worktimer.models.timer import (
    IdleDetectionInfo, IdleWarningDetail, IdleWarningResponse, TimerAction, TimerActionRequest,
    TimerActionResponse, TimerStatus, TimerStatusResponse,
)
from worktimer.services import entry_store
from worktimer.services.idle_service import detect_idle, idle_threshold_seconds
from worktimer.services.timer_service import elapsed_seconds, process_timer_action

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post(
    "/time-entries/{entry_id}/timer",
    response_model=TimerActionResponse,
    responses={409: {"description": "Idle time detected or concurrent modification"}},
)
async def timer_action(entry_id: int, action_request: TimerActionRequest, user_id: int = Depends(current_user_id)):
    """Start, pause, resume, stop or heartbeat the timer on a time entry"""
    try:
        result = process_timer_action(entry_id, user_id, action_request)
    except EntryNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except (InvalidTransition, TimerUnavailable) as e:
        raise HTTPException(status_code=400, detail=e.message)
    except IdleWarning as e:
        body = IdleWarningResponse(idle_warning=IdleWarningDetail(
            idle_seconds=e.idle_seconds,
            last_heartbeat_at=e.last_heartbeat_at,
            message=e.message,
        ))
        return JSONResponse(status_code=409, content=body.model_dump(mode="json"))
    except WriteConflict as e:
        return JSONResponse(status_code=409, content={"error": e.message, "code": e.code, "conflict": True})
    except DegradedRateComputation as e:
        raise HTTPException(status_code=422, detail=e.message)
    except sqlite3.OperationalError as e:
        logger.error(f"Store unavailable during timer {action_request.action.value} on entry {entry_id}: {e}")
        raise HTTPException(status_code=503, detail="Time entry store unavailable, retry", headers={"Retry-After": "1"})

    entry = result.entry
    response = TimerActionResponse(timer=entry.timer, elapsed_seconds=result.elapsed_seconds)
    if action_request.action == TimerAction.STOP:
        response.total_hours = entry.total_hours
        response.total_earnings = entry.total_earnings
        response.hourly_rate = entry.hourly_rate
        response.rate_source = entry.rate_source.value if entry.rate_source else None
        response.rate_degraded = entry.rate_degraded
    return response

@router.get("/time-entries/{entry_id}/timer", response_model=TimerStatusResponse)
async def get_timer_state(entry_id: int, user_id: int = Depends(current_user_id)):
    """Current timer state, elapsed time and idle status (unsynchronized read)"""
    try:
        entry = entry_store.get_entry(entry_id, user_id)
    except EntryNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)

    now = clock.server_now()
    timer = entry.timer
    if timer.status == TimerStatus.RUNNING:
        idle = detect_idle(now, timer.last_heartbeat_at, idle_threshold_seconds(timer.idle_threshold_minutes))
    else:
        idle = None

    return TimerStatusResponse(
        timer=timer,
        elapsed_seconds=elapsed_seconds(timer, now),
        idle_detection=IdleDetectionInfo(
            is_idle=idle.is_idle if idle else False,
            idle_seconds=idle.idle_seconds if idle else 0,
        ),
    )
