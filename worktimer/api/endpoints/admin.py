import logging
from typing import List, Optional

from fastapi import APIRouter, Depends

from worktimer.core.security import admin_auth
from worktimer.models.timer import SweepResult, TimerEventRecord
from worktimer.services import entry_store
from worktimer.services.rate_service import get_rate_cache
from worktimer.services.sweep_service import auto_pause_stale_timers

router = APIRouter()
logger = logging.getLogger(__name__)

@router.post("/timers/sweep", response_model=SweepResult, dependencies=[Depends(admin_auth)])
async def sweep_stale_timers(grace_minutes: Optional[float] = None):
    """Auto-pause running timers whose heartbeats stopped arriving"""
    return auto_pause_stale_timers(grace_minutes=grace_minutes)

@router.get("/rate-cache", dependencies=[Depends(admin_auth)])
async def get_rate_cache_stats():
    """Rate cache occupancy and hit counters for this instance"""
    return get_rate_cache().stats()

@router.delete("/rate-cache", dependencies=[Depends(admin_auth)])
async def clear_rate_cache():
    get_rate_cache().clear()
    logger.info("Rate cache cleared by admin")
    return {"success": True}

@router.get("/timer-events/{entry_id}", response_model=List[TimerEventRecord], dependencies=[Depends(admin_auth)])
async def get_timer_events(entry_id: int):
    """Audit trail of committed timer actions, client timestamps included"""
    return entry_store.list_timer_events(entry_id)
