import logging
from datetime import datetime, timedelta
from typing import Optional

from worktimer.core import clock
from worktimer.core.config import TimerConfig
from worktimer.core.exceptions import WriteConflict
from worktimer.models.timer import SweepResult
from worktimer.services import entry_store
from worktimer.services.timer_service import state_machine

logger = logging.getLogger(__name__)

def auto_pause_stale_timers(now: Optional[datetime] = None,
                            grace_minutes: Optional[float] = None) -> SweepResult:
    """Pause running timers whose client stopped sending heartbeats.

    Work is counted up to the last heartbeat only. Entries that change under
    the sweep are left alone and reported as conflicts.
    """
    now = now or clock.server_now()
    grace_minutes = grace_minutes if grace_minutes is not None else TimerConfig.AUTO_PAUSE_GRACE_MINUTES
    cutoff = now - timedelta(minutes=grace_minutes)

    paused = []
    conflicts = []
    for entry in entry_store.list_stale_running_entries(cutoff):
        idle_seconds = int((now - entry.timer.last_heartbeat_at).total_seconds())
        timer = state_machine.pause_at_last_heartbeat(entry.timer)
        try:
            entry_store.save_timer(
                entry,
                timer,
                action="auto_pause",
                now=now,
                idle_seconds=idle_seconds,
                idle_resolution="discard",
            )
        except WriteConflict:
            conflicts.append(entry.entry_id)
            continue

        paused.append(entry.entry_id)
        logger.info(f"Auto-paused entry {entry.entry_id} for user {entry.user_id} after {idle_seconds}s without heartbeat")

    if paused or conflicts:
        logger.info(f"Stale timer sweep: {len(paused)} paused, {len(conflicts)} conflicts")

    return SweepResult(checked_at=now, grace_minutes=grace_minutes, paused_entry_ids=paused, conflicts=conflicts)
