import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from worktimer.core import clock
from worktimer.core.exceptions import IdleWarning, InvalidTransition, TimerUnavailable
from worktimer.models.entries import TimeEntry
from worktimer.models.timer import IdleResolution, TimerAction, TimerActionRequest, TimerState, TimerStatus
from worktimer.services import entry_store, rate_service
from worktimer.services.earnings_service import compute_earnings, round2
from worktimer.services.idle_service import IdleDetection, detect_idle, idle_threshold_seconds

logger = logging.getLogger(__name__)

# (current status, action) -> next status. Pairs not listed are invalid.
TRANSITIONS: Dict[Tuple[TimerStatus, TimerAction], TimerStatus] = {
    (TimerStatus.STOPPED, TimerAction.START): TimerStatus.RUNNING,
    (TimerStatus.RUNNING, TimerAction.PAUSE): TimerStatus.PAUSED,
    (TimerStatus.PAUSED, TimerAction.RESUME): TimerStatus.RUNNING,
    (TimerStatus.RUNNING, TimerAction.STOP): TimerStatus.STOPPED,
    (TimerStatus.PAUSED, TimerAction.STOP): TimerStatus.STOPPED,
    (TimerStatus.RUNNING, TimerAction.HEARTBEAT): TimerStatus.RUNNING,
}

# Actions that must not silently count an idle gap as work
IDLE_CHECKED_ACTIONS = frozenset({TimerAction.PAUSE, TimerAction.STOP, TimerAction.HEARTBEAT})

@dataclass
class TimerOutcome:
    timer: TimerState
    idle: IdleDetection
    idle_resolution: Optional[IdleResolution] = None

@dataclass
class TimerCommit:
    """A validated transition waiting to be written"""
    action: TimerAction
    now: datetime
    outcome: TimerOutcome
    client_timestamp: Optional[str] = None
    entry_fields: Dict[str, Any] = field(default_factory=dict)

@dataclass
class TimerActionResult:
    entry: TimeEntry
    elapsed_seconds: int
    idle_seconds: int = 0

def elapsed_seconds(timer: TimerState, now: datetime) -> int:
    """Accumulated work plus the current running interval, in whole seconds"""
    elapsed = timer.accumulated_seconds
    if timer.status == TimerStatus.RUNNING and timer.started_at:
        elapsed += max(0.0, (now - timer.started_at).total_seconds())
    return math.floor(elapsed)

def display_time(moment: datetime) -> str:
    """HH:MM in server local time, for the informational clock-in/out strings"""
    return moment.astimezone().strftime("%H:%M")

class TimerStateMachine:
    """Transitions for a single entry's timer.

    ``apply`` is pure: it validates the action against TRANSITIONS, consults
    the idle detector and returns the next TimerState without persisting it.
    This is the only code that changes ``accumulated_seconds``.
    """

    def apply(self, timer: TimerState, action: TimerAction, now: datetime,
              idle_resolution: Optional[IdleResolution] = None,
              idle_threshold_minutes: Optional[float] = None) -> TimerOutcome:
        next_status = TRANSITIONS.get((timer.status, action))
        if next_status is None:
            raise InvalidTransition(timer.status.value, action.value)
        if action == TimerAction.START and timer.stopped_at is not None:
            raise InvalidTransition(timer.status.value, action.value, "Timer already stopped and cannot be restarted")

        idle = IdleDetection(False, 0)
        if action in IDLE_CHECKED_ACTIONS and timer.status == TimerStatus.RUNNING:
            idle = detect_idle(now, timer.last_heartbeat_at, idle_threshold_seconds(timer.idle_threshold_minutes))
            if idle.is_idle and idle_resolution is None:
                raise IdleWarning(idle.idle_seconds, timer.last_heartbeat_at)

        if not idle.is_idle:
            idle_resolution = None
        discard_seconds = idle.idle_seconds if idle_resolution == IdleResolution.DISCARD else 0

        if action == TimerAction.START:
            new_timer = timer.model_copy(update={
                "status": next_status,
                "started_at": now,
                "last_heartbeat_at": now,
                "idle_threshold_minutes": idle_threshold_minutes or timer.idle_threshold_minutes,
            })
        elif action == TimerAction.RESUME:
            new_timer = timer.model_copy(update={
                "status": next_status,
                "started_at": now,
                "last_heartbeat_at": now,
            })
        elif action == TimerAction.HEARTBEAT:
            # Discarding on a heartbeat moves the interval start past the gap
            started_at = timer.started_at + timedelta(seconds=discard_seconds)
            new_timer = timer.model_copy(update={
                "started_at": started_at,
                "last_heartbeat_at": now,
            })
        else:
            accumulated = timer.accumulated_seconds
            if timer.status == TimerStatus.RUNNING:
                accumulated += self._running_seconds(timer, now, discard_seconds)
            new_timer = timer.model_copy(update={
                "status": next_status,
                "started_at": None,
                "last_heartbeat_at": None,
                "accumulated_seconds": accumulated,
                "stopped_at": now if action == TimerAction.STOP else None,
            })

        return TimerOutcome(timer=new_timer, idle=idle, idle_resolution=idle_resolution)

    def pause_at_last_heartbeat(self, timer: TimerState) -> TimerState:
        """Pause an abandoned timer, counting work only up to its last heartbeat"""
        if timer.status != TimerStatus.RUNNING:
            raise InvalidTransition(timer.status.value, TimerAction.PAUSE.value)

        accumulated = timer.accumulated_seconds + self._running_seconds(timer, timer.last_heartbeat_at, 0)
        return timer.model_copy(update={
            "status": TimerStatus.PAUSED,
            "started_at": None,
            "last_heartbeat_at": None,
            "accumulated_seconds": accumulated,
        })

    @staticmethod
    def _running_seconds(timer: TimerState, until: datetime, discard_seconds: float) -> float:
        return max(0.0, (until - timer.started_at).total_seconds() - discard_seconds)

state_machine = TimerStateMachine()

def ensure_timer_available(entry: TimeEntry):
    if entry.deleted_at is not None:
        raise TimerUnavailable(entry.entry_id, "entry is deleted")
    if entry.leave and entry.leave.is_leave:
        raise TimerUnavailable(entry.entry_id, "leave entries have no timer")

def plan_timer_action(entry: TimeEntry, request: TimerActionRequest, now: datetime) -> TimerCommit:
    """Validate an action against the entry as read and work out what to write"""
    ensure_timer_available(entry)

    outcome = state_machine.apply(
        entry.timer,
        request.action,
        now,
        idle_resolution=request.idle_resolution,
        idle_threshold_minutes=request.idle_threshold_minutes,
    )

    # Strict mode is enforced before time accrues; stop never fails on the rate
    if request.action in (TimerAction.START, TimerAction.RESUME):
        rate_service.resolve_effective_rate(entry.user_id, entry.date)

    entry_fields: Dict[str, Any] = {}
    if request.action == TimerAction.START:
        entry_fields["time_in"] = display_time(now)
    elif request.action == TimerAction.STOP:
        entry_fields.update(finalize_earnings(entry, outcome.timer, now))

    return TimerCommit(
        action=request.action,
        now=now,
        outcome=outcome,
        client_timestamp=request.timestamp,
        entry_fields=entry_fields,
    )

def finalize_earnings(entry: TimeEntry, timer: TimerState, now: datetime) -> Dict[str, Any]:
    """Hours, rate and earnings for a stopped timer; a degraded rate is recorded, not refused"""
    exact_hours = timer.accumulated_seconds / 3600
    rate = rate_service.resolve_effective_rate(entry.user_id, entry.date, strict=False)
    earnings = compute_earnings(exact_hours, rate.hourly_rate, rate.overtime)

    return {
        "time_out": display_time(now),
        "total_hours": round2(exact_hours),
        "hourly_rate": rate.hourly_rate,
        "total_earnings": earnings,
        "rate_source": rate.source.value,
        "rate_degraded": rate.degraded,
    }

def commit_timer_action(entry: TimeEntry, commit: TimerCommit) -> TimerActionResult:
    """Write a planned transition; raises WriteConflict if the entry moved on"""
    outcome = commit.outcome
    saved = entry_store.save_timer(
        entry,
        outcome.timer,
        action=commit.action.value,
        now=commit.now,
        client_timestamp=commit.client_timestamp,
        idle_seconds=outcome.idle.idle_seconds,
        idle_resolution=outcome.idle_resolution.value if outcome.idle_resolution else None,
        entry_fields=commit.entry_fields,
    )

    logger.info(
        f"Timer {commit.action.value} on entry {entry.entry_id} for user {entry.user_id}: "
        f"{entry.timer.status.value} -> {saved.timer.status.value}, "
        f"accumulated {saved.timer.accumulated_seconds:.0f}s"
    )
    if outcome.idle.is_idle:
        logger.info(
            f"Idle gap of {outcome.idle.idle_seconds}s on entry {entry.entry_id} "
            f"resolved with '{outcome.idle_resolution.value}'"
        )

    return TimerActionResult(
        entry=saved,
        elapsed_seconds=elapsed_seconds(saved.timer, commit.now),
        idle_seconds=outcome.idle.idle_seconds,
    )

def process_timer_action(entry_id: int, user_id: int, request: TimerActionRequest,
                         now: Optional[datetime] = None) -> TimerActionResult:
    """Read, validate, commit. Time is always the server's, never request.timestamp."""
    now = now or clock.server_now()
    entry = entry_store.get_entry(entry_id, user_id)

    try:
        commit = plan_timer_action(entry, request, now)
    except IdleWarning as e:
        logger.warning(f"Idle warning on entry {entry_id} for user {user_id}: {e.idle_seconds}s without heartbeat")
        raise

    return commit_timer_action(entry, commit)
