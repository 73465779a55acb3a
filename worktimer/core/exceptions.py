"""Typed errors raised by the timer and rate services.

Endpoints translate these into HTTP responses; services never build
HTTP responses themselves. Every error carries a machine readable ``code``.
"""
from datetime import datetime
from typing import Optional


class WorkTimerError(Exception):
    """Base class for all domain errors"""

    code = "WORKTIMER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UserNotFound(WorkTimerError):
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class EntryNotFound(WorkTimerError):
    """Entry does not exist or is owned by someone else"""

    code = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: int):
        super().__init__("Time entry not found")
        self.entry_id = entry_id


class InvalidTransition(WorkTimerError):
    code = "INVALID_TRANSITION"

    def __init__(self, status: str, action: str, message: Optional[str] = None):
        super().__init__(message or f"Cannot {action} a timer that is {status}")
        self.status = status
        self.action = action


class TimerUnavailable(WorkTimerError):
    """Timer actions are not allowed on deleted or leave entries"""

    code = "TIMER_UNAVAILABLE"

    def __init__(self, entry_id: int, reason: str):
        super().__init__(f"Cannot operate timer on this entry: {reason}")
        self.entry_id = entry_id
        self.reason = reason


class IdleWarning(WorkTimerError):
    """Recoverable: the caller must resubmit with an explicit idle resolution"""

    code = "IDLE_WARNING"

    def __init__(self, idle_seconds: int, last_heartbeat_at: Optional[datetime]):
        minutes = idle_seconds // 60
        super().__init__(
            f"No activity detected for {minutes} minutes. "
            "Resubmit with idle_resolution 'discard' or 'keep' to continue."
        )
        self.idle_seconds = idle_seconds
        self.last_heartbeat_at = last_heartbeat_at


class WriteConflict(WorkTimerError):
    """Another writer changed the timer since it was read"""

    code = "WRITE_CONFLICT"

    def __init__(self, entry_id: int, expected_version: int):
        super().__init__("Timer was modified concurrently. Refresh and retry.")
        self.entry_id = entry_id
        self.expected_version = expected_version


class DegradedRateComputation(WorkTimerError):
    """No usable salary data for a date; only raised in strict mode"""

    code = "DEGRADED_RATE_COMPUTATION"

    def __init__(self, user_id: int, work_date: str, reason: str):
        super().__init__(f"Hourly rate for {work_date} could not be computed reliably: {reason}")
        self.user_id = user_id
        self.work_date = work_date
        self.reason = reason
