# Persistence for time entries, their timers and the salary history they are paid from
import logging
import sqlite3
from datetime import date, datetime
from typing import Dict, List, Optional, Any

from worktimer.core.database import get_db
from worktimer.core.exceptions import EntryNotFound, UserNotFound, WriteConflict
from worktimer.models.entries import LeaveEntry, TimeEntry
from worktimer.models.salary import (
    OvertimeConfig, OvertimeUpdate, RateSource, SalaryRecord, SalaryType, UserProfile, WorkingConfig,
)
from worktimer.models.timer import TimerEventRecord, TimerState, TimerStatus
from worktimer.services.earnings_service import time_range_minutes

logger = logging.getLogger(__name__)

# Entry columns a timer commit may rewrite alongside the timer itself
TIMER_ENTRY_FIELDS = (
    "time_in", "time_out", "total_hours", "hourly_rate", "total_earnings", "rate_source", "rate_degraded",
)

# Entry columns an edit may rewrite; the timer_* columns belong to the state machine
EDITABLE_ENTRY_FIELDS = (
    "work_date", "time_in", "time_out", "break_minutes", "total_hours", "hourly_rate", "total_earnings",
    "rate_source", "rate_degraded", "work_description", "client", "project", "is_leave", "leave_type",
    "leave_reason",
)

def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)

def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None

def row_to_timer(row: sqlite3.Row) -> TimerState:
    return TimerState(
        status=TimerStatus(row['timer_status']),
        started_at=_parse_ts(row['timer_started_at']),
        last_heartbeat_at=_parse_ts(row['timer_last_heartbeat_at']),
        accumulated_seconds=row['timer_accumulated_seconds'],
        stopped_at=_parse_ts(row['timer_stopped_at']),
        idle_threshold_minutes=row['idle_threshold_minutes'],
        version=row['timer_version'],
    )

def row_to_entry(row: sqlite3.Row) -> TimeEntry:
    leave = None
    if row['is_leave']:
        leave = LeaveEntry(is_leave=True, leave_type=row['leave_type'], leave_reason=row['leave_reason'])

    return TimeEntry(
        entry_id=row['entry_id'],
        user_id=row['user_id'],
        date=date.fromisoformat(row['work_date']),
        time_in=row['time_in'],
        time_out=row['time_out'],
        break_minutes=row['break_minutes'],
        total_hours=row['total_hours'],
        hourly_rate=row['hourly_rate'],
        total_earnings=row['total_earnings'],
        rate_source=RateSource(row['rate_source']) if row['rate_source'] else None,
        rate_degraded=bool(row['rate_degraded']),
        work_description=row['work_description'],
        client=row['client'],
        project=row['project'],
        leave=leave,
        timer=row_to_timer(row),
        created_at=_parse_ts(row['created_at']),
        updated_at=_parse_ts(row['updated_at']),
        deleted_at=_parse_ts(row['deleted_at']),
    )

# Users and salary history

def get_user_profile(user_id: int) -> UserProfile:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM users WHERE user_id = ?", (user_id,))
        user = cursor.fetchone()

    if not user:
        raise UserNotFound(user_id)

    return UserProfile(
        user_id=user['user_id'],
        name=user['name'],
        email=user['email'],
        default_hourly_rate=user['default_hourly_rate'],
        working=WorkingConfig(hours_per_day=user['hours_per_day'], days_per_month=user['days_per_month']),
        overtime=OvertimeConfig(
            enabled=bool(user['overtime_enabled']),
            threshold_hours_per_day=user['overtime_threshold_hours'],
            multiplier=user['overtime_multiplier'],
        ),
    )

def list_salary_records(user_id: int) -> List[SalaryRecord]:
    """Salary history in insertion order"""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT * FROM salary_records
            WHERE user_id = ?
            ORDER BY record_id ASC
        ''', (user_id,))
        rows = cursor.fetchall()

    return [
        SalaryRecord(
            record_id=row['record_id'],
            salary_type=SalaryType(row['salary_type']),
            amount=row['amount'],
            effective_from=date.fromisoformat(row['effective_from']),
            working=WorkingConfig(hours_per_day=row['hours_per_day'], days_per_month=row['days_per_month']),
            note=row['note'],
            created_at=_parse_ts(row['created_at']),
        )
        for row in rows
    ]

def append_salary_record(user_id: int, record: SalaryRecord, default_hourly_rate: float) -> SalaryRecord:
    """Append to the salary history and refresh the profile's default rate in one transaction"""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO salary_records
            (user_id, salary_type, amount, effective_from, hours_per_day, days_per_month, note, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            user_id, record.salary_type.value, record.amount, record.effective_from.isoformat(),
            record.working.hours_per_day, record.working.days_per_month, record.note,
            _format_ts(record.created_at),
        ))
        record_id = cursor.lastrowid

        cursor.execute(
            "UPDATE users SET default_hourly_rate = ? WHERE user_id = ?",
            (default_hourly_rate, user_id)
        )
        conn.commit()

    logger.info(f"Salary record {record_id} appended for user {user_id}, effective {record.effective_from}")
    return record.model_copy(update={"record_id": record_id})

def update_overtime(user_id: int, overtime: OvertimeUpdate) -> OvertimeConfig:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            UPDATE users
            SET overtime_enabled = ?, overtime_threshold_hours = ?, overtime_multiplier = ?
            WHERE user_id = ?
        ''', (overtime.enabled, overtime.threshold_hours_per_day, overtime.multiplier, user_id))
        if cursor.rowcount == 0:
            raise UserNotFound(user_id)
        conn.commit()

    return OvertimeConfig(**overtime.model_dump())

# Time entries

def create_entry(user_id: int, work_date: date, now: datetime, *, time_in: str = "", time_out: str = "",
                 break_minutes: int = 0, total_hours: float = 0.0, hourly_rate: float = 0.0,
                 total_earnings: float = 0.0, rate_source: Optional[RateSource] = None,
                 rate_degraded: bool = False, work_description: str = "", client: Optional[str] = None,
                 project: Optional[str] = None, leave: Optional[LeaveEntry] = None) -> TimeEntry:
    is_leave = bool(leave and leave.is_leave)
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            INSERT INTO time_entries
            (user_id, work_date, time_in, time_out, break_minutes, total_hours, hourly_rate,
             total_earnings, rate_source, rate_degraded, work_description, client, project,
             is_leave, leave_type, leave_reason, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            user_id, work_date.isoformat(), time_in, time_out, break_minutes, total_hours, hourly_rate,
            total_earnings, rate_source.value if rate_source else None, rate_degraded,
            work_description, client, project, is_leave,
            leave.leave_type.value if is_leave and leave.leave_type else None,
            leave.leave_reason if is_leave else None,
            _format_ts(now), _format_ts(now),
        ))
        entry_id = cursor.lastrowid
        conn.commit()

    logger.info(f"Time entry {entry_id} created for user {user_id} on {work_date}")
    return get_entry(entry_id, user_id)

def get_entry(entry_id: int, user_id: int) -> TimeEntry:
    """Entry owned by user_id; someone else's entry is reported as missing"""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(
            "SELECT * FROM time_entries WHERE entry_id = ? AND user_id = ?",
            (entry_id, user_id)
        )
        row = cursor.fetchone()

    if not row:
        raise EntryNotFound(entry_id)
    return row_to_entry(row)

def list_entries(user_id: int, work_date: Optional[date] = None, show_deleted: bool = False,
                 limit: int = 50, cursor_id: Optional[int] = None) -> List[TimeEntry]:
    """Newest first, keyset paginated on entry_id"""
    query = "SELECT * FROM time_entries WHERE user_id = ?"
    params: List[Any] = [user_id]

    if not show_deleted:
        query += " AND deleted_at IS NULL"
    if work_date:
        query += " AND work_date = ?"
        params.append(work_date.isoformat())
    if cursor_id:
        query += " AND entry_id < ?"
        params.append(cursor_id)

    query += " ORDER BY entry_id DESC LIMIT ?"
    params.append(limit)

    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(query, params)
        return [row_to_entry(row) for row in cursor.fetchall()]

def find_overlapping_entry(user_id: int, work_date: date, time_in: str, time_out: str,
                           exclude_entry_id: Optional[int] = None) -> Optional[TimeEntry]:
    """Active, non-leave entry on the same day whose time range overlaps.

    Ranges are compared in minutes, so overnight entries (22:00-02:00) are
    treated as running past midnight instead of as text.
    """
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT * FROM time_entries
            WHERE user_id = ? AND work_date = ? AND deleted_at IS NULL AND is_leave = FALSE
            AND time_in != '' AND time_out != ''
            ORDER BY entry_id ASC
        ''', (user_id, work_date.isoformat()))
        rows = cursor.fetchall()

    start, end = time_range_minutes(time_in, time_out)
    for row in rows:
        if row['entry_id'] == exclude_entry_id:
            continue
        other_start, other_end = time_range_minutes(row['time_in'], row['time_out'])
        if start < other_end and other_start < end:
            return row_to_entry(row)
    return None

def update_entry(entry: TimeEntry, now: datetime, fields: Dict[str, Any]) -> TimeEntry:
    """Rewrite an entry's editable fields while its timer is stopped.

    The write only lands if the timer is still stopped at the version that
    was read; otherwise WriteConflict. Timer columns are never touched.
    """
    unknown = set(fields) - set(EDITABLE_ENTRY_FIELDS)
    if unknown:
        raise ValueError(f"Entry edits cannot write {sorted(unknown)}")

    columns = [column for column in EDITABLE_ENTRY_FIELDS if column in fields]
    assignments = [f"{column} = ?" for column in columns] + ["updated_at = ?"]
    params: List[Any] = [fields[column] for column in columns] + [_format_ts(now)]
    params.extend([entry.entry_id, entry.user_id, entry.timer.version])

    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(f'''
            UPDATE time_entries SET {", ".join(assignments)}
            WHERE entry_id = ? AND user_id = ? AND deleted_at IS NULL
            AND timer_status = 'stopped' AND timer_version = ?
        ''', params)

        if cursor.rowcount == 0:
            conn.rollback()
            logger.warning(f"Edit of entry {entry.entry_id} lost a race with its timer")
            raise WriteConflict(entry.entry_id, entry.timer.version)
        conn.commit()

    logger.info(f"Time entry {entry.entry_id} updated by user {entry.user_id}")
    return get_entry(entry.entry_id, entry.user_id)

def soft_delete_entry(entry_id: int, user_id: int, now: datetime) -> None:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            UPDATE time_entries SET deleted_at = ?, updated_at = ?
            WHERE entry_id = ? AND user_id = ? AND deleted_at IS NULL
        ''', (_format_ts(now), _format_ts(now), entry_id, user_id))
        if cursor.rowcount == 0:
            raise EntryNotFound(entry_id)
        conn.commit()

    logger.info(f"Time entry {entry_id} deleted by user {user_id}")

# Timer persistence

def save_timer(entry: TimeEntry, timer: TimerState, *, action: str, now: datetime,
               client_timestamp: Optional[str] = None, idle_seconds: int = 0,
               idle_resolution: Optional[str] = None,
               entry_fields: Optional[Dict[str, Any]] = None) -> TimeEntry:
    """Commit a timer transition if nobody else has since ``entry.timer.version``.

    The timer columns, any derived entry fields and the audit event are
    written in one transaction. A stale version raises WriteConflict and
    writes nothing.
    """
    expected_version = entry.timer.version
    entry_fields = entry_fields or {}
    unknown = set(entry_fields) - set(TIMER_ENTRY_FIELDS)
    if unknown:
        raise ValueError(f"Timer commits cannot write {sorted(unknown)}")

    assignments = [
        "timer_status = ?", "timer_started_at = ?", "timer_last_heartbeat_at = ?",
        "timer_accumulated_seconds = ?", "timer_stopped_at = ?", "idle_threshold_minutes = ?",
        "timer_version = timer_version + 1", "updated_at = ?",
    ]
    params: List[Any] = [
        timer.status.value, _format_ts(timer.started_at), _format_ts(timer.last_heartbeat_at),
        timer.accumulated_seconds, _format_ts(timer.stopped_at), timer.idle_threshold_minutes,
        _format_ts(now),
    ]
    for column in TIMER_ENTRY_FIELDS:
        if column in entry_fields:
            assignments.append(f"{column} = ?")
            params.append(entry_fields[column])

    params.extend([entry.entry_id, entry.user_id, expected_version])

    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute(f'''
            UPDATE time_entries SET {", ".join(assignments)}
            WHERE entry_id = ? AND user_id = ? AND timer_version = ?
        ''', params)

        if cursor.rowcount == 0:
            conn.rollback()
            logger.warning(f"Write conflict on entry {entry.entry_id} (expected timer version {expected_version})")
            raise WriteConflict(entry.entry_id, expected_version)

        cursor.execute('''
            INSERT INTO timer_events
            (entry_id, user_id, action, from_status, to_status, server_timestamp, client_timestamp,
             idle_seconds, idle_resolution, accumulated_seconds)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ''', (
            entry.entry_id, entry.user_id, action, entry.timer.status.value, timer.status.value,
            _format_ts(now), client_timestamp, idle_seconds, idle_resolution, timer.accumulated_seconds,
        ))
        conn.commit()

    return get_entry(entry.entry_id, entry.user_id)

def list_stale_running_entries(heartbeat_before: datetime) -> List[TimeEntry]:
    """Running timers whose last heartbeat is older than the cutoff"""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT * FROM time_entries
            WHERE timer_status = 'running' AND deleted_at IS NULL
            AND timer_last_heartbeat_at IS NOT NULL
        ''')
        rows = cursor.fetchall()

    # Timestamps are compared as datetimes; stored offsets may differ
    entries = [row_to_entry(row) for row in rows]
    return [e for e in entries if e.timer.last_heartbeat_at < heartbeat_before]

def list_timer_events(entry_id: int) -> List[TimerEventRecord]:
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT * FROM timer_events
            WHERE entry_id = ?
            ORDER BY event_id ASC
        ''', (entry_id,))
        rows = cursor.fetchall()

    return [
        TimerEventRecord(
            event_id=row['event_id'],
            entry_id=row['entry_id'],
            action=row['action'],
            from_status=row['from_status'],
            to_status=row['to_status'],
            server_timestamp=_parse_ts(row['server_timestamp']),
            client_timestamp=row['client_timestamp'],
            idle_seconds=row['idle_seconds'],
            idle_resolution=row['idle_resolution'],
            accumulated_seconds=row['accumulated_seconds'],
        )
        for row in rows
    ]
