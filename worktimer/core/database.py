import sqlite3
from contextlib import contextmanager
import logging
from datetime import datetime, timezone
from worktimer.core.config import ServerConfig, RateConfig

logger = logging.getLogger(__name__)

@contextmanager
def get_db():
    conn = sqlite3.connect(ServerConfig.DATABASE_PATH, timeout=5)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    except Exception as e:
        conn.rollback()
        raise e
    finally:
        conn.close()

def init_database():
    with get_db() as conn:
        cursor = conn.cursor()

        # Users (profile data is owned by the profile service, mirrored here)
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS users (
                user_id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                default_hourly_rate REAL,
                hours_per_day REAL NOT NULL DEFAULT 8,
                days_per_month REAL NOT NULL DEFAULT 22,
                overtime_enabled BOOLEAN NOT NULL DEFAULT FALSE,
                overtime_threshold_hours REAL NOT NULL DEFAULT 8,
                overtime_multiplier REAL NOT NULL DEFAULT 1.5,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        ''')

        # Salary history, append-only
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS salary_records (
                record_id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                salary_type TEXT NOT NULL CHECK(salary_type IN ('annual', 'monthly')),
                amount REAL NOT NULL,
                effective_from DATE NOT NULL,
                hours_per_day REAL NOT NULL,
                days_per_month REAL NOT NULL,
                note TEXT,
                created_at TIMESTAMP NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users (user_id)
            )
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_salary_lookup
            ON salary_records (user_id, effective_from)
        ''')

        cursor.execute('''
            CREATE TRIGGER IF NOT EXISTS salary_records_no_update
            BEFORE UPDATE ON salary_records
            BEGIN
                SELECT RAISE(ABORT, 'salary_records is append-only');
            END
        ''')

        cursor.execute('''
            CREATE TRIGGER IF NOT EXISTS salary_records_no_delete
            BEFORE DELETE ON salary_records
            BEGIN
                SELECT RAISE(ABORT, 'salary_records is append-only');
            END
        ''')

        # Time entries with the embedded timer state
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS time_entries (
                entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                work_date DATE NOT NULL,
                time_in TEXT NOT NULL DEFAULT '',
                time_out TEXT NOT NULL DEFAULT '',
                break_minutes INTEGER NOT NULL DEFAULT 0,
                total_hours REAL NOT NULL DEFAULT 0,
                hourly_rate REAL NOT NULL DEFAULT 0,
                total_earnings REAL NOT NULL DEFAULT 0,
                rate_source TEXT,
                rate_degraded BOOLEAN NOT NULL DEFAULT FALSE,
                work_description TEXT NOT NULL DEFAULT '',
                client TEXT,
                project TEXT,
                is_leave BOOLEAN NOT NULL DEFAULT FALSE,
                leave_type TEXT,
                leave_reason TEXT,
                timer_status TEXT NOT NULL DEFAULT 'stopped'
                    CHECK(timer_status IN ('stopped', 'running', 'paused')),
                timer_started_at TIMESTAMP,
                timer_last_heartbeat_at TIMESTAMP,
                timer_accumulated_seconds REAL NOT NULL DEFAULT 0,
                timer_stopped_at TIMESTAMP,
                idle_threshold_minutes REAL,
                timer_version INTEGER NOT NULL DEFAULT 0,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                deleted_at TIMESTAMP,
                FOREIGN KEY (user_id) REFERENCES users (user_id)
            )
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_entries_lookup
            ON time_entries (user_id, work_date)
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_entries_running
            ON time_entries (timer_status, timer_last_heartbeat_at)
        ''')

        # Audit log of committed timer actions
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS timer_events (
                event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                entry_id INTEGER NOT NULL,
                user_id INTEGER NOT NULL,
                action TEXT NOT NULL,
                from_status TEXT NOT NULL,
                to_status TEXT NOT NULL,
                server_timestamp TIMESTAMP NOT NULL,
                client_timestamp TEXT,
                idle_seconds INTEGER NOT NULL DEFAULT 0,
                idle_resolution TEXT,
                accumulated_seconds REAL NOT NULL,
                FOREIGN KEY (entry_id) REFERENCES time_entries (entry_id)
            )
        ''')

        cursor.execute('''
            CREATE INDEX IF NOT EXISTS idx_timer_events_lookup
            ON timer_events (entry_id, server_timestamp)
        ''')

        conn.commit()
        logger.info("Database initialized successfully")

def seed_test_data():
    """Add test users and salary history for development/testing"""
    with get_db() as conn:
        cursor = conn.cursor()

        cursor.execute("SELECT COUNT(*) FROM users")
        count = cursor.fetchone()[0]

        if count > 0:
            logger.info(f"Database already has {count} users")
            return

        test_users = [
            (1, "John Doe", "john@example.com", None, RateConfig.DEFAULT_HOURS_PER_DAY, 25, False),
            (2, "Jane Smith", "jane@example.com", 20.0, RateConfig.DEFAULT_HOURS_PER_DAY, 22, True),
            (3, "Bob Johnson", "bob@example.com", 15.0, RateConfig.DEFAULT_HOURS_PER_DAY, 22, False),
        ]

        cursor.executemany('''
            INSERT INTO users (user_id, name, email, default_hourly_rate, hours_per_day, days_per_month, overtime_enabled)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        ''', test_users)

        now = datetime.now(timezone.utc).isoformat()
        test_salaries = [
            (1, "monthly", 5000, "2024-01-01", 8, 25, "Starting salary", now),
            (1, "monthly", 5500, "2025-01-01", 8, 25, "Annual raise", now),
            (2, "annual", 120000, "2024-06-01", 8, 22, None, now),
        ]

        cursor.executemany('''
            INSERT INTO salary_records
            (user_id, salary_type, amount, effective_from, hours_per_day, days_per_month, note, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ''', test_salaries)

        conn.commit()
        logger.info(f"Added {len(test_users)} test users to database")
