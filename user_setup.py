#!/usr/bin/env python3
"""
Work Timer User Setup Script
Run this to initialize the database, add users and record their salary history
"""

import sqlite3
import sys
from datetime import date, datetime, timezone

from worktimer.core.config import ServerConfig, RateConfig
from worktimer.core.database import get_db, init_database
from worktimer.core.exceptions import UserNotFound
from worktimer.models.salary import SalaryRecord, SalaryType, WorkingConfig
from worktimer.services import entry_store
from worktimer.services.rate_service import hourly_from_salary

def add_user(name, email, default_hourly_rate=None, user_id=None):
    """Add a new user with the configured working defaults"""
    with get_db() as conn:
        cursor = conn.cursor()
        try:
            cursor.execute('''
                INSERT INTO users (user_id, name, email, default_hourly_rate, hours_per_day, days_per_month)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (user_id, name, email, default_hourly_rate,
                  RateConfig.DEFAULT_HOURS_PER_DAY, RateConfig.DEFAULT_DAYS_PER_MONTH))
            conn.commit()
            user_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            print(f"❌ Error adding user {name}: {e}")
            return None

    print(f"✅ Added user: {name} (ID: {user_id}, {email})")
    if default_hourly_rate is None:
        print("   ⚠️  No salary yet - use option 3 to record one")
    return user_id

def add_salary(user_id, salary_type, amount, effective_from, note=None):
    """Append a salary record; earlier records are left untouched"""
    try:
        profile = entry_store.get_user_profile(user_id)
    except UserNotFound:
        print(f"❌ User {user_id} not found")
        return None

    working = WorkingConfig(**profile.working.model_dump())
    record = SalaryRecord(
        salary_type=SalaryType(salary_type),
        amount=amount,
        effective_from=effective_from,
        working=working,
        note=note,
        created_at=datetime.now(timezone.utc),
    )
    hourly = hourly_from_salary(record.salary_type, record.amount, working)
    saved = entry_store.append_salary_record(user_id, record, hourly)
    print(f"✅ {salary_type} salary {amount:,.2f} effective {effective_from} recorded for {profile.name} ({hourly:.2f}/h)")
    return saved

def list_users():
    """List all users in the database"""
    with get_db() as conn:
        cursor = conn.cursor()
        cursor.execute('''
            SELECT u.user_id, u.name, u.email, u.default_hourly_rate, u.overtime_enabled,
                   COUNT(s.record_id) AS salary_records
            FROM users u
            LEFT JOIN salary_records s ON s.user_id = u.user_id
            GROUP BY u.user_id
            ORDER BY u.user_id
        ''')
        users = cursor.fetchall()

    if not users:
        print("No users found in database")
        return

    print("\nCurrent Users:")
    print("-" * 80)
    print(f"{'ID':<4} {'Name':<20} {'Email':<26} {'Rate/h':<8} {'OT':<6} {'Salaries'}")
    print("-" * 80)

    for user in users:
        rate = f"{user['default_hourly_rate']:.2f}" if user['default_hourly_rate'] else "-"
        overtime = "✅ On" if user['overtime_enabled'] else "Off"
        print(f"{user['user_id']:<4} {user['name']:<20} {user['email']:<26} {rate:<8} {overtime:<6} {user['salary_records']}")

def show_salary_history(user_id):
    records = entry_store.list_salary_records(user_id)
    if not records:
        print(f"No salary history for user {user_id}")
        return

    print(f"\nSalary history for user {user_id}:")
    for record in sorted(records, key=lambda r: r.effective_from):
        hourly = hourly_from_salary(record.salary_type, record.amount, record.working)
        note = f"  ({record.note})" if record.note else ""
        print(f"  {record.effective_from}  {record.salary_type.value:<8} {record.amount:>12,.2f}  {hourly:>8.2f}/h{note}")

def interactive_setup():
    """Interactive user setup"""
    print("Work Timer - User Setup")
    print("=" * 40)

    while True:
        print("\nOptions:")
        print("1. Add new user")
        print("2. List all users")
        print("3. Record salary change")
        print("4. Show salary history")
        print("5. Quick demo setup")
        print("6. Exit")

        choice = input("\nSelect option (1-6): ").strip()

        if choice == '1':
            name = input("Name: ").strip()
            email = input("Email: ").strip()
            if name and email:
                add_user(name, email)
            else:
                print("❌ Name and email are required")

        elif choice == '2':
            list_users()

        elif choice == '3':
            try:
                user_id = int(input("User ID: "))
                salary_type = input("Salary type (monthly/annual): ").strip().lower()
                amount = float(input("Amount: "))
                effective_from = date.fromisoformat(input("Effective from (YYYY-MM-DD): ").strip())
                note = input("Note (optional): ").strip() or None
                add_salary(user_id, salary_type, amount, effective_from, note)
            except ValueError as e:
                print(f"❌ Invalid input: {e}")

        elif choice == '4':
            try:
                show_salary_history(int(input("User ID: ")))
            except ValueError:
                print("❌ Please enter a valid user ID number")

        elif choice == '5':
            quick_setup_demo()

        elif choice == '6':
            break

        else:
            print("❌ Invalid option")

def quick_setup_demo():
    """Add demo users with a salary history each"""
    print("Adding demo users for testing...")

    demo_users = [
        ("Alice Johnson", "alice@example.com", [("monthly", 4000, "2024-01-01"), ("monthly", 4400, "2025-03-01")]),
        ("Carol Davis", "carol@example.com", [("annual", 90000, "2024-07-01")]),
    ]

    for name, email, salaries in demo_users:
        user_id = add_user(name, email)
        if user_id is None:
            continue
        for salary_type, amount, effective_from in salaries:
            add_salary(user_id, salary_type, amount, date.fromisoformat(effective_from))

    print("✅ Demo users added")

if __name__ == "__main__":
    print("Work Timer User Setup")
    print("=" * 30)
    print(f"Database: {ServerConfig.DATABASE_PATH}")

    init_database()

    if len(sys.argv) > 1:
        if sys.argv[1] == "--demo":
            quick_setup_demo()
            list_users()
        elif sys.argv[1] == "--list":
            list_users()
        elif sys.argv[1] == "--history":
            if len(sys.argv) != 3:
                print("Usage: python user_setup.py --history <user_id>")
            else:
                try:
                    show_salary_history(int(sys.argv[2]))
                except ValueError:
                    print("❌ User ID must be a number")
        else:
            print("Usage:")
            print("  python user_setup.py                  # Interactive setup")
            print("  python user_setup.py --demo           # Add demo users")
            print("  python user_setup.py --list           # List current users")
            print("  python user_setup.py --history ID     # Show a user's salary history")
    else:
        interactive_setup()

    print("\n✅ Setup complete! You can now start the work timer server.")
