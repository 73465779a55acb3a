#!/usr/bin/env python3
"""
Interactive Work Timer Console
Drives timers over the HTTP API, walks through idle warnings and runs the admin sweep
"""

import os
import sys
from datetime import date
from typing import Any, Callable, Dict, List, Optional

import requests
import urllib3

# Suppress SSL warnings for self-signed certificates
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

IdleResolver = Callable[[Dict[str, Any]], Optional[str]]

def prompt_idle_resolution(warning: Dict[str, Any]) -> Optional[str]:
    """Ask what to do with an idle gap; None leaves the timer untouched"""
    minutes = warning.get('idle_seconds', 0) // 60
    print(f"\n💤 {warning.get('message', 'Idle time detected')}")
    print(f"   Idle for {minutes} minutes (last heartbeat {warning.get('last_heartbeat_at')})")
    print("   d) discard the idle time   k) keep it as work   anything else) cancel")
    choice = input("Choice: ").strip().lower()
    if choice == 'd':
        return 'discard'
    if choice == 'k':
        return 'keep'
    return None

def format_elapsed(seconds: int) -> str:
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"

class TimerConsole:
    def __init__(self, base_url: str, user_id: Optional[int] = None, admin_secret: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        if session is None:
            self.session.verify = False
        self.headers: Dict[str, str] = {}
        if user_id is not None:
            self.headers['X-User-Id'] = str(user_id)
        if admin_secret:
            self.headers['X-Admin-Secret'] = admin_secret

    def _get(self, path: str, **kwargs):
        return self.session.get(f"{self.base_url}{path}", headers=self.headers, **kwargs)

    def _post(self, path: str, **kwargs):
        return self.session.post(f"{self.base_url}{path}", headers=self.headers, **kwargs)

    def check_connection(self) -> bool:
        """Test connection to the server"""
        try:
            response = self._get("/health")
        except requests.RequestException as e:
            print(f"❌ Connection failed: {e}")
            print("💡 Make sure the server is running and the URL/port are correct")
            return False

        if response.status_code != 200:
            print(f"❌ Server responded with status {response.status_code}")
            return False

        data = response.json()
        print(f"✅ Server connection successful! {data.get('running_timers', 0)} timers running")
        return True

    def create_entry(self, work_date: Optional[date] = None, description: str = "") -> Optional[int]:
        """Create an empty entry to run a timer on"""
        work_date = work_date or date.today()
        response = self._post("/time-entries", json={
            'date': work_date.isoformat(),
            'work_description': description,
        })
        if response.status_code != 200:
            print(f"❌ Could not create entry: {response.status_code} {response.text}")
            return None

        entry_id = response.json()['entry_id']
        print(f"🆕 Created entry {entry_id} for {work_date}")
        return entry_id

    def timer_status(self, entry_id: int) -> Optional[Dict[str, Any]]:
        response = self._get(f"/time-entries/{entry_id}/timer")
        if response.status_code != 200:
            print(f"❌ Could not read timer on entry {entry_id}: {response.status_code}")
            return None

        data = response.json()
        timer = data['timer']
        print(f"⏱️  Entry {entry_id}: {timer['status']} | elapsed {format_elapsed(data['elapsed_seconds'])}")
        if data['idle_detection']['is_idle']:
            print(f"   💤 idle for {data['idle_detection']['idle_seconds'] // 60} minutes")
        return data

    def send_action(self, entry_id: int, action: str, idle_resolution: Optional[str] = None,
                    resolve_idle: Optional[IdleResolver] = None) -> Optional[Dict[str, Any]]:
        """POST a timer action; on an idle warning ask resolve_idle and resubmit once"""
        payload: Dict[str, Any] = {'action': action}
        if idle_resolution:
            payload['idle_resolution'] = idle_resolution

        response = self._post(f"/time-entries/{entry_id}/timer", json=payload)

        if response.status_code == 200:
            data = response.json()
            print(f"✅ {action}: {data['timer']['status']} | elapsed {format_elapsed(data['elapsed_seconds'])}")
            if data.get('total_earnings') is not None:
                print(f"💰 {data['total_hours']}h at {data['hourly_rate']}/h = {data['total_earnings']}")
            return data

        if response.status_code == 409:
            body = response.json()
            warning = body.get('idle_warning')
            if warning:
                if idle_resolution or resolve_idle is None:
                    print(f"💤 Idle warning on entry {entry_id}, action not applied")
                    return None
                resolution = resolve_idle(warning)
                if resolution is None:
                    print("↩️  Cancelled, timer left as it was")
                    return None
                return self.send_action(entry_id, action, idle_resolution=resolution)
            if body.get('conflict'):
                print("⚠️  Timer changed on another device, refresh and try again")
                return None

        print(f"❌ {action} failed ({response.status_code}): {response.json().get('detail', response.text)}")
        return None

    def sweep(self, grace_minutes: Optional[float] = None) -> List[int]:
        """Admin: auto-pause abandoned timers"""
        params = {'grace_minutes': grace_minutes} if grace_minutes is not None else {}
        response = self._post("/admin/timers/sweep", params=params)
        if response.status_code == 403:
            print("❌ Authentication failed - check your admin secret")
            return []
        if response.status_code != 200:
            print(f"❌ Sweep failed: {response.status_code}")
            return []

        data = response.json()
        print(f"🧹 Paused {len(data['paused_entry_ids'])} timers, {len(data['conflicts'])} conflicts")
        return data['paused_entry_ids']

    def rate_cache_stats(self) -> Dict[str, Any]:
        response = self._get("/admin/rate-cache")
        if response.status_code != 200:
            print(f"❌ Could not read rate cache stats: {response.status_code}")
            return {}
        stats = response.json()
        print(f"📦 Rate cache: {stats['entries']}/{stats['max_entries']} entries, "
              f"{stats['hits']} hits, {stats['misses']} misses")
        return stats

    def show_events(self, entry_id: int) -> List[Dict[str, Any]]:
        """Admin: audit trail of an entry's timer"""
        response = self._get(f"/admin/timer-events/{entry_id}")
        if response.status_code != 200:
            print(f"❌ Could not read events: {response.status_code}")
            return []

        events = response.json()
        print(f"\n📚 Timer events for entry {entry_id}:")
        print("=" * 60)
        for event in events:
            line = f"• {event['server_timestamp']}: {event['action']} {event['from_status']} -> {event['to_status']}"
            if event['idle_seconds']:
                line += f" (idle {event['idle_seconds']}s, {event['idle_resolution']})"
            print(line)
        return events

def interactive_session(console: TimerConsole):
    """Simple menu loop around one console"""
    entry_id: Optional[int] = None

    while True:
        print("\n" + "=" * 40)
        print(f"Current entry: {entry_id or '-'}")
        print("1) New entry   2) Use entry id   3) Status")
        print("4) Start  5) Pause  6) Resume  7) Stop  8) Heartbeat")
        print("9) Sweep (admin)  10) Rate cache (admin)  11) Events (admin)  0) Exit")
        choice = input("Choice: ").strip()

        if choice == '0':
            break
        elif choice == '1':
            entry_id = console.create_entry(description=input("Description (optional): ").strip())
        elif choice == '2':
            try:
                entry_id = int(input("Entry id: ").strip())
            except ValueError:
                print("❌ Entry id must be a number")
        elif choice == '9':
            console.sweep()
        elif choice == '10':
            console.rate_cache_stats()
        elif entry_id is None:
            print("❌ Pick an entry first")
        elif choice == '3':
            console.timer_status(entry_id)
        elif choice in ('4', '5', '6', '7', '8'):
            action = {'4': 'start', '5': 'pause', '6': 'resume', '7': 'stop', '8': 'heartbeat'}[choice]
            console.send_action(entry_id, action, resolve_idle=prompt_idle_resolution)
        elif choice == '11':
            console.show_events(entry_id)
        else:
            print("❌ Unknown choice")

def main():
    print("⏱️  Work Timer Console")
    print("=" * 40)

    base_url = input("Server URL [https://localhost:8000]: ").strip() or "https://localhost:8000"
    user_id = input("User id: ").strip()
    admin_secret = os.getenv("WORKTIMER_ADMIN_SECRET") or input("Admin secret (blank to skip): ").strip()

    console = TimerConsole(base_url, user_id=int(user_id) if user_id else None, admin_secret=admin_secret or None)
    if not console.check_connection():
        sys.exit(1)

    try:
        interactive_session(console)
    except KeyboardInterrupt:
        print("\n👋 Bye")

if __name__ == "__main__":
    main()
