import pytest

from worktimer.core.config import ServerConfig
from timer_console import TimerConsole, format_elapsed


@pytest.fixture
def console(client, monkeypatch):
    monkeypatch.setattr(ServerConfig, "LOCALHOST_ONLY_ADMIN", False)
    return TimerConsole("http://testserver", user_id=1, admin_secret=ServerConfig.ADMIN_SECRET, session=client)


def test_format_elapsed():
    assert format_elapsed(3725) == "01:02:05"


def test_connection(console):
    assert console.check_connection()


def test_idle_warning_is_resolved_and_resubmitted(console, frozen_clock):
    entry_id = console.create_entry()
    console.send_action(entry_id, "start")
    frozen_clock.advance(minutes=20)

    seen = []

    def keep(warning):
        seen.append(warning["idle_seconds"])
        return "keep"

    data = console.send_action(entry_id, "pause", resolve_idle=keep)

    assert seen == [1200]
    assert data["timer"]["status"] == "paused"
    assert data["timer"]["accumulated_seconds"] == 1200


def test_cancelled_idle_warning_leaves_timer_running(console, frozen_clock):
    entry_id = console.create_entry()
    console.send_action(entry_id, "start")
    frozen_clock.advance(minutes=20)

    assert console.send_action(entry_id, "stop", resolve_idle=lambda warning: None) is None
    assert console.timer_status(entry_id)["timer"]["status"] == "running"


def test_invalid_action_reports_failure(console, frozen_clock):
    entry_id = console.create_entry()
    assert console.send_action(entry_id, "resume") is None


def test_admin_helpers(console, frozen_clock):
    entry_id = console.create_entry()
    console.send_action(entry_id, "start")
    frozen_clock.advance(hours=1)

    assert console.sweep() == [entry_id]
    assert [e["action"] for e in console.show_events(entry_id)] == ["start", "auto_pause"]
    assert "entries" in console.rate_cache_stats()
