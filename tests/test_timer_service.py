from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from threading import Barrier

import pytest

from conftest import START
from worktimer.core.exceptions import EntryNotFound, IdleWarning, InvalidTransition, TimerUnavailable, WriteConflict
from worktimer.models.entries import LeaveEntry, LeaveType
from worktimer.models.timer import IdleResolution, TimerAction, TimerActionRequest, TimerState, TimerStatus
from worktimer.services import entry_store
from worktimer.services.timer_service import (
    commit_timer_action, elapsed_seconds, plan_timer_action, process_timer_action, state_machine,
)


def at(minutes):
    return START + timedelta(minutes=minutes)


def act(entry, action, minutes, resolution=None, **kwargs):
    request = TimerActionRequest(action=action, idle_resolution=resolution, **kwargs)
    return process_timer_action(entry.entry_id, entry.user_id, request, now=at(minutes))


class TestStateMachine:
    def test_start_sets_interval_and_heartbeat(self):
        outcome = state_machine.apply(TimerState(), TimerAction.START, at(0))
        assert outcome.timer.status == TimerStatus.RUNNING
        assert outcome.timer.started_at == at(0)
        assert outcome.timer.last_heartbeat_at == at(0)
        assert outcome.timer.accumulated_seconds == 0

    @pytest.mark.parametrize("status, action", [
        (TimerStatus.STOPPED, TimerAction.PAUSE),
        (TimerStatus.STOPPED, TimerAction.RESUME),
        (TimerStatus.STOPPED, TimerAction.STOP),
        (TimerStatus.STOPPED, TimerAction.HEARTBEAT),
        (TimerStatus.RUNNING, TimerAction.START),
        (TimerStatus.RUNNING, TimerAction.RESUME),
        (TimerStatus.PAUSED, TimerAction.PAUSE),
        (TimerStatus.PAUSED, TimerAction.HEARTBEAT),
    ])
    def test_invalid_transitions(self, status, action):
        timer = TimerState(status=status, started_at=at(0) if status == TimerStatus.RUNNING else None,
                           last_heartbeat_at=at(0) if status == TimerStatus.RUNNING else None)
        with pytest.raises(InvalidTransition):
            state_machine.apply(timer, action, at(1))

    def test_stopped_timer_cannot_restart(self):
        finished = TimerState(status=TimerStatus.STOPPED, accumulated_seconds=60, stopped_at=at(1))
        with pytest.raises(InvalidTransition):
            state_machine.apply(finished, TimerAction.START, at(2))

    def test_heartbeat_does_not_accumulate(self):
        running = state_machine.apply(TimerState(), TimerAction.START, at(0)).timer
        beat = state_machine.apply(running, TimerAction.HEARTBEAT, at(5)).timer
        assert beat.accumulated_seconds == 0
        assert beat.started_at == at(0)
        assert beat.last_heartbeat_at == at(5)

    def test_idle_warning_without_resolution(self):
        running = state_machine.apply(TimerState(), TimerAction.START, at(0)).timer
        with pytest.raises(IdleWarning) as excinfo:
            state_machine.apply(running, TimerAction.PAUSE, at(15))
        assert excinfo.value.idle_seconds == 900
        assert excinfo.value.last_heartbeat_at == at(0)

    def test_resolution_ignored_when_not_idle(self):
        running = state_machine.apply(TimerState(), TimerAction.START, at(0)).timer
        outcome = state_machine.apply(running, TimerAction.PAUSE, at(5), idle_resolution=IdleResolution.DISCARD)
        assert outcome.timer.accumulated_seconds == 300
        assert outcome.idle_resolution is None

    def test_per_entry_idle_threshold(self):
        running = state_machine.apply(TimerState(), TimerAction.START, at(0), idle_threshold_minutes=30).timer
        outcome = state_machine.apply(running, TimerAction.PAUSE, at(20))
        assert outcome.timer.accumulated_seconds == 1200

    def test_pause_at_last_heartbeat(self):
        running = state_machine.apply(TimerState(), TimerAction.START, at(0)).timer
        running = state_machine.apply(running, TimerAction.HEARTBEAT, at(7)).timer
        paused = state_machine.pause_at_last_heartbeat(running)
        assert paused.status == TimerStatus.PAUSED
        assert paused.accumulated_seconds == 420

    def test_elapsed_includes_running_interval(self):
        running = TimerState(status=TimerStatus.RUNNING, started_at=at(0), last_heartbeat_at=at(0),
                             accumulated_seconds=100.5)
        assert elapsed_seconds(running, at(1)) == 160
        assert elapsed_seconds(TimerState(status=TimerStatus.PAUSED, accumulated_seconds=59.9), at(9)) == 59


class TestProcessTimerAction:
    def test_accumulated_is_sum_of_running_intervals(self, make_entry):
        entry = make_entry()
        act(entry, TimerAction.START, 0)
        act(entry, TimerAction.HEARTBEAT, 5)
        act(entry, TimerAction.HEARTBEAT, 10)
        act(entry, TimerAction.PAUSE, 12)
        act(entry, TimerAction.RESUME, 20)
        act(entry, TimerAction.HEARTBEAT, 25)
        result = act(entry, TimerAction.STOP, 30)

        assert result.entry.timer.status == TimerStatus.STOPPED
        assert result.entry.timer.accumulated_seconds == 12 * 60 + 10 * 60
        assert result.elapsed_seconds == 1320
        assert result.entry.timer.stopped_at == at(30)

    def test_every_commit_bumps_version_and_is_audited(self, make_entry):
        entry = make_entry()
        act(entry, TimerAction.START, 0, timestamp="2000-01-01T00:00:00Z")
        result = act(entry, TimerAction.PAUSE, 5)

        assert result.entry.timer.version == 2
        events = entry_store.list_timer_events(entry.entry_id)
        assert [e.action for e in events] == ["start", "pause"]
        assert events[0].client_timestamp == "2000-01-01T00:00:00Z"
        assert events[0].server_timestamp == at(0)

    def test_client_timestamp_does_not_move_the_timer(self, make_entry):
        entry = make_entry()
        result = act(entry, TimerAction.START, 0, timestamp="2000-01-01T00:00:00Z")
        assert result.entry.timer.started_at == at(0)

    def test_invalid_transition_changes_nothing(self, make_entry):
        entry = make_entry()
        with pytest.raises(InvalidTransition):
            act(entry, TimerAction.PAUSE, 0)

        reloaded = entry_store.get_entry(entry.entry_id, entry.user_id)
        assert reloaded.timer == entry.timer
        assert entry_store.list_timer_events(entry.entry_id) == []

    def test_idle_warning_commits_nothing(self, make_entry):
        entry = make_entry()
        act(entry, TimerAction.START, 0)
        act(entry, TimerAction.HEARTBEAT, 5)
        with pytest.raises(IdleWarning):
            act(entry, TimerAction.PAUSE, 20)

        reloaded = entry_store.get_entry(entry.entry_id, entry.user_id)
        assert reloaded.timer.status == TimerStatus.RUNNING
        assert reloaded.timer.version == 2

    def test_idle_discard_on_pause(self, make_entry):
        entry = make_entry()
        act(entry, TimerAction.START, 0)
        act(entry, TimerAction.HEARTBEAT, 5)
        result = act(entry, TimerAction.PAUSE, 20, resolution=IdleResolution.DISCARD)

        assert result.entry.timer.accumulated_seconds == 300
        assert result.idle_seconds == 900
        event = entry_store.list_timer_events(entry.entry_id)[-1]
        assert event.idle_seconds == 900
        assert event.idle_resolution == "discard"

    def test_idle_keep_on_pause(self, make_entry):
        entry = make_entry()
        act(entry, TimerAction.START, 0)
        act(entry, TimerAction.HEARTBEAT, 5)
        result = act(entry, TimerAction.PAUSE, 20, resolution=IdleResolution.KEEP)
        assert result.entry.timer.accumulated_seconds == 1200

    def test_idle_discard_on_heartbeat_skips_the_gap(self, make_entry):
        entry = make_entry()
        act(entry, TimerAction.START, 0)
        act(entry, TimerAction.HEARTBEAT, 5)
        act(entry, TimerAction.HEARTBEAT, 20, resolution=IdleResolution.DISCARD)
        result = act(entry, TimerAction.PAUSE, 25)

        # 0-5 and 20-25 count, the 15 idle minutes do not
        assert result.entry.timer.accumulated_seconds == 600

    def test_stop_records_hours_and_earnings(self, make_entry):
        entry = make_entry()
        act(entry, TimerAction.START, 0)
        act(entry, TimerAction.HEARTBEAT, 9)
        result = act(entry, TimerAction.STOP, 18)

        assert result.entry.total_hours == 0.3
        assert result.entry.hourly_rate == 27.50
        assert result.entry.total_earnings == 8.25
        assert result.entry.time_in
        assert result.entry.time_out

    def test_stop_applies_overtime(self, make_entry):
        entry = make_entry(user_id=2)
        act(entry, TimerAction.START, 0, idle_threshold_minutes=120)
        for hour in range(1, 10):
            act(entry, TimerAction.HEARTBEAT, hour * 60)
        result = act(entry, TimerAction.STOP, 600)

        assert result.entry.total_hours == 10.0
        assert result.entry.hourly_rate == 56.82
        assert result.entry.total_earnings == 625.02

    def test_someone_elses_entry(self, make_entry):
        entry = make_entry(user_id=1)
        with pytest.raises(EntryNotFound):
            process_timer_action(entry.entry_id, 2, TimerActionRequest(action=TimerAction.START), now=at(0))

    def test_leave_entry_has_no_timer(self, make_entry):
        entry = make_entry(leave=LeaveEntry(is_leave=True, leave_type=LeaveType.SICK))
        with pytest.raises(TimerUnavailable):
            act(entry, TimerAction.START, 0)

    def test_deleted_entry_has_no_timer(self, make_entry):
        entry = make_entry()
        entry_store.soft_delete_entry(entry.entry_id, entry.user_id, at(0))
        with pytest.raises(TimerUnavailable):
            act(entry, TimerAction.START, 1)


class TestConcurrentCommits:
    def test_second_writer_from_same_snapshot_conflicts(self, make_entry):
        entry = make_entry()
        act(entry, TimerAction.START, 0)

        first = entry_store.get_entry(entry.entry_id, entry.user_id)
        second = entry_store.get_entry(entry.entry_id, entry.user_id)
        stop_request = TimerActionRequest(action=TimerAction.STOP)
        first_commit = plan_timer_action(first, stop_request, at(5))
        second_commit = plan_timer_action(second, stop_request, at(6))

        commit_timer_action(first, first_commit)
        with pytest.raises(WriteConflict):
            commit_timer_action(second, second_commit)

        reloaded = entry_store.get_entry(entry.entry_id, entry.user_id)
        assert reloaded.timer.accumulated_seconds == 300
        assert reloaded.timer.version == 2
        assert [e.action for e in entry_store.list_timer_events(entry.entry_id)] == ["start", "stop"]

    def test_pause_and_stop_race(self, make_entry):
        entry = make_entry()
        act(entry, TimerAction.START, 0)
        snapshot = entry_store.get_entry(entry.entry_id, entry.user_id)

        act(entry, TimerAction.PAUSE, 3)
        with pytest.raises(WriteConflict):
            commit_timer_action(snapshot, plan_timer_action(snapshot, TimerActionRequest(action=TimerAction.STOP), at(4)))

        reloaded = entry_store.get_entry(entry.entry_id, entry.user_id)
        assert reloaded.timer.status == TimerStatus.PAUSED
        assert reloaded.timer.accumulated_seconds == 180

    def test_simultaneous_stops_from_same_version_conflict(self, make_entry):
        entry = make_entry()
        act(entry, TimerAction.START, 0)
        snapshots = [entry_store.get_entry(entry.entry_id, entry.user_id) for _ in range(2)]
        assert snapshots[0].timer.version == snapshots[1].timer.version
        barrier = Barrier(2)

        def stop(args):
            snapshot, minutes = args
            commit = plan_timer_action(snapshot, TimerActionRequest(action=TimerAction.STOP), at(minutes))
            barrier.wait()
            try:
                commit_timer_action(snapshot, commit)
                return "stopped"
            except WriteConflict as e:
                return e.code

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = list(pool.map(stop, zip(snapshots, [5, 6])))

        assert sorted(outcomes) == ["WRITE_CONFLICT", "stopped"]
        stops = [e for e in entry_store.list_timer_events(entry.entry_id) if e.action == "stop"]
        assert len(stops) == 1
        reloaded = entry_store.get_entry(entry.entry_id, entry.user_id)
        assert reloaded.timer.status == TimerStatus.STOPPED
        assert reloaded.timer.version == snapshots[0].timer.version + 1
