import sqlite3
from datetime import date, datetime, timezone

import pytest

from worktimer.core.config import RateConfig
from worktimer.core.database import get_db
from worktimer.core.exceptions import DegradedRateComputation, UserNotFound
from worktimer.models.salary import EffectiveRate, RateSource, SalaryRecord, SalaryType, WorkingConfig
from worktimer.services import entry_store, rate_service
from worktimer.services.rate_service import (
    InMemoryRateCache, hourly_from_salary, pick_effective_record, pick_nearest_record, resolve_effective_rate,
)


def record(effective_from, amount=5000, record_id=None, salary_type=SalaryType.MONTHLY):
    return SalaryRecord(
        record_id=record_id,
        salary_type=salary_type,
        amount=amount,
        effective_from=effective_from,
        working=WorkingConfig(hours_per_day=8, days_per_month=25),
    )


class FakeClock:
    def __init__(self):
        self.value = 0.0

    def __call__(self):
        return self.value


def some_rate(hourly_rate=25.0):
    return EffectiveRate(hourly_rate=hourly_rate, source=RateSource.SALARY_HISTORY)


class TestPickEffectiveRecord:
    def test_latest_record_not_after_date(self):
        records = [record(date(2025, 1, 1), 5500), record(date(2024, 1, 1), 5000)]
        assert pick_effective_record(records, date(2025, 3, 3)).amount == 5500
        assert pick_effective_record(records, date(2024, 12, 31)).amount == 5000

    def test_effective_from_is_inclusive(self):
        records = [record(date(2024, 1, 1), 5000), record(date(2025, 1, 1), 5500)]
        assert pick_effective_record(records, date(2025, 1, 1)).amount == 5500

    def test_all_records_in_future(self):
        assert pick_effective_record([record(date(2025, 1, 1))], date(2024, 6, 1)) is None

    def test_empty_history(self):
        assert pick_effective_record([], date(2025, 1, 1)) is None

    def test_same_day_resolves_to_last_appended(self):
        records = [record(date(2025, 1, 1), 5000, 1), record(date(2025, 1, 1), 6000, 2)]
        assert pick_effective_record(records, date(2025, 2, 1)).record_id == 2


class TestPickNearestRecord:
    def test_closest_record(self):
        records = [record(date(2025, 1, 1), 5500), record(date(2024, 1, 1), 5000)]
        assert pick_nearest_record(records, date(2023, 6, 1)).amount == 5000

    def test_tie_goes_to_earlier_record(self):
        records = [record(date(2024, 1, 11), 6000), record(date(2024, 1, 1), 5000)]
        assert pick_nearest_record(records, date(2024, 1, 6)).amount == 5000

    def test_empty_history(self):
        assert pick_nearest_record([], date(2024, 1, 1)) is None


class TestHourlyFromSalary:
    def test_monthly(self):
        assert hourly_from_salary(SalaryType.MONTHLY, 5000, WorkingConfig(hours_per_day=8, days_per_month=25)) == 25.00

    def test_annual(self):
        assert hourly_from_salary(SalaryType.ANNUAL, 120000, WorkingConfig(hours_per_day=8, days_per_month=22)) == 56.82

    def test_zero_working_hours(self):
        assert hourly_from_salary(SalaryType.MONTHLY, 5000, WorkingConfig(hours_per_day=0, days_per_month=22)) == 0.0


class TestInMemoryRateCache:
    def test_entry_expires_after_ttl(self):
        fake = FakeClock()
        cache = InMemoryRateCache(ttl_seconds=300, clock=fake)
        cache.set(1, date(2025, 3, 3), some_rate())

        fake.value = 299
        assert cache.get(1, date(2025, 3, 3)) is not None
        fake.value = 301
        assert cache.get(1, date(2025, 3, 3)) is None
        assert len(cache) == 0

    def test_evicts_oldest_when_full(self):
        fake = FakeClock()
        cache = InMemoryRateCache(ttl_seconds=300, max_entries=200, evict_count=10, clock=fake)
        for day in range(200):
            fake.value = day * 0.5
            cache.set(day, date(2025, 1, 1), some_rate())
        assert len(cache) == 200

        cache.set(999, date(2025, 1, 1), some_rate())

        assert len(cache) == 191
        for oldest in range(10):
            assert cache.get(oldest, date(2025, 1, 1)) is None
        assert cache.get(10, date(2025, 1, 1)) is not None
        assert cache.get(999, date(2025, 1, 1)) is not None

    def test_expired_entries_are_dropped_before_evicting(self):
        fake = FakeClock()
        cache = InMemoryRateCache(ttl_seconds=300, max_entries=3, evict_count=2, clock=fake)
        cache.set(1, date(2025, 1, 1), some_rate())
        fake.value = 200
        cache.set(2, date(2025, 1, 1), some_rate())
        cache.set(3, date(2025, 1, 1), some_rate())

        fake.value = 400
        cache.set(4, date(2025, 1, 1), some_rate())

        assert len(cache) == 3
        assert cache.get(2, date(2025, 1, 1)) is not None

    def test_invalidate_user(self):
        cache = InMemoryRateCache()
        cache.set(1, date(2025, 1, 1), some_rate())
        cache.set(1, date(2025, 1, 2), some_rate())
        cache.set(2, date(2025, 1, 1), some_rate())

        assert cache.invalidate_user(1) == 2
        assert cache.get(1, date(2025, 1, 1)) is None
        assert cache.get(2, date(2025, 1, 1)) is not None

    def test_stats_count_hits_and_misses(self):
        cache = InMemoryRateCache()
        cache.get(1, date(2025, 1, 1))
        cache.set(1, date(2025, 1, 1), some_rate())
        cache.get(1, date(2025, 1, 1))

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["entries"] == 1


class TestResolveEffectiveRate:
    def test_record_in_force(self):
        rate = resolve_effective_rate(1, date(2025, 3, 3))
        assert rate.hourly_rate == 27.50
        assert rate.source == RateSource.SALARY_HISTORY
        assert not rate.degraded
        assert rate.record_effective_from == date(2025, 1, 1)

    def test_earlier_record_for_earlier_date(self):
        assert resolve_effective_rate(1, date(2024, 7, 15)).hourly_rate == 25.00

    def test_annual_salary_with_profile_overtime(self):
        rate = resolve_effective_rate(2, date(2025, 3, 3))
        assert rate.hourly_rate == 56.82
        assert rate.overtime.enabled

    def test_date_before_history_uses_nearest_record(self):
        rate = resolve_effective_rate(1, date(2023, 6, 1))
        assert rate.hourly_rate == 25.00
        assert rate.source == RateSource.NEAREST_RECORD
        assert rate.degraded
        assert "2024-01-01" in rate.degraded_reason

    def test_empty_history_uses_default_rate(self):
        rate = resolve_effective_rate(3, date(2025, 3, 3))
        assert rate.hourly_rate == 15.0
        assert rate.source == RateSource.DEFAULT_RATE
        assert rate.degraded

    def test_nothing_to_go_on_is_zero(self, add_user):
        add_user(10)
        rate = resolve_effective_rate(10, date(2025, 3, 3))
        assert rate.hourly_rate == 0.0
        assert rate.source == RateSource.NONE
        assert rate.degraded

    def test_unknown_user(self):
        with pytest.raises(UserNotFound):
            resolve_effective_rate(404, date(2025, 3, 3))

    def test_strict_mode_rejects_degraded_rates(self, monkeypatch):
        monkeypatch.setattr(RateConfig, "RATE_STRICT_MODE", True)
        with pytest.raises(DegradedRateComputation):
            resolve_effective_rate(3, date(2025, 3, 3))
        assert resolve_effective_rate(1, date(2025, 3, 3)).hourly_rate == 27.50

    def test_strict_mode_applies_to_cached_rates(self, monkeypatch):
        resolve_effective_rate(3, date(2025, 3, 3))
        monkeypatch.setattr(RateConfig, "RATE_STRICT_MODE", True)
        with pytest.raises(DegradedRateComputation):
            resolve_effective_rate(3, date(2025, 3, 3))

    def test_cached_until_invalidated(self):
        work_date = date(2025, 6, 2)
        assert resolve_effective_rate(1, work_date).hourly_rate == 27.50

        raise_record = record(date(2025, 6, 1), 6000).model_copy(
            update={"created_at": datetime(2025, 6, 1, tzinfo=timezone.utc)}
        )
        entry_store.append_salary_record(1, raise_record, 30.0)

        # Appending does not touch the cache by itself
        assert resolve_effective_rate(1, work_date).hourly_rate == 27.50

        rate_service.get_rate_cache().invalidate_user(1)
        assert resolve_effective_rate(1, work_date).hourly_rate == 30.00


class TestSalaryHistoryIsAppendOnly:
    def test_update_is_rejected(self):
        with pytest.raises(sqlite3.DatabaseError):
            with get_db() as conn:
                conn.execute("UPDATE salary_records SET amount = 1 WHERE user_id = 1")
                conn.commit()

    def test_delete_is_rejected(self):
        with pytest.raises(sqlite3.DatabaseError):
            with get_db() as conn:
                conn.execute("DELETE FROM salary_records WHERE user_id = 1")
                conn.commit()
        assert len(entry_store.list_salary_records(1)) == 2
