import logging
import threading
import time
from abc import ABC, abstractmethod
from bisect import bisect_right
from collections import OrderedDict
from datetime import date
from typing import Callable, Dict, List, Optional, Tuple

from worktimer.core.config import RateConfig
from worktimer.core.exceptions import DegradedRateComputation
from worktimer.models.salary import EffectiveRate, RateSource, SalaryRecord, SalaryType, WorkingConfig
from worktimer.services import entry_store
from worktimer.services.earnings_service import round2, to_decimal

logger = logging.getLogger(__name__)

CacheKey = Tuple[int, str]

class RateCache(ABC):
    """Storage for resolved rates keyed by (user_id, date).

    The in-memory implementation is local to one process. A deployment with
    several instances can plug a shared store in via set_rate_cache().
    """

    @abstractmethod
    def get(self, user_id: int, work_date: date) -> Optional[EffectiveRate]:
        ...

    @abstractmethod
    def set(self, user_id: int, work_date: date, rate: EffectiveRate) -> None:
        ...

    @abstractmethod
    def invalidate_user(self, user_id: int) -> int:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    @abstractmethod
    def stats(self) -> Dict[str, float]:
        ...

class InMemoryRateCache(RateCache):
    """TTL-bounded map that evicts the oldest insertions when full"""

    def __init__(self, ttl_seconds: float = RateConfig.RATE_CACHE_TTL_SECONDS,
                 max_entries: int = RateConfig.RATE_CACHE_MAX_ENTRIES,
                 evict_count: int = RateConfig.RATE_CACHE_EVICT_COUNT,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.evict_count = max(1, evict_count)
        self._clock = clock
        # Ordered by insertion time: a re-set key moves to the end
        self._entries: "OrderedDict[CacheKey, Tuple[float, EffectiveRate]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(user_id: int, work_date: date) -> CacheKey:
        return (user_id, work_date.isoformat())

    def get(self, user_id: int, work_date: date) -> Optional[EffectiveRate]:
        key = self._key(user_id, work_date)
        with self._lock:
            cached = self._entries.get(key)
            if cached is None:
                self.misses += 1
                return None
            inserted_at, rate = cached
            if self._clock() - inserted_at > self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return rate

    def set(self, user_id: int, work_date: date, rate: EffectiveRate) -> None:
        key = self._key(user_id, work_date)
        with self._lock:
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_entries:
                self._evict_locked()
            self._entries[key] = (self._clock(), rate)

    def _evict_locked(self) -> None:
        now = self._clock()
        expired = [k for k, (inserted_at, _) in self._entries.items() if now - inserted_at > self.ttl_seconds]
        for key in expired:
            del self._entries[key]
        if len(self._entries) < self.max_entries:
            return

        for _ in range(min(self.evict_count, len(self._entries))):
            self._entries.popitem(last=False)
        logger.debug(f"Rate cache full, evicted {self.evict_count} oldest entries")

    def invalidate_user(self, user_id: int) -> int:
        with self._lock:
            stale = [key for key in self._entries if key[0] == user_id]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, float]:
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
        }

_rate_cache: RateCache = InMemoryRateCache()

def get_rate_cache() -> RateCache:
    return _rate_cache

def set_rate_cache(cache: RateCache) -> None:
    global _rate_cache
    _rate_cache = cache

def pick_effective_record(records: List[SalaryRecord], work_date: date) -> Optional[SalaryRecord]:
    """The record in force on work_date: latest effective_from not after it.

    Records with the same effective_from resolve to the one appended last.
    """
    ordered = sorted(records or [], key=lambda r: r.effective_from)
    keys = [r.effective_from for r in ordered]
    index = bisect_right(keys, work_date) - 1
    if index < 0:
        return None
    return ordered[index]

def pick_nearest_record(records: List[SalaryRecord], work_date: date) -> Optional[SalaryRecord]:
    """Record whose effective_from is closest to work_date, earlier wins ties"""
    if not records:
        return None
    return min(records, key=lambda r: (abs((r.effective_from - work_date).days), r.effective_from))

def hourly_from_salary(salary_type: SalaryType, amount: float, working: WorkingConfig) -> float:
    hours_per_month = to_decimal(working.hours_per_day) * to_decimal(working.days_per_month)
    if hours_per_month <= 0:
        return 0.0
    monthly_amount = to_decimal(amount) / 12 if salary_type == SalaryType.ANNUAL else to_decimal(amount)
    return round2(monthly_amount / hours_per_month)

def _compute_effective_rate(user_id: int, work_date: date) -> EffectiveRate:
    profile = entry_store.get_user_profile(user_id)
    records = entry_store.list_salary_records(user_id)

    record = pick_effective_record(records, work_date)
    source = RateSource.SALARY_HISTORY
    degraded_reason = None

    if record is None and records:
        record = pick_nearest_record(records, work_date)
        source = RateSource.NEAREST_RECORD
        degraded_reason = f"no salary record in force on {work_date}, used record effective {record.effective_from}"

    if record is None:
        if profile.default_hourly_rate:
            return EffectiveRate(
                hourly_rate=profile.default_hourly_rate,
                working=profile.working,
                overtime=profile.overtime,
                source=RateSource.DEFAULT_RATE,
                degraded=True,
                degraded_reason="salary history is empty, used the profile default hourly rate",
            )
        return EffectiveRate(
            hourly_rate=0.0,
            working=profile.working,
            overtime=profile.overtime,
            source=RateSource.NONE,
            degraded=True,
            degraded_reason="salary history is empty and no default hourly rate is set",
        )

    rate = hourly_from_salary(record.salary_type, record.amount, record.working)
    if record.working.hours_per_day * record.working.days_per_month <= 0:
        degraded_reason = f"salary record effective {record.effective_from} has no working hours"

    return EffectiveRate(
        hourly_rate=rate,
        working=record.working,
        overtime=profile.overtime,
        source=source,
        degraded=degraded_reason is not None,
        degraded_reason=degraded_reason,
        record_effective_from=record.effective_from,
    )

def resolve_effective_rate(user_id: int, work_date: date, strict: Optional[bool] = None) -> EffectiveRate:
    """Hourly rate, working config and overtime policy in force for a user on a date.

    ``strict`` defaults to RATE_STRICT_MODE; pass False where a degraded rate
    must be recorded rather than refused.
    """
    if strict is None:
        strict = RateConfig.RATE_STRICT_MODE
    cache = get_rate_cache()
    rate = cache.get(user_id, work_date)
    if rate is None:
        rate = _compute_effective_rate(user_id, work_date)
        if rate.degraded:
            logger.warning(f"Degraded rate for user {user_id} on {work_date}: {rate.degraded_reason}")
        cache.set(user_id, work_date, rate)

    if rate.degraded and strict:
        raise DegradedRateComputation(user_id, work_date.isoformat(), rate.degraded_reason)
    return rate
