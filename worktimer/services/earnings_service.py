from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from worktimer.models.salary import OvertimeConfig

TWO_PLACES = Decimal("0.01")
FALLBACK_OVERTIME_MULTIPLIER = Decimal("1.5")

def to_decimal(value) -> Decimal:
    """Decimal from a float without binary noise (0.1 -> Decimal('0.1'))"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))

def round2(value) -> float:
    """Half-up rounding to cents"""
    return float(to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))

def compute_earnings(total_hours: float, hourly_rate: float,
                     overtime: Optional[OvertimeConfig] = None) -> float:
    """Earnings for a day's hours, with overtime beyond the daily threshold.

    Rounding happens once, on the final amount.
    """
    hours = to_decimal(total_hours)
    rate = to_decimal(hourly_rate)

    if overtime is None or not overtime.enabled:
        return round2(hours * rate)

    threshold = to_decimal(overtime.threshold_hours_per_day)
    multiplier = to_decimal(overtime.multiplier) if overtime.multiplier > 0 else FALLBACK_OVERTIME_MULTIPLIER

    base_hours = min(hours, threshold)
    overtime_hours = max(Decimal(0), hours - threshold)
    earnings = base_hours * rate + overtime_hours * rate * multiplier
    return round2(earnings)

def time_range_minutes(time_in: str, time_out: str) -> Tuple[int, int]:
    """(start, end) minutes from the work date's midnight.

    A time_out earlier than time_in is an overnight shift and ends past 24:00.
    """
    in_hours, in_minutes = (int(part) for part in time_in.split(":"))
    out_hours, out_minutes = (int(part) for part in time_out.split(":"))

    start = in_hours * 60 + in_minutes
    end = out_hours * 60 + out_minutes
    if end < start:
        end += 24 * 60
    return start, end

def calculate_time_worked(time_in: str, time_out: str, break_minutes: int = 0) -> float:
    """Hours between two HH:MM strings minus the break, rounded to 2 places"""
    start, end = time_range_minutes(time_in, time_out)
    total_minutes = end - start - break_minutes
    return round2(max(0, total_minutes) / 60)
