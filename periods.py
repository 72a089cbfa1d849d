import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import BudgetPeriod

DAY = timedelta(days=1)
_LAST_INSTANT = timedelta(milliseconds=1)


@dataclass(frozen=True)
class PeriodWindow:
    period: BudgetPeriod
    start: datetime
    end: datetime

    @property
    def total_days(self) -> int:
        return math.ceil((self.end - self.start) / DAY)

    def days_elapsed(self, now: datetime) -> int:
        return max(0, math.ceil((now - self.start) / DAY))

    def days_remaining(self, now: datetime) -> int:
        return max(0, self.total_days - self.days_elapsed(now))


def local_now() -> datetime:
    """Naive wall-clock time in the configured timezone."""
    tz = ZoneInfo(get_settings().timezone)
    return datetime.now(tz).replace(tzinfo=None)


def to_local(value: datetime) -> datetime:
    """Convert an aware datetime to naive configured-zone wall-clock time.

    Naive values are taken to be local already.
    """
    if value.tzinfo is None:
        return value
    tz = ZoneInfo(get_settings().timezone)
    return value.astimezone(tz).replace(tzinfo=None)


def _add_months(first_of_month: date, months: int) -> date:
    total = first_of_month.month - 1 + months
    return date(first_of_month.year + total // 12, total % 12 + 1, 1)


def resolve_window(
    period: BudgetPeriod | str, reference: Optional[datetime] = None
) -> PeriodWindow:
    period = BudgetPeriod(period)
    reference = reference or local_now()
    today = reference.date()

    if period == BudgetPeriod.daily:
        start_day = today
        next_start = start_day + DAY
    elif period == BudgetPeriod.weekly:
        # Weeks start on Sunday; date.weekday() has Monday == 0.
        start_day = today - timedelta(days=(today.weekday() + 1) % 7)
        next_start = start_day + timedelta(days=7)
    elif period == BudgetPeriod.monthly:
        start_day = today.replace(day=1)
        next_start = _add_months(start_day, 1)
    elif period == BudgetPeriod.quarterly:
        quarter_month = ((today.month - 1) // 3) * 3 + 1
        start_day = date(today.year, quarter_month, 1)
        next_start = _add_months(start_day, 3)
    else:
        start_day = date(today.year, 1, 1)
        next_start = date(today.year + 1, 1, 1)

    start = datetime.combine(start_day, datetime.min.time())
    end = datetime.combine(next_start, datetime.min.time()) - _LAST_INSTANT
    return PeriodWindow(period=period, start=start, end=end)
