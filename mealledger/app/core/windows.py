"""Calendar windows shared by every distribution aggregate.

All boundaries are computed in the configured local timezone and returned
as UTC datetimes so they can be compared against stored claim timestamps.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from mealledger.app.core.config import settings

TODAY = "today"
THIS_WEEK = "this_week"
THIS_MONTH = "this_month"
LAST_7_DAYS = "last_7_days"
LAST_30_DAYS = "last_30_days"
LAST_12_MONTHS = "last_12_months"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC.

    SQLite hands timestamps back without tzinfo even for timezone-aware
    columns, so everything read from the ledger passes through here.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_today(now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> date:
    """Today's date in the service timezone."""
    tz = tz or settings.tzinfo
    return ensure_utc(now or utc_now()).astimezone(tz).date()


def local_date_of(moment: datetime, tz: Optional[ZoneInfo] = None) -> date:
    tz = tz or settings.tzinfo
    return ensure_utc(moment).astimezone(tz).date()


def start_of_local_day(day: date, tz: Optional[ZoneInfo] = None) -> datetime:
    """Local midnight of ``day`` expressed in UTC."""
    tz = tz or settings.tzinfo
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def month_start(day: date) -> date:
    return day.replace(day=1)


def add_months(day: date, months: int) -> date:
    """Shift a first-of-month date by whole months."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


@dataclass(frozen=True)
class WindowSet:
    """Start boundaries (UTC) of the standard distribution windows.

    Every window is open-ended: a claim falls in a window when its
    timestamp is at or after the window start.
    """

    now: datetime
    today: datetime
    this_week: datetime
    this_month: datetime
    last_7_days: datetime
    last_30_days: datetime
    last_12_months: datetime

    def as_dict(self) -> dict[str, datetime]:
        return {
            TODAY: self.today,
            THIS_WEEK: self.this_week,
            THIS_MONTH: self.this_month,
            LAST_7_DAYS: self.last_7_days,
            LAST_30_DAYS: self.last_30_days,
            LAST_12_MONTHS: self.last_12_months,
        }

    def select(self, *names: str) -> dict[str, datetime]:
        windows = self.as_dict()
        return {name: windows[name] for name in names}


def build_windows(
    now: Optional[datetime] = None,
    tz: Optional[ZoneInfo] = None,
    week_starts_on: Optional[int] = None,
) -> WindowSet:
    """Compute the standard windows relative to ``now``.

    Examples:
        >>> w = build_windows(datetime(2024, 5, 10, 3, 0, tzinfo=timezone.utc),
        ...                   tz=ZoneInfo("UTC"), week_starts_on=1)
        >>> w.this_week.date()
        datetime.date(2024, 5, 6)
    """
    tz = tz or settings.tzinfo
    week_start_day = week_starts_on or settings.week_starts_on
    current = ensure_utc(now or utc_now())
    today = local_today(current, tz)

    days_into_week = (today.isoweekday() - week_start_day) % 7
    first_of_month = month_start(today)

    return WindowSet(
        now=current,
        today=start_of_local_day(today, tz),
        this_week=start_of_local_day(today - timedelta(days=days_into_week), tz),
        this_month=start_of_local_day(first_of_month, tz),
        last_7_days=current - timedelta(days=7),
        last_30_days=current - timedelta(days=30),
        last_12_months=start_of_local_day(add_months(first_of_month, -11), tz),
    )
