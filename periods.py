from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings


MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    return d.replace(day=days_in_month(d.year, d.month))


def add_months(d: date, months: int) -> date:
    """Shift a first-of-month date by ``months`` calendar months."""
    total_months = d.month - 1 + months
    return date(d.year + total_months // 12, total_months % 12 + 1, 1)


def clamp_day(year: int, month: int, day: int) -> date:
    """Return (year, month, day), snapped to the month's last day when too large."""
    return date(year, month, min(day, days_in_month(year, month)))


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end

    @property
    def label(self) -> str:
        if self.slug == "year":
            return str(self.start.year)
        return f"{MONTH_NAMES[self.start.month - 1]}, {self.start.year}"


def month_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    first = date(year, month, 1)
    return Period("month", first, month_end(first))


def year_period(year: int) -> Period:
    return Period("year", date(year, 1, 1), date(year, 12, 31))


def resolve_period(
    kind: Optional[str],
    year: Optional[int],
    month: Optional[int],
    *,
    today: Optional[date] = None,
) -> Period:
    today = today or local_today()
    year = year or today.year
    if year < 1970 or year > 3000:
        raise ValueError("Year out of range")
    if kind == "year":
        return year_period(year)
    if kind not in (None, "", "month"):
        raise ValueError(f"Unknown period: {kind}")
    return month_period(year, month or today.month)
