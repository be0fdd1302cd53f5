import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings

_MONTH_RE = re.compile(r"[0-9]{4}-[0-9]{2}")


@dataclass(frozen=True)
class MonthRange:
    token: str
    start: date
    end: date


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def is_valid_month(month: object) -> bool:
    if not isinstance(month, str) or not _MONTH_RE.fullmatch(month):
        return False
    return int(month[:4]) >= 1 and 1 <= int(month[5:7]) <= 12


def parse_month(month: str) -> tuple[int, int]:
    if not is_valid_month(month):
        raise ValueError(f"Invalid month string: {month!r}")
    return int(month[:4]), int(month[5:7])


def month_token(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def add_months(month: str, months: int) -> str:
    year, month_num = parse_month(month)
    total = year * 12 + (month_num - 1) + months
    return f"{total // 12:04d}-{total % 12 + 1:02d}"


def is_month_in_future(month: str, today: Optional[date] = None) -> bool:
    today = today or local_today()
    # zero-padded tokens order lexicographically
    return month > month_token(today)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def month_range(month: str) -> MonthRange:
    year, month_num = parse_month(month)
    start = date(year, month_num, 1)
    end = date(year, month_num, days_in_month(year, month_num))
    return MonthRange(month, start, end)
