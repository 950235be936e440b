"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, timezone
from typing import Tuple


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def add_months(from_date: date, months: int) -> date:
    """Add calendar months, clamping to the last day of shorter months (Jan 31 + 1 -> Feb 28/29)"""
    month_index = from_date.month - 1 + months
    year = from_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(from_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def mandate_window(num_installments: int, start: date | None = None) -> Tuple[date, date]:
    """Start and end date of a monthly debit mandate"""
    start = start or utcnow().date()
    return start, add_months(start, num_installments)
