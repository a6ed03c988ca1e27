"""Pay-day calendar helpers."""

from datetime import date
from typing import Optional

PAY_DAY_OF_MONTH = 25


def next_pay_date(today: Optional[date] = None, pay_day: int = PAY_DAY_OF_MONTH) -> date:
    """Next occurrence of the monthly pay day.

    Before the pay day this month's pay day is used; on or after it, next
    month's.
    """
    today = today or date.today()
    if today.day < pay_day:
        return today.replace(day=pay_day)
    if today.month == 12:
        return date(today.year + 1, 1, pay_day)
    return date(today.year, today.month + 1, pay_day)
