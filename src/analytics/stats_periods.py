from __future__ import annotations

from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Tuple

from src.core.errors import InvalidInputError
from src.models.user_stats import UserCountersRecord
from src.shared.time import add_months

SECOND_HALF_START_DAY = 16


class ResetPeriod(str, Enum):
    DAILY = "daily"
    HALF_MONTH = "half_month"
    MONTHLY = "monthly"


def _midnight(day: date, reference: datetime) -> datetime:
    # Boundaries stay in the timezone carried by ``reference`` (naive stays naive).
    return datetime.combine(day, time.min, tzinfo=reference.tzinfo)


def compute_current_period(
    now: datetime,
    reset_period: ResetPeriod | str = ResetPeriod.HALF_MONTH,
) -> Tuple[datetime, datetime]:
    """Return the ``[start, end)`` counting window containing ``now``.

    Half-month windows are anchored on day 1 and day 16 at local midnight: days 1-15
    fall in ``[day 1, day 16)`` and days 16 to month end in ``[day 16, next month day 1)``.
    """
    period = ResetPeriod(reset_period)
    today = now.date()
    if period is ResetPeriod.DAILY:
        return _midnight(today, now), _midnight(today + timedelta(days=1), now)
    month_start = today.replace(day=1)
    next_month_start = add_months(month_start, 1)
    if period is ResetPeriod.MONTHLY:
        return _midnight(month_start, now), _midnight(next_month_start, now)
    if today.day < SECOND_HALF_START_DAY:
        second_half = today.replace(day=SECOND_HALF_START_DAY)
        return _midnight(month_start, now), _midnight(second_half, now)
    second_half = today.replace(day=SECOND_HALF_START_DAY)
    return _midnight(second_half, now), _midnight(next_month_start, now)


def validate_period_bounds(period_start: datetime, period_end: datetime) -> None:
    if period_end <= period_start:
        raise InvalidInputError(
            f"Malformed period bounds: {period_start.isoformat()} >= {period_end.isoformat()}"
        )


def is_rollover_due(counters: UserCountersRecord, now: datetime) -> bool:
    validate_period_bounds(counters.period_start, counters.period_end)
    return now >= counters.period_end
