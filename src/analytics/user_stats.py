from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, Optional

from src.models.user_stats import (
    CounterDelta,
    DailyCounters,
    PeriodHistoryRecord,
    UserCountersRecord,
)

METRIC_FIELDS = (
    "leads_received",
    "leads_converted",
    "payments_processed",
    "payments_amount",
    "commissions_earned",
)


def compute_commission(amount: int, rate: Decimal) -> int:
    """Commission in minor units, rounded half-up to the nearest unit."""
    value = Decimal(amount) * Decimal(rate)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def conversion_rate(leads_received: int, leads_converted: int) -> float:
    if leads_received <= 0:
        return 0.0
    pct = Decimal(leads_converted) * Decimal(100) / Decimal(leads_received)
    return float(pct.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def merge_daily(
    daily_data: Dict[str, DailyCounters],
    day_key: str,
    delta: CounterDelta,
) -> Dict[str, DailyCounters]:
    merged = dict(daily_data)
    current = merged.get(day_key, DailyCounters())
    addition = delta.as_daily()
    merged[day_key] = DailyCounters(
        leads=current.leads + addition.leads,
        conversions=current.conversions + addition.conversions,
        payments=current.payments + addition.payments,
        amount=current.amount + addition.amount,
        commissions=current.commissions + addition.commissions,
    )
    return merged


def apply_delta(
    counters: UserCountersRecord,
    delta: CounterDelta,
    day_key: str,
    now: datetime,
) -> UserCountersRecord:
    updates = {field: getattr(counters, field) + getattr(delta, field) for field in METRIC_FIELDS}
    return counters.model_copy(
        update={
            **updates,
            "daily_data": merge_daily(counters.daily_data, day_key, delta),
            "updated_at": now,
        }
    )


def snapshot_history(counters: UserCountersRecord, now: datetime) -> PeriodHistoryRecord:
    return PeriodHistoryRecord(
        user_id=counters.user_id,
        period_start=counters.period_start,
        period_end=counters.period_end,
        leads_received=counters.leads_received,
        leads_converted=counters.leads_converted,
        payments_processed=counters.payments_processed,
        payments_amount=counters.payments_amount,
        commissions_earned=counters.commissions_earned,
        daily_data={key: value.model_copy() for key, value in counters.daily_data.items()},
        created_at=now,
    )


def reset_counters(
    counters: UserCountersRecord,
    period_start: datetime,
    period_end: datetime,
    now: datetime,
) -> UserCountersRecord:
    return counters.model_copy(
        update={
            **{field: 0 for field in METRIC_FIELDS},
            "period_start": period_start,
            "period_end": period_end,
            "daily_data": {},
            "updated_at": now,
        }
    )


def sum_counters(rows: Iterable[Optional[UserCountersRecord]]) -> Dict[str, int]:
    totals = {field: 0 for field in METRIC_FIELDS}
    for row in rows:
        if row is None:
            continue
        for field in METRIC_FIELDS:
            totals[field] += getattr(row, field)
    return totals
