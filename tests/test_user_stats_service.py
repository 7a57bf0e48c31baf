from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from src.analytics.user_stats import compute_commission, conversion_rate
from src.core.errors import ConflictError, InvalidInputError, NotFoundError
from src.models.user_stats import CounterDelta, UserCountersRecord
from src.repositories.memory_user_stats_repository import InMemoryUserStatsStore
from src.services.stats_archival_service import StatsArchivalService
from src.services.user_stats_service import UserStatsService
from src.shared.time import FixedClock


class StaleWriteStore(InMemoryUserStatsStore):
    """Store whose increments always lose the race against a rollover."""

    def apply_increment(
        self,
        user_id: int,
        delta: CounterDelta,
        now: datetime,
        day_key: str,
    ) -> Optional[UserCountersRecord]:
        _ = user_id, delta, now, day_key
        return None


def test_commission_rounds_half_up() -> None:
    assert compute_commission(12980, Decimal("0.108")) == 1402
    assert compute_commission(5, Decimal("0.1")) == 1
    assert compute_commission(0, Decimal("0.108")) == 0


def test_conversion_rate() -> None:
    assert conversion_rate(3, 1) == 33.3
    assert conversion_rate(0, 0) == 0.0
    assert conversion_rate(3, 2) == 66.7


def test_first_write_creates_counters_for_current_period(stats_service: UserStatsService) -> None:
    counters = stats_service.increment_leads_received(7)
    assert counters.period_start == datetime(2025, 6, 1, tzinfo=timezone.utc)
    assert counters.period_end == datetime(2025, 6, 16, tzinfo=timezone.utc)
    assert counters.leads_received == 1


def test_increments_accumulate_with_daily_buckets(stats_service: UserStatsService) -> None:
    for _ in range(3):
        stats_service.increment_leads_received(7)
    stats_service.increment_leads_converted(7)
    counters = stats_service.increment_payments_processed(7, 12980, rate=Decimal("0.108"))

    assert counters.leads_received == 3
    assert counters.leads_converted == 1
    assert counters.payments_processed == 1
    assert counters.payments_amount == 12980
    assert counters.commissions_earned == 1402
    day = counters.daily_data["2025-06-10"]
    assert (day.leads, day.conversions, day.payments, day.amount, day.commissions) == (
        3,
        1,
        1,
        12980,
        1402,
    )


def test_payment_uses_default_rate(stats_service: UserStatsService) -> None:
    counters = stats_service.increment_payments_processed(7, 10000)
    assert counters.commissions_earned == 1080


def test_zero_amount_payment_still_counts(stats_service: UserStatsService) -> None:
    counters = stats_service.increment_payments_processed(7, 0)
    assert counters.payments_processed == 1
    assert counters.payments_amount == 0


@pytest.mark.parametrize(
    "amount,rate",
    [(-1, None), (12.5, None), ("100", None), (True, None), (100, Decimal("-0.1")), (100, "nan"), (100, "abc")],
)
def test_invalid_payment_is_rejected_without_writing(
    stats_service: UserStatsService,
    store: InMemoryUserStatsStore,
    amount,
    rate,
) -> None:
    with pytest.raises(InvalidInputError):
        stats_service.increment_payments_processed(7, amount, rate=rate)
    assert store.get_active(7) is None


def test_negative_count_is_rejected(stats_service: UserStatsService, store: InMemoryUserStatsStore) -> None:
    stats_service.increment_leads_received(7)
    with pytest.raises(InvalidInputError):
        stats_service.increment_leads_received(7, count=-2)
    with pytest.raises(InvalidInputError):
        stats_service.increment_leads_converted(7, count=-1)
    assert store.get_active(7).leads_received == 1


def test_disabled_lazy_init_reports_not_found(
    stats_service: UserStatsService, store: InMemoryUserStatsStore
) -> None:
    with pytest.raises(NotFoundError):
        stats_service.increment_leads_received(7, lazy_init=False)
    assert store.get_active(7) is None

    stats_service.initialize_user_stats(7)
    counters = stats_service.increment_leads_received(7, lazy_init=False)
    assert counters.leads_received == 1


def test_initialize_is_idempotent(stats_service: UserStatsService, store: InMemoryUserStatsStore) -> None:
    first = stats_service.initialize_user_stats(7)
    stats_service.increment_leads_received(7)
    second = stats_service.initialize_user_stats(7)
    assert first.id == second.id
    assert second.leads_received == 1
    assert len(store.list_active()) == 1


def test_read_path_never_creates_counters(
    stats_service: UserStatsService, store: InMemoryUserStatsStore
) -> None:
    assert stats_service.get_current(7) is None
    assert store.list_active() == []


def test_write_after_boundary_rolls_over_first(
    stats_service: UserStatsService,
    store: InMemoryUserStatsStore,
    clock: FixedClock,
) -> None:
    stats_service.increment_leads_received(7, count=4)
    clock.set(datetime(2025, 6, 16, 8, tzinfo=timezone.utc))

    counters = stats_service.increment_leads_received(7)

    assert counters.period_start == datetime(2025, 6, 16, tzinfo=timezone.utc)
    assert counters.period_end == datetime(2025, 7, 1, tzinfo=timezone.utc)
    assert counters.leads_received == 1
    history = store.list_history(user_ids=[7])
    assert len(history) == 1
    assert history[0].leads_received == 4


def test_increment_conflict_after_retry(clock: FixedClock) -> None:
    store = StaleWriteStore()
    service = UserStatsService(
        store=store,
        archival_service=StatsArchivalService(store=store, clock=clock, reset_period="half_month"),
        clock=clock,
    )
    with pytest.raises(ConflictError):
        service.increment_leads_received(7)
    # The counters row was still opened for the period.
    assert store.get_active(7) is not None


def test_concurrent_increments_are_not_lost(
    stats_service: UserStatsService, store: InMemoryUserStatsStore
) -> None:
    def record_events(_: int) -> None:
        for _ in range(50):
            stats_service.increment_leads_received(7)
            stats_service.increment_payments_processed(7, 100, rate=Decimal("0.1"))

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(record_events, range(8)))

    counters = store.get_active(7)
    assert counters.leads_received == 400
    assert counters.payments_processed == 400
    assert counters.payments_amount == 40000
    assert counters.commissions_earned == 4000
    assert counters.daily_data["2025-06-10"].leads == 400
    assert len(store.list_active()) == 1
