from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

from src.analytics.stats_periods import compute_current_period, is_rollover_due
from src.analytics.user_stats import compute_commission
from src.core.config import get_settings
from src.core.errors import ConflictError, InvalidInputError, NotFoundError
from src.models.user_stats import CounterDelta, UserCountersRecord
from src.repositories.user_stats_store import UserStatsStore
from src.services.stats_archival_service import StatsArchivalService
from src.shared.time import Clock

logger = logging.getLogger(__name__)


class UserStatsService:
    """Entry point for business-event handlers (lead intake, conversions, payments).

    Delivery is the caller's concern: every call is counted, so a redelivered event
    (for example a retried payment webhook) must be filtered out before it gets here.
    """

    def __init__(
        self,
        store: UserStatsStore,
        archival_service: StatsArchivalService,
        clock: Clock,
    ) -> None:
        self.store = store
        self.archival_service = archival_service
        self.clock = clock
        self.settings = get_settings()

    def _resolve_lazy_init(self, lazy_init: Optional[bool]) -> bool:
        return self.settings.stats_lazy_init if lazy_init is None else lazy_init

    def _roll_over_if_due(
        self, counters: UserCountersRecord, now: datetime
    ) -> UserCountersRecord:
        if not is_rollover_due(counters, now):
            return counters
        self.archival_service.archive_and_reset(counters.user_id, now)
        refreshed = self.store.get_active(counters.user_id)
        if refreshed is None:
            raise ConflictError(f"Counters for user {counters.user_id} vanished during rollover")
        return refreshed

    def ensure_active(
        self,
        user_id: int,
        now: Optional[datetime] = None,
        lazy_init: Optional[bool] = None,
    ) -> UserCountersRecord:
        now = now or self.clock.now()
        counters = self.store.get_active(user_id)
        if counters is None:
            if not self._resolve_lazy_init(lazy_init):
                raise NotFoundError(f"No statistics initialized for user {user_id}")
            period_start, period_end = compute_current_period(now, self.archival_service.reset_period)
            counters = self.store.create_active(user_id, period_start, period_end, now)
            logger.info(
                "stats initialized user_id=%s period=%s..%s",
                user_id,
                counters.period_start.isoformat(),
                counters.period_end.isoformat(),
            )
        return self._roll_over_if_due(counters, now)

    def get_current(
        self, user_id: int, now: Optional[datetime] = None
    ) -> Optional[UserCountersRecord]:
        """Read path: rolls an elapsed period over but never creates counters."""
        now = now or self.clock.now()
        counters = self.store.get_active(user_id)
        if counters is None:
            return None
        return self._roll_over_if_due(counters, now)

    def initialize_user_stats(
        self, user_id: int, now: Optional[datetime] = None
    ) -> UserCountersRecord:
        return self.ensure_active(user_id, now=now, lazy_init=True)

    def increment_leads_received(
        self,
        user_id: int,
        count: int = 1,
        now: Optional[datetime] = None,
        lazy_init: Optional[bool] = None,
    ) -> UserCountersRecord:
        self._validate_count(count)
        return self._apply(user_id, CounterDelta(leads_received=count), now, lazy_init)

    def increment_leads_converted(
        self,
        user_id: int,
        count: int = 1,
        now: Optional[datetime] = None,
        lazy_init: Optional[bool] = None,
    ) -> UserCountersRecord:
        self._validate_count(count)
        return self._apply(user_id, CounterDelta(leads_converted=count), now, lazy_init)

    def increment_payments_processed(
        self,
        user_id: int,
        amount: int,
        rate: Optional[Decimal] = None,
        now: Optional[datetime] = None,
        lazy_init: Optional[bool] = None,
    ) -> UserCountersRecord:
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise InvalidInputError("Payment amount must be an integer number of minor units")
        if amount < 0:
            raise InvalidInputError("Payment amount must not be negative")
        commission_rate = self._resolve_rate(rate)
        delta = CounterDelta(
            payments_processed=1,
            payments_amount=amount,
            commissions_earned=compute_commission(amount, commission_rate),
        )
        return self._apply(user_id, delta, now, lazy_init)

    def _resolve_rate(self, rate: Optional[Decimal]) -> Decimal:
        if rate is None:
            return self.settings.stats_default_commission_rate
        try:
            value = Decimal(str(rate))
        except (InvalidOperation, ValueError) as exc:
            raise InvalidInputError("Commission rate must be a decimal number") from exc
        if not value.is_finite() or value < 0:
            raise InvalidInputError("Commission rate must be a non-negative number")
        return value

    @staticmethod
    def _validate_count(count: int) -> None:
        if isinstance(count, bool) or not isinstance(count, int):
            raise InvalidInputError("Count must be an integer")
        if count < 0:
            raise InvalidInputError("Count must not be negative")

    def _apply(
        self,
        user_id: int,
        delta: CounterDelta,
        now: Optional[datetime],
        lazy_init: Optional[bool],
    ) -> UserCountersRecord:
        now = now or self.clock.now()
        day_key = now.date().isoformat()
        updated = self.store.apply_increment(user_id, delta, now, day_key)
        if updated is not None:
            return updated
        # Missing row or elapsed period: open the current period, then retry once.
        self.ensure_active(user_id, now=now, lazy_init=lazy_init)
        updated = self.store.apply_increment(user_id, delta, now, day_key)
        if updated is None:
            raise ConflictError(f"Could not apply increment for user {user_id}")
        return updated
