from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from src.analytics.stats_periods import ResetPeriod, compute_current_period
from src.core.config import get_settings
from src.core.errors import ConflictError, StorageFailureError
from src.models.user_stats import PeriodHistoryRecord
from src.repositories.user_stats_store import UserStatsStore
from src.schemas.user_stats import StatsSweepResult
from src.shared.time import Clock

logger = logging.getLogger(__name__)


class StatsArchivalService:
    """Moves a user's elapsed period into history and opens the next one.

    Every trigger (hourly sweep, lazy check on read/write, admin force reset) ends up in
    :meth:`archive_and_reset`, which re-checks the rollover inside the store transaction,
    so duplicate triggers are harmless.
    """

    def __init__(
        self,
        store: UserStatsStore,
        clock: Clock,
        reset_period: Optional[ResetPeriod | str] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.reset_period = ResetPeriod(reset_period or get_settings().stats_reset_period)

    def archive_and_reset(
        self, user_id: int, now: Optional[datetime] = None
    ) -> Optional[PeriodHistoryRecord]:
        now = now or self.clock.now()
        next_start, next_end = compute_current_period(now, self.reset_period)
        try:
            record = self.store.archive_and_reset(user_id, now, next_start, next_end)
        except ConflictError:
            # The other writer already archived; the retry sees the reset row and no-ops.
            logger.warning("stats archive conflict user_id=%s, retrying once", user_id)
            record = self.store.archive_and_reset(user_id, now, next_start, next_end)
        if record is not None:
            logger.info(
                "stats archived user_id=%s period=%s..%s leads=%s payments=%s next=%s..%s",
                user_id,
                record.period_start.isoformat(),
                record.period_end.isoformat(),
                record.leads_received,
                record.payments_processed,
                next_start.isoformat(),
                next_end.isoformat(),
            )
        return record

    def archive_and_reset_all(self, now: Optional[datetime] = None) -> StatsSweepResult:
        now = now or self.clock.now()
        due_rows = self.store.list_due(now)
        archived = 0
        failed: List[int] = []
        for row in due_rows:
            try:
                if self.archive_and_reset(row.user_id, now) is not None:
                    archived += 1
            except (StorageFailureError, ConflictError):
                logger.exception("stats archive failed user_id=%s", row.user_id)
                failed.append(row.user_id)
        if failed:
            status = "partial"
        elif archived:
            status = "success"
        else:
            status = "noop"
        logger.info(
            "stats sweep finished checked=%s archived=%s failed=%s",
            len(due_rows),
            archived,
            len(failed),
        )
        return StatsSweepResult(
            status=status,
            checked_count=len(due_rows),
            archived_count=archived,
            failed_user_ids=failed,
            ran_at=now,
        )

    def force_reset_all(self, now: Optional[datetime] = None) -> StatsSweepResult:
        """Administrative sweep; rows whose period has not elapsed are left alone."""
        return self.archive_and_reset_all(now)
