from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Protocol, runtime_checkable

from src.models.user_stats import CounterDelta, PeriodHistoryRecord, UserCountersRecord


# Current counters and period history are two relations of one store so the
# archive transition can write both atomically.
@runtime_checkable
class UserStatsStore(Protocol):
    def get_active(self, user_id: int) -> Optional[UserCountersRecord]:
        """Return the active counters row for a user, if any."""
        ...

    def list_active(self, user_ids: Optional[Iterable[int]] = None) -> List[UserCountersRecord]:
        """Return active rows, all of them when ``user_ids`` is None."""
        ...

    def list_due(self, now: datetime) -> List[UserCountersRecord]:
        """Return active rows whose period ended at or before ``now``."""
        ...

    def create_active(
        self,
        user_id: int,
        period_start: datetime,
        period_end: datetime,
        now: datetime,
    ) -> UserCountersRecord:
        """Insert a zeroed active row unless one exists; return the active row."""
        ...

    def apply_increment(
        self,
        user_id: int,
        delta: CounterDelta,
        now: datetime,
        day_key: str,
    ) -> Optional[UserCountersRecord]:
        """Atomically add ``delta``; None when the row is missing or its period has elapsed."""
        ...

    def archive_and_reset(
        self,
        user_id: int,
        now: datetime,
        next_start: datetime,
        next_end: datetime,
    ) -> Optional[PeriodHistoryRecord]:
        """Snapshot and reset in one transaction; None when the row is not due."""
        ...

    def list_history(
        self,
        user_ids: Optional[Iterable[int]] = None,
        limit: Optional[int] = None,
    ) -> List[PeriodHistoryRecord]:
        """Return history ordered by period_end descending."""
        ...
