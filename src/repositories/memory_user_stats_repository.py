from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Dict, Iterable, List, Optional

from src.analytics.user_stats import apply_delta, reset_counters, snapshot_history
from src.models.user_stats import CounterDelta, PeriodHistoryRecord, UserCountersRecord


class InMemoryUserStatsStore:
    """Process-local store with one lock per user.

    Writers for the same user serialize on that user's lock; writers for different
    users never contend. History is append-only.
    """

    def __init__(self) -> None:
        self._rows: Dict[int, UserCountersRecord] = {}
        self._history: List[PeriodHistoryRecord] = []
        self._user_locks: Dict[int, Lock] = {}
        self._registry_lock = Lock()
        self._history_lock = Lock()
        self._next_row_id = 1
        self._next_history_id = 1

    def _lock_for(self, user_id: int) -> Lock:
        with self._registry_lock:
            lock = self._user_locks.get(user_id)
            if lock is None:
                lock = Lock()
                self._user_locks[user_id] = lock
            return lock

    def get_active(self, user_id: int) -> Optional[UserCountersRecord]:
        with self._lock_for(user_id):
            row = self._rows.get(user_id)
            return row.model_copy(deep=True) if row else None

    def list_active(self, user_ids: Optional[Iterable[int]] = None) -> List[UserCountersRecord]:
        wanted = sorted(set(user_ids)) if user_ids is not None else sorted(self._rows.copy())
        rows: List[UserCountersRecord] = []
        for user_id in wanted:
            row = self.get_active(user_id)
            if row is not None:
                rows.append(row)
        return rows

    def list_due(self, now: datetime) -> List[UserCountersRecord]:
        return [row for row in self.list_active() if now >= row.period_end]

    def create_active(
        self,
        user_id: int,
        period_start: datetime,
        period_end: datetime,
        now: datetime,
    ) -> UserCountersRecord:
        with self._lock_for(user_id):
            existing = self._rows.get(user_id)
            if existing is None:
                with self._registry_lock:
                    row_id = self._next_row_id
                    self._next_row_id += 1
                existing = UserCountersRecord(
                    id=row_id,
                    user_id=user_id,
                    period_start=period_start,
                    period_end=period_end,
                    created_at=now,
                    updated_at=now,
                )
                self._rows[user_id] = existing
            return existing.model_copy(deep=True)

    def apply_increment(
        self,
        user_id: int,
        delta: CounterDelta,
        now: datetime,
        day_key: str,
    ) -> Optional[UserCountersRecord]:
        with self._lock_for(user_id):
            row = self._rows.get(user_id)
            if row is None or now >= row.period_end:
                return None
            updated = apply_delta(row, delta, day_key, now)
            self._rows[user_id] = updated
            return updated.model_copy(deep=True)

    def archive_and_reset(
        self,
        user_id: int,
        now: datetime,
        next_start: datetime,
        next_end: datetime,
    ) -> Optional[PeriodHistoryRecord]:
        with self._lock_for(user_id):
            row = self._rows.get(user_id)
            if row is None or now < row.period_end:
                return None
            record = snapshot_history(row, now)
            reset_row = reset_counters(row, next_start, next_end, now)
            # The row is swapped only after the history append succeeded.
            stored = self._append_history(record)
            self._rows[user_id] = reset_row
            return stored.model_copy(deep=True)

    def _append_history(self, record: PeriodHistoryRecord) -> PeriodHistoryRecord:
        with self._history_lock:
            stored = record.model_copy(update={"id": self._next_history_id})
            self._next_history_id += 1
            self._history.append(stored)
            return stored

    def list_history(
        self,
        user_ids: Optional[Iterable[int]] = None,
        limit: Optional[int] = None,
    ) -> List[PeriodHistoryRecord]:
        wanted = set(user_ids) if user_ids is not None else None
        with self._history_lock:
            records = [
                record.model_copy(deep=True)
                for record in self._history
                if wanted is None or record.user_id in wanted
            ]
        records.sort(key=lambda record: (record.period_end, record.id or 0), reverse=True)
        if limit is not None:
            records = records[:limit]
        return records
