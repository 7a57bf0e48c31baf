from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from src.analytics.stats_periods import compute_current_period
from src.analytics.user_stats import conversion_rate, sum_counters
from src.core.errors import ForbiddenError, InvalidInputError
from src.models.user_stats import PeriodHistoryRecord, UserCountersRecord
from src.repositories.user_directory_repository import UserDirectory
from src.repositories.user_stats_store import UserStatsStore
from src.schemas.user_stats import (
    UserStatsCounters,
    UserStatsCurrentView,
    UserStatsDaily,
    UserStatsHistoryItem,
    UserStatsOverview,
    UserStatsOverviewRow,
    UserStatsTotals,
)
from src.services.stats_archival_service import StatsArchivalService
from src.services.stats_scope import Requester, ensure_allowed, scope_for
from src.services.user_stats_service import UserStatsService


def _to_totals(values: Dict[str, int]) -> UserStatsTotals:
    return UserStatsTotals(
        **values,
        conversion_rate=conversion_rate(values["leads_received"], values["leads_converted"]),
    )


def to_counters_schema(row: UserCountersRecord) -> UserStatsCounters:
    return UserStatsCounters(
        user_id=row.user_id,
        period_start=row.period_start,
        period_end=row.period_end,
        leads_received=row.leads_received,
        leads_converted=row.leads_converted,
        payments_processed=row.payments_processed,
        payments_amount=row.payments_amount,
        commissions_earned=row.commissions_earned,
        conversion_rate=conversion_rate(row.leads_received, row.leads_converted),
        updated_at=row.updated_at,
        daily_data={key: UserStatsDaily(**value.model_dump()) for key, value in row.daily_data.items()},
    )


def _to_history_item(record: PeriodHistoryRecord) -> UserStatsHistoryItem:
    return UserStatsHistoryItem(
        id=record.id,
        user_id=record.user_id,
        period_start=record.period_start,
        period_end=record.period_end,
        leads_received=record.leads_received,
        leads_converted=record.leads_converted,
        payments_processed=record.payments_processed,
        payments_amount=record.payments_amount,
        commissions_earned=record.commissions_earned,
        conversion_rate=conversion_rate(record.leads_received, record.leads_converted),
        daily_data={
            key: UserStatsDaily(**value.model_dump()) for key, value in record.daily_data.items()
        },
        created_at=record.created_at,
    )


class StatsViewService:
    def __init__(
        self,
        store: UserStatsStore,
        stats_service: UserStatsService,
        archival_service: StatsArchivalService,
        directory: UserDirectory,
    ) -> None:
        self.store = store
        self.stats_service = stats_service
        self.archival_service = archival_service
        self.directory = directory

    def resolve_requester(self, user_id: int) -> Requester:
        entry = self.directory.get_user(user_id)
        if entry is None or not entry.active:
            raise ForbiddenError("Unknown or inactive user")
        return Requester(
            user_id=entry.user_id,
            role=entry.role,
            managed_user_ids=frozenset(entry.managed_user_ids),
        )

    def _empty_counters(self, user_id: int, now: datetime) -> UserCountersRecord:
        period_start, period_end = compute_current_period(now, self.archival_service.reset_period)
        return UserCountersRecord(user_id=user_id, period_start=period_start, period_end=period_end)

    def _current_rows(self, user_ids: Iterable[int], now: datetime) -> List[UserCountersRecord]:
        rows: List[UserCountersRecord] = []
        for user_id in sorted(set(user_ids)):
            row = self.stats_service.get_current(user_id, now)
            rows.append(row if row is not None else self._empty_counters(user_id, now))
        return rows

    def _all_current_rows(self, now: datetime) -> List[UserCountersRecord]:
        self.archival_service.archive_and_reset_all(now)
        return self.store.list_active()

    def get_current_view(
        self,
        requester: Requester,
        target_user_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> UserStatsCurrentView:
        now = now or self.stats_service.clock.now()
        scope = scope_for(requester)
        if target_user_id is not None:
            ensure_allowed(scope, target_user_id)
            return self._single_view(self._current_rows([target_user_id], now)[0])

        if scope.unrestricted:
            rows = self._all_current_rows(now)
            scope_label = "all"
        else:
            rows = self._current_rows(scope.allowed_user_ids, now)
            if len(rows) == 1:
                return self._single_view(rows[0])
            scope_label = "team"

        period_start, period_end = compute_current_period(now, self.archival_service.reset_period)
        return UserStatsCurrentView(
            scope=scope_label,
            user_id=None,
            period_start=period_start,
            period_end=period_end,
            totals=_to_totals(sum_counters(rows)),
            members=[to_counters_schema(row) for row in rows],
        )

    @staticmethod
    def _single_view(row: UserCountersRecord) -> UserStatsCurrentView:
        return UserStatsCurrentView(
            scope="user",
            user_id=row.user_id,
            period_start=row.period_start,
            period_end=row.period_end,
            totals=_to_totals(sum_counters([row])),
            members=[to_counters_schema(row)],
        )

    def get_history(
        self,
        requester: Requester,
        target_user_id: Optional[int] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[UserStatsHistoryItem]:
        if limit is not None and limit <= 0:
            raise InvalidInputError("History limit must be positive")
        now = now or self.stats_service.clock.now()
        scope = scope_for(requester)
        if target_user_id is not None:
            ensure_allowed(scope, target_user_id)
            user_ids: Optional[List[int]] = [target_user_id]
        elif scope.unrestricted:
            user_ids = None
        else:
            user_ids = sorted(scope.allowed_user_ids)

        # An elapsed period must show up in history as soon as anyone looks.
        if user_ids is None:
            self.archival_service.archive_and_reset_all(now)
        else:
            for user_id in user_ids:
                self.stats_service.get_current(user_id, now)

        records = self.store.list_history(user_ids=user_ids, limit=limit)
        return [_to_history_item(record) for record in records]

    def get_overview(
        self, requester: Requester, now: Optional[datetime] = None
    ) -> UserStatsOverview:
        if not requester.is_admin:
            raise ForbiddenError("Statistics overview is restricted to administrators")
        now = now or self.stats_service.clock.now()
        rows = self._all_current_rows(now)
        users = {entry.user_id: entry for entry in self.directory.list_users(row.user_id for row in rows)}
        by_user: List[UserStatsOverviewRow] = []
        for row in rows:
            entry = users.get(row.user_id)
            by_user.append(
                UserStatsOverviewRow(
                    user_id=row.user_id,
                    username=entry.username if entry else None,
                    full_name=entry.full_name if entry else None,
                    role=entry.role if entry else None,
                    period_start=row.period_start,
                    period_end=row.period_end,
                    leads_received=row.leads_received,
                    leads_converted=row.leads_converted,
                    payments_processed=row.payments_processed,
                    payments_amount=row.payments_amount,
                    commissions_earned=row.commissions_earned,
                    conversion_rate=conversion_rate(row.leads_received, row.leads_converted),
                )
            )
        return UserStatsOverview(
            totals=_to_totals(sum_counters(rows)),
            user_count=len(rows),
            by_user=by_user,
        )
