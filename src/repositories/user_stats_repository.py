from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from src.core.errors import StorageFailureError
from src.core.supabase import SupabaseClient, supabase_errors
from src.models.user_stats import CounterDelta, PeriodHistoryRecord, UserCountersRecord

MAX_QUERY_ROWS = 5000
IN_FILTER_CHUNK_SIZE = 100

COUNTERS_SELECT = (
    "id,user_id,period_start,period_end,leads_received,leads_converted,payments_processed,"
    "payments_amount,commissions_earned,daily_data,is_active,created_at,updated_at"
)
HISTORY_SELECT = (
    "id,user_id,period_start,period_end,leads_received,leads_converted,payments_processed,"
    "payments_amount,commissions_earned,daily_data,created_at"
)


def _rows_from_payload(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return [row for row in payload if isinstance(row, dict) and row.get("user_id") is not None]
    if isinstance(payload, dict) and payload.get("user_id") is not None:
        return [payload]
    return []


class SupabaseUserStatsStore:
    """PostgREST-backed store; atomic writes are Postgres functions called via rpc.

    The functions are defined in supabase/migrations/0001_user_stats.sql.
    """

    def __init__(self, client: Optional[SupabaseClient] = None) -> None:
        self.client = client or SupabaseClient()

    @staticmethod
    def _to_iso_utc(dt: datetime) -> str:
        return dt.astimezone(timezone.utc).isoformat()

    @staticmethod
    def _user_id_chunks(user_ids: Iterable[int]) -> List[Tuple[int, ...]]:
        normalized = sorted({int(user_id) for user_id in user_ids})
        return [
            tuple(normalized[start : start + IN_FILTER_CHUNK_SIZE])
            for start in range(0, len(normalized), IN_FILTER_CHUNK_SIZE)
        ]

    def get_active(self, user_id: int) -> Optional[UserCountersRecord]:
        with supabase_errors("get_active"):
            rows, _ = self.client.select(
                table="user_stats",
                select=COUNTERS_SELECT,
                filters=[("user_id", f"eq.{user_id}"), ("is_active", "eq.true")],
                limit=1,
            )
        return UserCountersRecord.model_validate(rows[0]) if rows else None

    def list_active(self, user_ids: Optional[Iterable[int]] = None) -> List[UserCountersRecord]:
        if user_ids is None:
            filter_sets: List[List[Tuple[str, str]]] = [[("is_active", "eq.true")]]
        else:
            filter_sets = [
                [
                    ("is_active", "eq.true"),
                    ("user_id", f"in.({','.join(str(user_id) for user_id in chunk)})"),
                ]
                for chunk in self._user_id_chunks(user_ids)
            ]
        records: List[UserCountersRecord] = []
        for filters in filter_sets:
            with supabase_errors("list_active"):
                rows, _ = self.client.select(
                    table="user_stats",
                    select=COUNTERS_SELECT,
                    filters=filters,
                    order="user_id.asc",
                    limit=MAX_QUERY_ROWS,
                )
            records.extend(UserCountersRecord.model_validate(row) for row in rows)
        return records

    def list_due(self, now: datetime) -> List[UserCountersRecord]:
        with supabase_errors("list_due"):
            rows, _ = self.client.select(
                table="user_stats",
                select=COUNTERS_SELECT,
                filters=[
                    ("is_active", "eq.true"),
                    ("period_end", f"lte.{self._to_iso_utc(now)}"),
                ],
                order="user_id.asc",
                limit=MAX_QUERY_ROWS,
            )
        return [UserCountersRecord.model_validate(row) for row in rows]

    def create_active(
        self,
        user_id: int,
        period_start: datetime,
        period_end: datetime,
        now: datetime,
    ) -> UserCountersRecord:
        with supabase_errors("create_active"):
            payload = self.client.rpc(
                "user_stats_create_active_v1",
                payload={
                    "p_user_id": user_id,
                    "p_period_start": self._to_iso_utc(period_start),
                    "p_period_end": self._to_iso_utc(period_end),
                    "p_now": self._to_iso_utc(now),
                },
            )
        rows = _rows_from_payload(payload)
        if not rows:
            raise StorageFailureError(f"create_active returned no row for user {user_id}")
        return UserCountersRecord.model_validate(rows[0])

    def apply_increment(
        self,
        user_id: int,
        delta: CounterDelta,
        now: datetime,
        day_key: str,
    ) -> Optional[UserCountersRecord]:
        with supabase_errors("apply_increment"):
            payload = self.client.rpc(
                "user_stats_apply_increment_v1",
                payload={
                    "p_user_id": user_id,
                    "p_now": self._to_iso_utc(now),
                    "p_day": day_key,
                    "p_leads_received": delta.leads_received,
                    "p_leads_converted": delta.leads_converted,
                    "p_payments_processed": delta.payments_processed,
                    "p_payments_amount": delta.payments_amount,
                    "p_commissions_earned": delta.commissions_earned,
                },
            )
        rows = _rows_from_payload(payload)
        return UserCountersRecord.model_validate(rows[0]) if rows else None

    def archive_and_reset(
        self,
        user_id: int,
        now: datetime,
        next_start: datetime,
        next_end: datetime,
    ) -> Optional[PeriodHistoryRecord]:
        with supabase_errors("archive_and_reset"):
            payload = self.client.rpc(
                "user_stats_archive_and_reset_v1",
                payload={
                    "p_user_id": user_id,
                    "p_now": self._to_iso_utc(now),
                    "p_next_start": self._to_iso_utc(next_start),
                    "p_next_end": self._to_iso_utc(next_end),
                },
            )
        rows = _rows_from_payload(payload)
        return PeriodHistoryRecord.model_validate(rows[0]) if rows else None

    def list_history(
        self,
        user_ids: Optional[Iterable[int]] = None,
        limit: Optional[int] = None,
    ) -> List[PeriodHistoryRecord]:
        row_limit = min(limit, MAX_QUERY_ROWS) if limit is not None else MAX_QUERY_ROWS
        if user_ids is None:
            filter_sets: List[List[Tuple[str, str]]] = [[]]
        else:
            filter_sets = [
                [("user_id", f"in.({','.join(str(user_id) for user_id in chunk)})")]
                for chunk in self._user_id_chunks(user_ids)
            ]
        records: List[PeriodHistoryRecord] = []
        for filters in filter_sets:
            with supabase_errors("list_history"):
                rows, _ = self.client.select(
                    table="user_stats_history",
                    select=HISTORY_SELECT,
                    filters=filters,
                    order="period_end.desc,id.desc",
                    limit=row_limit,
                )
            records.extend(PeriodHistoryRecord.model_validate(row) for row in rows)
        records.sort(key=lambda record: (record.period_end, record.id or 0), reverse=True)
        return records[:row_limit]
