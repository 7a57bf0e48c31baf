from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from src.core.errors import ConflictError, StorageFailureError
from src.models.user_stats import CounterDelta
from src.repositories.user_directory_repository import SupabaseUserDirectory
from src.repositories.user_stats_repository import SupabaseUserStatsStore
from src.repositories.user_stats_store import UserStatsStore


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def counters_row(**overrides: Any) -> Dict[str, Any]:
    row = {
        "id": 11,
        "user_id": 7,
        "period_start": "2025-06-01T00:00:00+00:00",
        "period_end": "2025-06-16T00:00:00+00:00",
        "leads_received": 3,
        "leads_converted": 1,
        "payments_processed": 1,
        "payments_amount": 12980,
        "commissions_earned": 1402,
        "daily_data": {"2025-06-10": {"leads": 3, "conversions": 1, "payments": 1, "amount": 12980, "commissions": 1402}},
        "is_active": True,
        "created_at": "2025-06-10T09:00:00+00:00",
        "updated_at": "2025-06-10T09:30:00+00:00",
    }
    row.update(overrides)
    return row


def http_error(status_code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://example.supabase.co/rest/v1/rpc/fn")
    response = httpx.Response(status_code, request=request)
    return httpx.HTTPStatusError("failed", request=request, response=response)


class StubSupabaseClient:
    def __init__(self) -> None:
        self.rpc_calls: List[Tuple[str, Dict[str, Any]]] = []
        self.select_calls: List[Dict[str, Any]] = []
        self.rpc_result: Any = None
        self.select_rows: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None

    def select(self, table: str, select: str, **kwargs: Any) -> Tuple[List[Dict[str, Any]], Optional[int]]:
        if self.error is not None:
            raise self.error
        self.select_calls.append({"table": table, "select": select, **kwargs})
        return self.select_rows, None

    def rpc(self, function: str, payload: Dict[str, Any]) -> Any:
        if self.error is not None:
            raise self.error
        self.rpc_calls.append((function, payload))
        return self.rpc_result


def test_store_satisfies_protocol() -> None:
    assert isinstance(SupabaseUserStatsStore(client=StubSupabaseClient()), UserStatsStore)


def test_apply_increment_calls_rpc_with_utc_times() -> None:
    client = StubSupabaseClient()
    client.rpc_result = [counters_row(leads_received=4)]
    store = SupabaseUserStatsStore(client=client)

    row = store.apply_increment(
        7,
        CounterDelta(leads_received=1),
        datetime.fromisoformat("2025-06-10T11:30:00+02:00"),
        "2025-06-10",
    )

    function, payload = client.rpc_calls[0]
    assert function == "user_stats_apply_increment_v1"
    assert payload["p_now"] == "2025-06-10T09:30:00+00:00"
    assert payload["p_day"] == "2025-06-10"
    assert payload["p_leads_received"] == 1
    assert row.leads_received == 4
    assert row.daily_data["2025-06-10"].amount == 12980


def test_apply_increment_on_elapsed_period_returns_none() -> None:
    client = StubSupabaseClient()
    client.rpc_result = []
    store = SupabaseUserStatsStore(client=client)
    assert store.apply_increment(7, CounterDelta(leads_received=1), utc(2025, 6, 16), "2025-06-16") is None


def test_archive_returns_history_record() -> None:
    client = StubSupabaseClient()
    history = counters_row()
    history.pop("is_active")
    history.pop("updated_at")
    client.rpc_result = [history]
    store = SupabaseUserStatsStore(client=client)

    record = store.archive_and_reset(7, utc(2025, 6, 16, 0, 0, 1), utc(2025, 6, 16), utc(2025, 7, 1))

    function, payload = client.rpc_calls[0]
    assert function == "user_stats_archive_and_reset_v1"
    assert payload["p_next_end"] == "2025-07-01T00:00:00+00:00"
    assert record.commissions_earned == 1402
    assert record.period_end == utc(2025, 6, 16)


def test_list_active_chunks_user_filter() -> None:
    client = StubSupabaseClient()
    store = SupabaseUserStatsStore(client=client)
    store.list_active(range(1, 251))
    assert len(client.select_calls) == 3
    first_filters = dict(client.select_calls[0]["filters"])
    assert first_filters["user_id"].startswith("in.(1,2,3")


def test_conflict_status_maps_to_conflict_error() -> None:
    client = StubSupabaseClient()
    client.error = http_error(409)
    store = SupabaseUserStatsStore(client=client)
    with pytest.raises(ConflictError):
        store.archive_and_reset(7, utc(2025, 6, 16), utc(2025, 6, 16), utc(2025, 7, 1))


@pytest.mark.parametrize(
    "error",
    [http_error(500), httpx.ConnectError("connection refused")],
)
def test_transport_failures_map_to_storage_failure(error: Exception) -> None:
    client = StubSupabaseClient()
    client.error = error
    with pytest.raises(StorageFailureError):
        SupabaseUserStatsStore(client=client).get_active(7)
    with pytest.raises(StorageFailureError):
        SupabaseUserDirectory(client=client).list_users()


def test_directory_derives_team_from_manager_column() -> None:
    client = StubSupabaseClient()
    client.select_rows = [
        {"id": 5, "username": "manager", "full_name": "Max", "role": "Manager", "active": True, "manager_id": None},
        {"id": 7, "username": "agent7", "full_name": None, "role": "agent", "active": True, "manager_id": 5},
        {"id": 8, "username": "agent8", "full_name": None, "role": "agent", "active": True, "manager_id": 5},
    ]
    users = SupabaseUserDirectory(client=client).list_users()
    manager = next(user for user in users if user.user_id == 5)
    assert manager.role == "manager"
    assert manager.managed_user_ids == [7, 8]
