from __future__ import annotations

from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from src.core.supabase import SupabaseClient, supabase_errors
from src.models.user_stats import UserDirectoryEntry

MAX_QUERY_ROWS = 5000
USER_SELECT = "id,username,full_name,role,active,manager_id"


# Team membership is owned by the user directory; stats code only reads it.
@runtime_checkable
class UserDirectory(Protocol):
    def get_user(self, user_id: int) -> Optional[UserDirectoryEntry]:
        """Return the user with the ids of the users they manage."""
        ...

    def list_users(self, user_ids: Optional[Iterable[int]] = None) -> List[UserDirectoryEntry]:
        """Return users, all of them when ``user_ids`` is None."""
        ...


def _build_entries(rows: List[Dict[str, Any]]) -> List[UserDirectoryEntry]:
    managed: Dict[int, List[int]] = defaultdict(list)
    for row in rows:
        manager_id = row.get("manager_id")
        if manager_id is not None and row.get("id") is not None:
            managed[int(manager_id)].append(int(row["id"]))
    entries: List[UserDirectoryEntry] = []
    for row in rows:
        if row.get("id") is None:
            continue
        user_id = int(row["id"])
        entries.append(
            UserDirectoryEntry(
                user_id=user_id,
                username=str(row.get("username") or ""),
                full_name=row.get("full_name") or None,
                role=str(row.get("role") or "agent").lower(),
                active=bool(row.get("active", True)),
                managed_user_ids=sorted(managed.get(user_id, [])),
            )
        )
    return entries


class SupabaseUserDirectory:
    def __init__(self, client: Optional[SupabaseClient] = None) -> None:
        self.client = client or SupabaseClient()

    def get_user(self, user_id: int) -> Optional[UserDirectoryEntry]:
        with supabase_errors("get_user"):
            rows, _ = self.client.select(
                table="users",
                select=USER_SELECT,
                filters=[("id", f"eq.{user_id}")],
                limit=1,
            )
            if not rows:
                return None
            team_rows, _ = self.client.select(
                table="users",
                select=USER_SELECT,
                filters=[("manager_id", f"eq.{user_id}"), ("active", "eq.true")],
                limit=MAX_QUERY_ROWS,
            )
        entries = _build_entries(rows + team_rows)
        return next((entry for entry in entries if entry.user_id == user_id), None)

    def list_users(self, user_ids: Optional[Iterable[int]] = None) -> List[UserDirectoryEntry]:
        with supabase_errors("list_users"):
            rows, _ = self.client.select(
                table="users",
                select=USER_SELECT,
                order="id.asc",
                limit=MAX_QUERY_ROWS,
            )
        entries = _build_entries(rows)
        if user_ids is None:
            return entries
        wanted = set(user_ids)
        return [entry for entry in entries if entry.user_id in wanted]


class InMemoryUserDirectory:
    def __init__(self, users: Optional[Iterable[UserDirectoryEntry]] = None) -> None:
        self._users: Dict[int, UserDirectoryEntry] = {}
        for user in users or []:
            self.add_user(user)

    def add_user(self, user: UserDirectoryEntry) -> None:
        self._users[user.user_id] = user

    def get_user(self, user_id: int) -> Optional[UserDirectoryEntry]:
        return self._users.get(user_id)

    def list_users(self, user_ids: Optional[Iterable[int]] = None) -> List[UserDirectoryEntry]:
        if user_ids is None:
            return [self._users[key] for key in sorted(self._users)]
        return [self._users[key] for key in sorted(set(user_ids)) if key in self._users]
