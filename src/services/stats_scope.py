from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from src.core.errors import ForbiddenError

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_AGENT = "agent"


@dataclass(frozen=True)
class Requester:
    user_id: int
    role: str = ROLE_AGENT
    managed_user_ids: FrozenSet[int] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass(frozen=True)
class StatsScope:
    """Set of user ids a requester may read; ``unrestricted`` means any user."""

    requester_id: int
    unrestricted: bool
    allowed_user_ids: FrozenSet[int]

    def allows(self, user_id: int) -> bool:
        return self.unrestricted or user_id in self.allowed_user_ids


def resolve_stats_scope(
    role: Optional[str],
    requester_id: int,
    managed_user_ids: Iterable[int] = (),
) -> StatsScope:
    normalized_role = (role or ROLE_AGENT).strip().lower()
    if normalized_role == ROLE_ADMIN:
        return StatsScope(requester_id=requester_id, unrestricted=True, allowed_user_ids=frozenset())
    if normalized_role == ROLE_MANAGER:
        return StatsScope(
            requester_id=requester_id,
            unrestricted=False,
            allowed_user_ids=frozenset({requester_id, *managed_user_ids}),
        )
    # Agents and unknown roles only see themselves.
    return StatsScope(
        requester_id=requester_id,
        unrestricted=False,
        allowed_user_ids=frozenset({requester_id}),
    )


def scope_for(requester: Requester) -> StatsScope:
    return resolve_stats_scope(requester.role, requester.user_id, requester.managed_user_ids)


def ensure_allowed(scope: StatsScope, target_user_id: int) -> None:
    if not scope.allows(target_user_id):
        logger.warning(
            "stats access denied requester=%s target=%s", scope.requester_id, target_user_id
        )
        raise ForbiddenError("Access to this user's statistics is not allowed")
