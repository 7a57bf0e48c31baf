from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import ConfigDict, Field

from src.shared.base import BaseSchema


class UserStatsDaily(BaseSchema):
    leads: int = 0
    conversions: int = 0
    payments: int = 0
    amount: int = 0
    commissions: int = 0


class UserStatsTotals(BaseSchema):
    leads_received: int = 0
    leads_converted: int = 0
    payments_processed: int = 0
    payments_amount: int = 0
    commissions_earned: int = 0
    conversion_rate: float = 0.0


class UserStatsCounters(UserStatsTotals):
    user_id: int
    period_start: datetime
    period_end: datetime
    updated_at: Optional[datetime] = None
    daily_data: Dict[str, UserStatsDaily] = Field(default_factory=dict)


class UserStatsCurrentView(BaseSchema):
    scope: str = Field(pattern="^(user|team|all)$")
    user_id: Optional[int] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    totals: UserStatsTotals
    members: List[UserStatsCounters] = Field(default_factory=list)


class UserStatsHistoryItem(UserStatsTotals):
    id: Optional[int] = None
    user_id: int
    period_start: datetime
    period_end: datetime
    daily_data: Dict[str, UserStatsDaily] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class UserStatsOverviewRow(UserStatsTotals):
    user_id: int
    username: Optional[str] = None
    full_name: Optional[str] = None
    role: Optional[str] = None
    period_start: datetime
    period_end: datetime


class UserStatsOverview(BaseSchema):
    totals: UserStatsTotals
    user_count: int
    by_user: List[UserStatsOverviewRow] = Field(default_factory=list)


class StatsSweepResult(BaseSchema):
    status: str
    checked_count: int
    archived_count: int
    failed_user_ids: List[int] = Field(default_factory=list)
    ran_at: datetime


class LeadIncrementRequest(BaseSchema):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    count: int = 1


class PaymentIncrementRequest(BaseSchema):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    # Minor units (cents).
    amount: int
    rate: Optional[Decimal] = None
