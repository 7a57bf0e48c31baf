from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class DailyCounters(BaseModel):
    leads: int = 0
    conversions: int = 0
    payments: int = 0
    amount: int = 0
    commissions: int = 0


class CounterDelta(BaseModel):
    leads_received: int = 0
    leads_converted: int = 0
    payments_processed: int = 0
    payments_amount: int = 0
    commissions_earned: int = 0

    def as_daily(self) -> DailyCounters:
        return DailyCounters(
            leads=self.leads_received,
            conversions=self.leads_converted,
            payments=self.payments_processed,
            amount=self.payments_amount,
            commissions=self.commissions_earned,
        )


class UserCountersRecord(BaseModel):
    id: Optional[int] = None
    user_id: int
    period_start: datetime
    period_end: datetime
    leads_received: int = 0
    leads_converted: int = 0
    payments_processed: int = 0
    # Money fields are integer minor units (cents).
    payments_amount: int = 0
    commissions_earned: int = 0
    daily_data: Dict[str, DailyCounters] = Field(default_factory=dict)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PeriodHistoryRecord(BaseModel):
    id: Optional[int] = None
    user_id: int
    period_start: datetime
    period_end: datetime
    leads_received: int = 0
    leads_converted: int = 0
    payments_processed: int = 0
    payments_amount: int = 0
    commissions_earned: int = 0
    daily_data: Dict[str, DailyCounters] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class UserDirectoryEntry(BaseModel):
    user_id: int
    username: str
    full_name: Optional[str] = None
    role: str = "agent"
    active: bool = True
    managed_user_ids: List[int] = Field(default_factory=list)
