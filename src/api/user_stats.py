from __future__ import annotations

from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query

from src.api.dependencies import (
    get_stats_archival_service,
    get_stats_view_service,
    get_user_stats_service,
)
from src.core.config import get_settings
from src.core.errors import ForbiddenError, UnauthorizedError
from src.models.user_stats import UserCountersRecord
from src.schemas.user_stats import (
    LeadIncrementRequest,
    PaymentIncrementRequest,
    StatsSweepResult,
    UserStatsCounters,
    UserStatsCurrentView,
    UserStatsHistoryItem,
    UserStatsOverview,
)
from src.services.stats_archival_service import StatsArchivalService
from src.services.stats_scope import Requester
from src.services.stats_view_service import StatsViewService, to_counters_schema
from src.services.user_stats_service import UserStatsService
from src.shared.response import Meta, ResponseEnvelope

router = APIRouter(prefix="/user-stats", tags=["user-stats"])

USER_STATS_CALCULATION_VERSION = "v1"


def _build_meta(source: str) -> Meta:
    return Meta(
        as_of_date=date.today().isoformat(),
        source=source,
        time_window=get_settings().stats_reset_period,
        calculation_version=USER_STATS_CALCULATION_VERSION,
        generated_at=datetime.now(timezone.utc).isoformat(),
    )


def get_requester(
    x_user_id: Optional[int] = Header(default=None),
    view_service: StatsViewService = Depends(get_stats_view_service),
) -> Requester:
    # Identity is authenticated upstream; this layer only resolves role and team.
    if x_user_id is None:
        raise UnauthorizedError("X-User-Id header is required")
    return view_service.resolve_requester(x_user_id)


def require_admin(requester: Requester = Depends(get_requester)) -> Requester:
    if not requester.is_admin:
        raise ForbiddenError("Administrator role required")
    return requester


def _count(request: Optional[LeadIncrementRequest]) -> int:
    return request.count if request is not None else 1


def _counters_envelope(counters: UserCountersRecord) -> ResponseEnvelope[UserStatsCounters]:
    return ResponseEnvelope(data=to_counters_schema(counters), pagination=None, meta=_build_meta("user_stats"))


@router.get("/current")
def user_stats_current(
    user_id: Optional[int] = Query(default=None),
    requester: Requester = Depends(get_requester),
    service: StatsViewService = Depends(get_stats_view_service),
) -> ResponseEnvelope[UserStatsCurrentView]:
    data = service.get_current_view(requester, target_user_id=user_id)
    return ResponseEnvelope(data=data, pagination=None, meta=_build_meta("user_stats"))


@router.get("/current/{user_id}")
def user_stats_current_for_user(
    user_id: int,
    requester: Requester = Depends(get_requester),
    service: StatsViewService = Depends(get_stats_view_service),
) -> ResponseEnvelope[UserStatsCurrentView]:
    data = service.get_current_view(requester, target_user_id=user_id)
    return ResponseEnvelope(data=data, pagination=None, meta=_build_meta("user_stats"))


@router.get("/history")
def user_stats_history(
    user_id: Optional[int] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    requester: Requester = Depends(get_requester),
    service: StatsViewService = Depends(get_stats_view_service),
) -> ResponseEnvelope[List[UserStatsHistoryItem]]:
    data = service.get_history(requester, target_user_id=user_id, limit=limit)
    return ResponseEnvelope(data=data, pagination=None, meta=_build_meta("user_stats_history"))


@router.get("/history/{user_id}")
def user_stats_history_for_user(
    user_id: int,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    requester: Requester = Depends(get_requester),
    service: StatsViewService = Depends(get_stats_view_service),
) -> ResponseEnvelope[List[UserStatsHistoryItem]]:
    data = service.get_history(requester, target_user_id=user_id, limit=limit)
    return ResponseEnvelope(data=data, pagination=None, meta=_build_meta("user_stats_history"))


@router.get("/overview")
def user_stats_overview(
    requester: Requester = Depends(get_requester),
    service: StatsViewService = Depends(get_stats_view_service),
) -> ResponseEnvelope[UserStatsOverview]:
    data = service.get_overview(requester)
    return ResponseEnvelope(data=data, pagination=None, meta=_build_meta("user_stats,users"))


@router.post("/reset")
def user_stats_force_reset(
    _: Requester = Depends(require_admin),
    service: StatsArchivalService = Depends(get_stats_archival_service),
) -> ResponseEnvelope[StatsSweepResult]:
    result = service.force_reset_all()
    return ResponseEnvelope(data=result, pagination=None, meta=_build_meta("user_stats_archive"))


@router.post("/initialize/{user_id}")
def user_stats_initialize(
    user_id: int,
    _: Requester = Depends(require_admin),
    service: UserStatsService = Depends(get_user_stats_service),
) -> ResponseEnvelope[UserStatsCounters]:
    return _counters_envelope(service.initialize_user_stats(user_id))


@router.post("/increment-leads/{user_id}")
def user_stats_increment_leads(
    user_id: int,
    request: Optional[LeadIncrementRequest] = None,
    _: Requester = Depends(require_admin),
    service: UserStatsService = Depends(get_user_stats_service),
) -> ResponseEnvelope[UserStatsCounters]:
    return _counters_envelope(service.increment_leads_received(user_id, _count(request)))


@router.post("/increment-conversions/{user_id}")
def user_stats_increment_conversions(
    user_id: int,
    request: Optional[LeadIncrementRequest] = None,
    _: Requester = Depends(require_admin),
    service: UserStatsService = Depends(get_user_stats_service),
) -> ResponseEnvelope[UserStatsCounters]:
    return _counters_envelope(service.increment_leads_converted(user_id, _count(request)))


@router.post("/increment-payments/{user_id}")
def user_stats_increment_payments(
    user_id: int,
    request: PaymentIncrementRequest,
    _: Requester = Depends(require_admin),
    service: UserStatsService = Depends(get_user_stats_service),
) -> ResponseEnvelope[UserStatsCounters]:
    counters = service.increment_payments_processed(user_id, request.amount, rate=request.rate)
    return _counters_envelope(counters)
