from __future__ import annotations

from datetime import date
from typing import Dict

from fastapi import APIRouter

from src.core.config import get_settings
from src.shared.response import Meta, ResponseEnvelope


router = APIRouter(tags=["health"])


def _system_meta() -> Meta:
    return Meta(
        as_of_date=date.today().isoformat(),
        source="system",
        time_window="now",
        calculation_version="v1",
    )


@router.get("/health")
def health_check() -> ResponseEnvelope[Dict[str, object]]:
    settings = get_settings()
    data = {
        "status": "ok",
        "store_backend": settings.stats_store_backend,
        "reset_period": settings.stats_reset_period,
        "sweep_enabled": settings.stats_sweep_enabled,
    }
    return ResponseEnvelope(data=data, meta=_system_meta())


@router.get("/healthz")
def health_check_liveness() -> ResponseEnvelope[Dict[str, object]]:
    return ResponseEnvelope(data={"status": "ok"}, meta=_system_meta())
