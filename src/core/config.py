from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Ignore unrelated env keys so local/dev .env can include optional integrations.
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "User Stats Backend"
    environment: str = "development"
    api_prefix: str = "/api/v1"
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    supabase_url: Optional[str] = Field(default=None, alias="SUPABASE_URL")
    supabase_service_role_key: Optional[str] = Field(
        default=None, alias="SUPABASE_SERVICE_ROLE_KEY"
    )
    supabase_anon_key: Optional[str] = Field(default=None, alias="SUPABASE_ANON_KEY")

    stats_store_backend: str = Field(
        default="supabase", alias="STATS_STORE_BACKEND", pattern="^(supabase|memory)$"
    )
    stats_timezone: str = Field(default="Europe/Paris", alias="STATS_TIMEZONE")
    stats_reset_period: str = Field(
        default="half_month", alias="STATS_RESET_PERIOD", pattern="^(daily|half_month|monthly)$"
    )
    # Matches the rate the lead/payment handlers have always applied; see DESIGN.md.
    stats_default_commission_rate: Decimal = Field(
        default=Decimal("0.108"), alias="STATS_DEFAULT_COMMISSION_RATE"
    )
    stats_lazy_init: bool = Field(default=True, alias="STATS_LAZY_INIT")
    stats_sweep_enabled: bool = Field(default=True, alias="STATS_SWEEP_ENABLED")
    stats_sweep_interval_seconds: int = Field(
        default=3600, alias="STATS_SWEEP_INTERVAL_SECONDS", ge=60
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_cors_origins() -> list[str]:
    settings = get_settings()
    return [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
