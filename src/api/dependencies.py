from __future__ import annotations

from functools import lru_cache

from src.core.config import get_settings
from src.repositories.memory_user_stats_repository import InMemoryUserStatsStore
from src.repositories.user_directory_repository import (
    InMemoryUserDirectory,
    SupabaseUserDirectory,
    UserDirectory,
)
from src.repositories.user_stats_repository import SupabaseUserStatsStore
from src.repositories.user_stats_store import UserStatsStore
from src.services.stats_archival_service import StatsArchivalService
from src.services.stats_sweep_scheduler import StatsSweepScheduler
from src.services.stats_view_service import StatsViewService
from src.services.user_stats_service import UserStatsService
from src.shared.time import Clock, SystemClock


@lru_cache
def get_clock() -> Clock:
    return SystemClock(get_settings().stats_timezone)


@lru_cache
def get_user_stats_store() -> UserStatsStore:
    if get_settings().stats_store_backend == "memory":
        return InMemoryUserStatsStore()
    return SupabaseUserStatsStore()


@lru_cache
def get_user_directory() -> UserDirectory:
    if get_settings().stats_store_backend == "memory":
        return InMemoryUserDirectory()
    return SupabaseUserDirectory()


def get_stats_archival_service() -> StatsArchivalService:
    return StatsArchivalService(store=get_user_stats_store(), clock=get_clock())


def get_user_stats_service() -> UserStatsService:
    return UserStatsService(
        store=get_user_stats_store(),
        archival_service=get_stats_archival_service(),
        clock=get_clock(),
    )


def get_stats_view_service() -> StatsViewService:
    return StatsViewService(
        store=get_user_stats_store(),
        stats_service=get_user_stats_service(),
        archival_service=get_stats_archival_service(),
        directory=get_user_directory(),
    )


def get_stats_sweep_scheduler() -> StatsSweepScheduler:
    return StatsSweepScheduler(
        archival_service=get_stats_archival_service(),
        interval_seconds=get_settings().stats_sweep_interval_seconds,
    )
