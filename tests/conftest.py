from __future__ import annotations

import os

os.environ["STATS_STORE_BACKEND"] = "memory"
os.environ["STATS_SWEEP_ENABLED"] = "false"
os.environ["STATS_TIMEZONE"] = "UTC"

from datetime import datetime, timezone
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from src.api.dependencies import (
    get_stats_archival_service,
    get_stats_view_service,
    get_user_stats_service,
)
from src.core.config import get_settings
from src.main import create_app
from src.models.user_stats import UserDirectoryEntry
from src.repositories.memory_user_stats_repository import InMemoryUserStatsStore
from src.repositories.user_directory_repository import InMemoryUserDirectory
from src.services.stats_archival_service import StatsArchivalService
from src.services.stats_view_service import StatsViewService
from src.services.user_stats_service import UserStatsService
from src.shared.time import FixedClock

ADMIN_ID = 1
MANAGER_ID = 5
AGENT_IDS = (7, 8, 9)


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 6, 10, 9, 30, tzinfo=timezone.utc))


@pytest.fixture()
def store() -> InMemoryUserStatsStore:
    return InMemoryUserStatsStore()


@pytest.fixture()
def directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory(
        [
            UserDirectoryEntry(user_id=ADMIN_ID, username="admin", full_name="Ada Admin", role="admin"),
            UserDirectoryEntry(
                user_id=MANAGER_ID,
                username="manager",
                full_name="Max Manager",
                role="manager",
                managed_user_ids=[7, 8],
            ),
            UserDirectoryEntry(user_id=7, username="agent7", full_name="Agent Seven", role="agent"),
            UserDirectoryEntry(user_id=8, username="agent8", full_name="Agent Eight", role="agent"),
            UserDirectoryEntry(user_id=9, username="agent9", full_name="Agent Nine", role="agent"),
            UserDirectoryEntry(user_id=10, username="gone", role="agent", active=False),
        ]
    )


@pytest.fixture()
def archival_service(store: InMemoryUserStatsStore, clock: FixedClock) -> StatsArchivalService:
    return StatsArchivalService(store=store, clock=clock, reset_period="half_month")


@pytest.fixture()
def stats_service(
    store: InMemoryUserStatsStore,
    archival_service: StatsArchivalService,
    clock: FixedClock,
) -> UserStatsService:
    return UserStatsService(store=store, archival_service=archival_service, clock=clock)


@pytest.fixture()
def view_service(
    store: InMemoryUserStatsStore,
    stats_service: UserStatsService,
    archival_service: StatsArchivalService,
    directory: InMemoryUserDirectory,
) -> StatsViewService:
    return StatsViewService(
        store=store,
        stats_service=stats_service,
        archival_service=archival_service,
        directory=directory,
    )


@pytest.fixture()
def client(
    archival_service: StatsArchivalService,
    stats_service: UserStatsService,
    view_service: StatsViewService,
) -> Iterator[TestClient]:
    get_settings.cache_clear()
    app = create_app()
    app.dependency_overrides[get_stats_archival_service] = lambda: archival_service
    app.dependency_overrides[get_user_stats_service] = lambda: stats_service
    app.dependency_overrides[get_stats_view_service] = lambda: view_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        get_settings.cache_clear()
