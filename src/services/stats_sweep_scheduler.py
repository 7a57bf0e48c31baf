from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.services.stats_archival_service import StatsArchivalService

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "user_stats_archive_sweep"


class StatsSweepScheduler:
    """Process-wide timer that archives every elapsed period.

    Reads and writes also roll periods over lazily, so a late or skipped sweep only
    delays archival of users nobody touched.
    """

    def __init__(
        self,
        archival_service: StatsArchivalService,
        interval_seconds: int = 3600,
        scheduler: Optional[BackgroundScheduler] = None,
    ) -> None:
        self.archival_service = archival_service
        self.interval_seconds = interval_seconds
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)

    def run_once(self) -> None:
        try:
            result = self.archival_service.archive_and_reset_all()
        except Exception:
            logger.exception("stats sweep failed")
            return
        if result.failed_user_ids:
            logger.error("stats sweep left users unarchived: %s", result.failed_user_ids)

    def start(self) -> None:
        if self.scheduler.running:
            return
        self.scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=SWEEP_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            # Catch up on periods that elapsed while the process was down.
            next_run_time=datetime.now(timezone.utc),
        )
        self.scheduler.start()
        logger.info("stats sweep scheduled every %ss", self.interval_seconds)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
