import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from core.exceptions import SyncException
from models.base import SyncType
from pipeline.service import CatalogSyncService

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, service: CatalogSyncService, interval_minutes: Optional[int] = None):
        self.service = service
        self.interval_minutes = interval_minutes or settings.SYNC_SCHEDULE_MINUTES
        self.scheduler = AsyncIOScheduler()

    async def run_sync_job(self):
        """Job to dispatch a scheduled catalog sync"""
        logger.info("Scheduler: Starting catalog sync job")
        try:
            result = await self.service.sync(sync_type=SyncType.SCHEDULED.value)
            logger.info(
                f"Scheduler: dispatched run {result.run_id} "
                f"({result.total_products} products, batch {result.batch_id})"
            )
        except SyncException as e:
            logger.error(f"Scheduler: catalog sync job failed - {e.message}")

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="catalog_sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info(f"Sync scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Sync scheduler stopped")
