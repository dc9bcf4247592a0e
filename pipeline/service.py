# ============================================================================
# File: pipeline/service.py
# Description: Catalog sync orchestrator (fetch -> chunk -> dispatch -> audit)
# ============================================================================
"""
Catalog sync service - wires one sync run end to end.

This module provides the run-level orchestration with:
- One SyncRun per invocation, threaded through every ledger call by handle
- Fatal handling of fetch failures (run failed, notifier called, re-raised)
- Fire-and-forget dispatch of the fetched records as one batch
- Ledger counters copied from the batch's own counters on every transition
- Exactly one notification per run, delivered on a best-effort basis
"""

import logging
import math
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.database import async_session_maker
from core.exceptions import FetchFailure, SyncException
from models.base import SyncType
from pipeline.assets import AssetIngestor
from pipeline.coordinator import BatchCallbacks, BatchCoordinator
from pipeline.fetcher import CatalogFetcher
from pipeline.ledger import RunHandle, RunLedger
from pipeline.notifier import SyncNotifier, build_notifier
from pipeline.upsert import UpsertEngine
from schemas.sync import BatchSnapshot, SyncDispatchResult

logger = logging.getLogger(__name__)


class CatalogSyncService:
    """
    Catalog sync orchestrator

    Responsibilities:
    - Record the run lifecycle in the RunLedger
    - Fetch the catalog and hand it to the BatchCoordinator
    - Finalize the run from the batch's terminal transition
    - Hand the final report to the notifier once
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        fetcher: Optional[CatalogFetcher] = None,
        asset_ingestor: Optional[AssetIngestor] = None,
        engine: Optional[UpsertEngine] = None,
        coordinator: Optional[BatchCoordinator] = None,
        ledger: Optional[RunLedger] = None,
        notifier: Optional[SyncNotifier] = None
    ):
        self.session_factory = session_factory or async_session_maker
        self.fetcher = fetcher or CatalogFetcher()
        self.engine = engine or UpsertEngine(self.session_factory, asset_ingestor or AssetIngestor())
        self.coordinator = coordinator or BatchCoordinator(self.session_factory, self.engine)
        self.ledger = ledger or RunLedger(self.session_factory)
        self.notifier = notifier if notifier is not None else build_notifier()

    async def sync(
        self,
        sync_type: str = SyncType.FULL.value,
        batch_size: Optional[int] = None,
        source_url: Optional[str] = None
    ) -> SyncDispatchResult:
        """
        Start one sync run and return as soon as its batch is scheduled.

        Args:
            sync_type: Run kind recorded in the ledger
            batch_size: Records per chunk (defaults to SYNC_BATCH_SIZE)
            source_url: Catalog endpoint override

        Returns:
            Dispatch summary; follow the batch with ProgressMonitor or the
            coordinator's BatchHandle

        Raises:
            FetchFailure: the catalog could not be fetched (the run is
                recorded as failed first)
            ValueError: batch_size is not positive
        """
        batch_size = batch_size or settings.SYNC_BATCH_SIZE
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")

        fetcher = self.fetcher.for_url(source_url) if source_url else self.fetcher
        run = await self.ledger.start(
            sync_type,
            {"batch_size": batch_size, "source_url": fetcher.source_url}
        )

        try:
            records = await fetcher.fetch()
        except FetchFailure as e:
            logger.error(f"Sync run {run.run_id} aborted: {e.message}", extra={"error_context": e.to_dict()})
            await self._finish(run, None, error_message=e.message)
            raise

        total_batches = math.ceil(len(records) / batch_size)
        await self.ledger.update(run, {
            "total_products_fetched": len(records),
            "total_batches": total_batches,
        })

        if not records:
            logger.warning(f"Sync run {run.run_id}: source returned no products")

        try:
            handle = await self.coordinator.submit(
                records,
                batch_size,
                callbacks=self._callbacks(run)
            )
        except Exception as e:
            failure = SyncException(
                "Failed to dispatch product batch",
                context={"run_id": run.run_id, "total_products": len(records)},
                original_exception=e
            )
            logger.error(str(failure), extra={"error_context": failure.to_dict()})
            await self._finish(run, None, error_message=failure.message)
            raise failure

        await self.ledger.update(run, {"batch_id": handle.id})

        logger.info(
            f"Sync run {run.run_id}: dispatched {len(records)} products "
            f"in {total_batches} batches (batch {handle.id})"
        )
        return SyncDispatchResult(
            run_id=run.run_id,
            batch_id=handle.id,
            total_products=len(records),
            total_batches=total_batches
        )

    def _callbacks(self, run: RunHandle) -> BatchCallbacks:
        async def on_progress(snapshot: BatchSnapshot) -> None:
            await self.ledger.update(run, self._batch_stats(snapshot))

        async def on_finally(snapshot: BatchSnapshot) -> None:
            if snapshot.cancelled:
                await self._finish(run, snapshot, error_message=f"Batch {snapshot.batch_id} was cancelled")
            else:
                await self._finish(run, snapshot)

        return BatchCallbacks(on_progress=on_progress, on_finally=on_finally)

    async def _finish(
        self,
        run: RunHandle,
        snapshot: Optional[BatchSnapshot],
        error_message: Optional[str] = None
    ) -> None:
        stats = self._batch_stats(snapshot) if snapshot is not None else {}

        if error_message is None:
            finished = await self.ledger.complete(run, stats)
        else:
            finished = await self.ledger.fail(run, error_message, stats)

        if finished:
            await self._notify(run, snapshot)

    async def _notify(self, run: RunHandle, snapshot: Optional[BatchSnapshot]) -> None:
        try:
            sync_run = await self.ledger.get(run.run_id)
            if sync_run is None:
                logger.warning(f"Run {run.run_id} vanished before notification")
                return
            await self.notifier.notify(sync_run, snapshot)
        except Exception as e:
            logger.error(f"Notification for run {run.run_id} failed: {e}")

    @staticmethod
    def _batch_stats(snapshot: BatchSnapshot) -> dict:
        stats = snapshot.run_stats()
        stats["batch_id"] = snapshot.batch_id
        return stats
