"""
Run ledger - audit trail of sync runs.

Every pipeline invocation owns one SyncRun through an explicit RunHandle
returned by start(). Writes after start() are best-effort: a failed audit
write is logged and swallowed so it can never fail the reconciliation itself.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.database import utcnow
from core.exceptions import LedgerWriteFailure
from models.base import SyncStatus
from models.sync_run import SyncRun
from schemas.sync import SyncStatsSummary

logger = logging.getLogger(__name__)

STAT_FIELDS = (
    "total_products_fetched",
    "products_created",
    "products_updated",
    "products_skipped",
    "products_failed",
    "total_batches",
    "batch_id",
)

OUTCOME_FIELDS = ("products_created", "products_updated", "products_skipped", "products_failed")


@dataclass(frozen=True)
class RunHandle:
    """Reference to the SyncRun owned by one pipeline invocation."""
    run_id: int
    sync_type: str
    started_at: datetime


class RunLedger:
    """
    Record the lifecycle of sync runs and answer history queries.

    Terminal transitions (complete/fail) are conditional updates on
    ``status = 'started'``: the first one wins, any later call is a no-op
    that logs a warning and returns False.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def start(self, sync_type: str, options: Optional[Dict[str, Any]] = None) -> RunHandle:
        """
        Create a SyncRun in ``started`` state.

        Raises:
            LedgerWriteFailure: the run row could not be created
        """
        started_at = utcnow()
        try:
            async with self.session_factory() as session:
                run = SyncRun(
                    sync_type=sync_type,
                    status=SyncStatus.STARTED,
                    started_at=started_at,
                    sync_options=options or {}
                )
                session.add(run)
                await session.commit()
                run_id = run.id
        except SQLAlchemyError as e:
            raise LedgerWriteFailure(
                "Failed to create sync run",
                context={"sync_type": sync_type, "operation": "start"},
                original_exception=e
            )

        logger.info(f"Sync started: run {run_id} ({sync_type}), options={options or {}}")
        return RunHandle(run_id=run_id, sync_type=sync_type, started_at=started_at)

    async def update(self, handle: Optional[RunHandle], stats: Dict[str, Any]) -> bool:
        """
        Overwrite stat fields of a run that is still in progress.

        When ``stats`` carries every outcome counter, the write is skipped if
        the run already holds more processed products, so a snapshot that
        arrives late never moves the counters backwards.
        """
        if handle is None:
            return False

        values = self._stat_values(stats)
        if not values:
            return False

        stmt = (
            update(SyncRun)
            .where(SyncRun.id == handle.run_id, SyncRun.status == SyncStatus.STARTED)
            .values(**values)
        )
        if all(field in values for field in OUTCOME_FIELDS):
            processed = sum(values[field] for field in OUTCOME_FIELDS)
            stmt = stmt.where(sum(getattr(SyncRun, field) for field in OUTCOME_FIELDS) <= processed)

        updated = await self._write(handle, "update", stmt)
        if updated:
            logger.debug(f"Sync stats updated for run {handle.run_id}: {values}")
        return updated

    async def complete(self, handle: Optional[RunHandle], stats: Optional[Dict[str, Any]] = None) -> bool:
        """Terminal transition to ``completed``; True only for the first terminal call."""
        if handle is None:
            return False
        return await self._finish(handle, SyncStatus.COMPLETED, stats or {})

    async def fail(
        self,
        handle: Optional[RunHandle],
        error_message: str,
        stats: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Terminal transition to ``failed`` with a human-readable message."""
        if handle is None:
            return False
        return await self._finish(handle, SyncStatus.FAILED, stats or {}, error_message)

    async def get(self, run_id: int) -> Optional[SyncRun]:
        async with self.session_factory() as session:
            return await session.get(SyncRun, run_id)

    async def latest(self) -> Optional[SyncRun]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncRun).order_by(SyncRun.started_at.desc(), SyncRun.id.desc()).limit(1)
            )
            return result.scalar_one_or_none()

    async def recent(
        self,
        days: int = 7,
        status: Optional[SyncStatus] = None,
        sync_type: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[SyncRun]:
        """Runs started within the last ``days`` days, newest first."""
        query = select(SyncRun).where(SyncRun.started_at >= self._window_start(days))

        if status is not None:
            query = query.where(SyncRun.status == SyncStatus(status))
        if sync_type:
            query = query.where(SyncRun.sync_type == sync_type)

        query = query.order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
        if limit:
            query = query.limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def stats(self, days: int = 30) -> SyncStatsSummary:
        """Aggregate outcome counters over runs started within the window."""
        window = SyncRun.started_at >= self._window_start(days)

        async with self.session_factory() as session:
            totals = (await session.execute(
                select(
                    func.count(SyncRun.id),
                    func.sum(case((SyncRun.status == SyncStatus.COMPLETED, 1), else_=0)),
                    func.sum(case((SyncRun.status == SyncStatus.FAILED, 1), else_=0)),
                    func.sum(SyncRun.total_products_fetched),
                    func.sum(SyncRun.products_created),
                    func.sum(SyncRun.products_updated),
                    func.sum(SyncRun.products_failed),
                ).where(window)
            )).one()

            avg_duration = (await session.execute(
                select(func.avg(SyncRun.duration_seconds)).where(
                    window,
                    SyncRun.duration_seconds > 0
                )
            )).scalar()

        total, successful, failed, fetched, created, updated_count, failed_items = totals
        total = total or 0
        successful = successful or 0

        return SyncStatsSummary(
            days=days,
            total_syncs=total,
            successful_syncs=successful,
            failed_syncs=failed or 0,
            success_rate=round(successful / total * 100, 2) if total > 0 else 0.0,
            total_products=fetched or 0,
            total_created=created or 0,
            total_updated=updated_count or 0,
            total_failed=failed_items or 0,
            avg_duration_seconds=round(float(avg_duration or 0), 2)
        )

    # ------------------------------------------------------------------

    async def _finish(
        self,
        handle: RunHandle,
        status: SyncStatus,
        stats: Dict[str, Any],
        error_message: Optional[str] = None
    ) -> bool:
        completed_at = utcnow()
        duration = max(0, int((completed_at - handle.started_at).total_seconds()))

        values = self._stat_values(stats)
        values.update(status=status, completed_at=completed_at, duration_seconds=duration)
        if error_message is not None:
            values["error_message"] = error_message

        finished = await self._write(
            handle,
            status.value,
            update(SyncRun)
            .where(SyncRun.id == handle.run_id, SyncRun.status == SyncStatus.STARTED)
            .values(**values)
        )

        if not finished:
            logger.warning(
                f"Ignoring {status.value} for run {handle.run_id}: "
                f"run is already terminal or could not be written"
            )
            return False

        if status == SyncStatus.FAILED:
            logger.error(f"Sync failed: run {handle.run_id} after {duration}s - {error_message}")
        else:
            logger.info(f"Sync completed: run {handle.run_id} in {duration}s, final stats={stats}")
        return True

    async def _write(self, handle: RunHandle, operation: str, stmt) -> bool:
        try:
            async with self.session_factory() as session:
                result = await session.execute(stmt.execution_options(synchronize_session=False))
                await session.commit()
                return result.rowcount > 0
        except SQLAlchemyError as e:
            failure = LedgerWriteFailure(
                f"Failed to {operation} sync run",
                context={"run_id": handle.run_id, "operation": operation},
                original_exception=e
            )
            logger.error(str(failure), extra={"error_context": failure.to_dict()})
            return False

    @staticmethod
    def _stat_values(stats: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in stats.items() if key in STAT_FIELDS}

    @staticmethod
    def _window_start(days: int) -> datetime:
        return utcnow() - timedelta(days=days)
