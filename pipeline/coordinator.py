"""
Batch coordinator - chunk fetched records and run them as independent units.

This module provides fire-and-forget batch dispatch with:
- Contiguous chunking of the record set (ceil(n / chunk_size) chunks)
- One unit of work per record, bounded by a worker semaphore and a timeout
- Persisted, atomically updated batch counters (total/pending/failed)
- Cooperative cancellation checked by every unit before it does any work
- A batch state machine: pending -> {succeeded, failed, cancelled} -> finalized
"""

import asyncio
import enum
import inspect
import logging
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import settings
from core.database import utcnow
from core.exceptions import BatchNotFoundError, ItemFailure
from models.base import SyncOutcome
from models.sync_batch import SyncBatch
from pipeline.upsert import UpsertEngine
from schemas.catalog import SourceRecord
from schemas.sync import BatchSnapshot

logger = logging.getLogger(__name__)

BatchHook = Callable[[BatchSnapshot], Awaitable[None]]


def chunk_records(records: Sequence[Any], chunk_size: int) -> List[List[Any]]:
    """Partition ``records`` into contiguous chunks of at most ``chunk_size``."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [list(records[i:i + chunk_size]) for i in range(0, len(records), chunk_size)]


class BatchState(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"
    FINALIZED = "finalized"


class UnitState(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


_BATCH_TRANSITIONS = {
    BatchState.PENDING: {BatchState.SUCCEEDED, BatchState.FAILED, BatchState.CANCELLED},
    BatchState.SUCCEEDED: {BatchState.FINALIZED},
    BatchState.FAILED: {BatchState.FINALIZED},
    BatchState.CANCELLED: {BatchState.FINALIZED},
    BatchState.FINALIZED: set(),
}

_OUTCOME_UNIT_STATE = {
    SyncOutcome.CREATED: UnitState.SUCCEEDED,
    SyncOutcome.UPDATED: UnitState.SUCCEEDED,
    SyncOutcome.SKIPPED: UnitState.SKIPPED,
    SyncOutcome.FAILED: UnitState.FAILED,
}

_OUTCOME_COUNTER = {
    SyncOutcome.CREATED: "created_jobs",
    SyncOutcome.UPDATED: "updated_jobs",
    SyncOutcome.SKIPPED: "skipped_jobs",
    SyncOutcome.FAILED: "failed_jobs",
}


@dataclass
class BatchCallbacks:
    """
    Observers of a batch's transitions.

    on_progress fires after every unit; the others fire at most once, at the
    matching state transition. Errors raised by a hook are logged, never
    propagated into the batch.
    """
    on_progress: Optional[BatchHook] = None
    on_success: Optional[BatchHook] = None
    on_failure: Optional[BatchHook] = None
    on_cancel: Optional[BatchHook] = None
    on_finally: Optional[BatchHook] = None


class BatchHandle:
    """In-process view of a dispatched batch."""

    def __init__(self, batch_id: str, name: str, total_jobs: int, chunk_count: int):
        self.id = batch_id
        self.name = name
        self.total_jobs = total_jobs
        self.chunk_count = chunk_count
        self.state = BatchState.PENDING
        self.unit_states: Dict[int, UnitState] = {i: UnitState.PENDING for i in range(total_jobs)}
        self.last_snapshot: Optional[BatchSnapshot] = None

        self._cancel_requested = False
        self._changed = asyncio.Event()
        self._done = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def request_cancel(self) -> None:
        self._cancel_requested = True

    def advance(self, target: BatchState) -> bool:
        """Move the state machine forward; refuse repeated or backward moves."""
        if target not in _BATCH_TRANSITIONS[self.state]:
            return False
        self.state = target
        return True

    def mark_unit(self, index: int, state: UnitState) -> bool:
        """Record a unit's terminal state once; later reports are ignored."""
        if self.unit_states.get(index, UnitState.PENDING) != UnitState.PENDING:
            return False
        self.unit_states[index] = state
        return True

    def publish(self, snapshot: BatchSnapshot) -> None:
        self.last_snapshot = snapshot
        self._changed.set()

    def resolve(self, snapshot: BatchSnapshot) -> None:
        self.publish(snapshot)
        self._done.set()

    async def wait_for_change(self, timeout: float) -> bool:
        """Block until a new snapshot is published or ``timeout`` elapses."""
        try:
            await asyncio.wait_for(self._changed.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False
        finally:
            self._changed.clear()

    async def wait(self, timeout: Optional[float] = None) -> BatchSnapshot:
        """Wait until the batch is finalized and return its final snapshot."""
        await asyncio.wait_for(self._done.wait(), timeout)
        return self.last_snapshot


class BatchCoordinator:
    """
    Dispatch records as units of work and track the batch they belong to.

    Responsibilities:
    - Persist one SyncBatch per submit() and return immediately
    - Run units concurrently, isolating failures and timeouts
    - Keep the batch counters authoritative and free of double counting
    - Drive the batch state machine and its callbacks
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        engine: UpsertEngine,
        max_concurrency: Optional[int] = None,
        unit_timeout: Optional[float] = None,
        keep_finished: Optional[int] = None
    ):
        self.session_factory = session_factory
        self.engine = engine
        self.max_concurrency = max(1, max_concurrency or settings.SYNC_MAX_CONCURRENCY)
        self.unit_timeout = unit_timeout if unit_timeout is not None else settings.UNIT_TIMEOUT
        self._handles: Dict[str, BatchHandle] = {}
        self._finished: Deque[str] = deque()
        self.keep_finished = max(0, keep_finished if keep_finished is not None else settings.FINISHED_BATCH_HANDLES)
        self._tasks: set = set()

    async def submit(
        self,
        records: Sequence[SourceRecord],
        chunk_size: int,
        name: Optional[str] = None,
        callbacks: Optional[BatchCallbacks] = None
    ) -> BatchHandle:
        """
        Schedule every record as one unit of work under a new batch id.

        Returns as soon as the batch row exists and the background task has
        been created; use BatchHandle.wait() or ProgressMonitor to follow it.
        """
        chunks = chunk_records(records, chunk_size)
        batch_id = str(uuid.uuid4())
        name = name or f"Product Sync - {utcnow():%Y-%m-%d %H:%M:%S}"

        async with self.session_factory() as session:
            session.add(SyncBatch(
                id=batch_id,
                name=name,
                total_jobs=len(records),
                pending_jobs=len(records),
                failed_jobs=0,
                chunk_size=chunk_size,
                chunk_count=len(chunks),
                created_at=utcnow()
            ))
            await session.commit()

        handle = BatchHandle(batch_id, name, len(records), len(chunks))
        self._handles[batch_id] = handle

        task = asyncio.create_task(
            self._run_batch(handle, chunks, callbacks or BatchCallbacks()),
            name=f"sync-batch-{batch_id}"
        )
        handle._task = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            f"Batch {batch_id} dispatched: {len(records)} units in {len(chunks)} chunks "
            f"of {chunk_size}"
        )
        return handle

    def get_handle(self, batch_id: str) -> Optional[BatchHandle]:
        return self._handles.get(batch_id)

    async def snapshot(self, batch_id: str) -> BatchSnapshot:
        """Read the persisted counters of a batch."""
        async with self.session_factory() as session:
            batch = await session.get(SyncBatch, batch_id)
            if batch is None:
                raise BatchNotFoundError(batch_id)
            return BatchSnapshot.from_batch(batch)

    async def cancel(self, batch_id: str) -> BatchSnapshot:
        """
        Flag a batch as cancelled.

        Units that have not started yet skip their work; units in flight
        finish normally and nothing already written is rolled back.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(SyncBatch)
                .where(
                    SyncBatch.id == batch_id,
                    SyncBatch.cancelled_at.is_(None),
                    SyncBatch.finished_at.is_(None)
                )
                .values(cancelled_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        handle = self._handles.get(batch_id)
        if handle is not None:
            handle.request_cancel()

        snapshot = await self.snapshot(batch_id)
        if result.rowcount:
            logger.warning(f"Batch {batch_id} cancelled with {snapshot.pending_jobs} units pending")
        else:
            logger.info(f"Batch {batch_id} already finished or cancelled; nothing to cancel")
        return snapshot

    async def shutdown(self) -> None:
        """Cancel in-process batch tasks (application shutdown)."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Batch execution
    # ------------------------------------------------------------------

    async def _run_batch(
        self,
        handle: BatchHandle,
        chunks: List[List[SourceRecord]],
        callbacks: BatchCallbacks
    ) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        units = []
        index = 0

        for chunk_number, chunk in enumerate(chunks, start=1):
            logger.info(
                f"Scheduling chunk {chunk_number}/{len(chunks)} of batch {handle.id} "
                f"({len(chunk)} products)"
            )
            for record in chunk:
                units.append(self._run_unit(handle, index, chunk_number, record, semaphore, callbacks))
                index += 1

        try:
            await asyncio.gather(*units)
        finally:
            await self._finalize(handle, callbacks)

    async def _run_unit(
        self,
        handle: BatchHandle,
        index: int,
        chunk_number: int,
        record: SourceRecord,
        semaphore: asyncio.Semaphore,
        callbacks: BatchCallbacks
    ) -> None:
        async with semaphore:
            if await self._is_cancelled(handle):
                outcome = SyncOutcome.SKIPPED
            else:
                logger.debug(
                    f"Processing {record.title!r} (unit {index + 1}/{handle.total_jobs}, "
                    f"chunk {chunk_number}, batch {handle.id})"
                )
                outcome = await self._process(handle, record)

        snapshot = await self._record_outcome(handle, index, outcome)
        if snapshot is not None:
            handle.publish(snapshot)
            await self._fire("on_progress", callbacks.on_progress, snapshot)

    async def _process(self, handle: BatchHandle, record: SourceRecord) -> SyncOutcome:
        try:
            return await asyncio.wait_for(self.engine.process(record), timeout=self.unit_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            failure = ItemFailure(
                f"Failed to process product {record.title!r}",
                context={"external_id": record.id, "title": record.title, "batch_id": handle.id},
                original_exception=e
            )
            logger.error(str(failure), extra={"error_context": failure.to_dict()})
            return SyncOutcome.FAILED

    async def _is_cancelled(self, handle: BatchHandle) -> bool:
        if handle.cancel_requested:
            return True

        try:
            async with self.session_factory() as session:
                batch = await session.get(SyncBatch, handle.id)
                if batch is not None and batch.cancelled:
                    handle.request_cancel()
                    return True
        except SQLAlchemyError as e:
            logger.warning(f"Could not read cancellation flag of batch {handle.id}: {e}")

        return False

    async def _record_outcome(
        self,
        handle: BatchHandle,
        index: int,
        outcome: SyncOutcome
    ) -> Optional[BatchSnapshot]:
        if not handle.mark_unit(index, _OUTCOME_UNIT_STATE[outcome]):
            logger.warning(f"Ignoring repeated completion of unit {index} in batch {handle.id}")
            return None

        counter = _OUTCOME_COUNTER[outcome]
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(SyncBatch)
                    .where(SyncBatch.id == handle.id)
                    .values({
                        SyncBatch.pending_jobs: SyncBatch.pending_jobs - 1,
                        getattr(SyncBatch, counter): getattr(SyncBatch, counter) + 1,
                    })
                    .execution_options(synchronize_session=False)
                )
                await session.commit()

                batch = await session.get(SyncBatch, handle.id)
                return BatchSnapshot.from_batch(batch)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record {outcome.value} for unit {index} of batch {handle.id}: {e}")
            return None

    async def _finalize(self, handle: BatchHandle, callbacks: BatchCallbacks) -> None:
        snapshot = None
        try:
            async with self.session_factory() as session:
                await session.execute(
                    update(SyncBatch)
                    .where(SyncBatch.id == handle.id, SyncBatch.finished_at.is_(None))
                    .values(finished_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                await session.commit()

                batch = await session.get(SyncBatch, handle.id)
                snapshot = BatchSnapshot.from_batch(batch)
        except SQLAlchemyError as e:
            logger.error(f"Failed to finalize batch {handle.id}: {e}")

        if snapshot is None:
            snapshot = (handle.last_snapshot or BatchSnapshot(
                batch_id=handle.id,
                name=handle.name,
                total_jobs=handle.total_jobs,
                chunk_count=handle.chunk_count
            )).model_copy(update={"finished": True})

        try:
            if handle.cancel_requested or snapshot.cancelled:
                target, hook_name = BatchState.CANCELLED, "on_cancel"
            elif snapshot.failed_jobs > 0:
                target, hook_name = BatchState.FAILED, "on_failure"
            else:
                target, hook_name = BatchState.SUCCEEDED, "on_success"

            if handle.advance(target):
                await self._fire(hook_name, getattr(callbacks, hook_name), snapshot)

            if handle.advance(BatchState.FINALIZED):
                logger.info(
                    f"Batch {handle.id} finished ({target.value}): "
                    f"{snapshot.processed_jobs}/{snapshot.total_jobs} processed, "
                    f"{snapshot.failed_jobs} failed"
                )
                await self._fire("on_finally", callbacks.on_finally, snapshot)
        finally:
            handle.resolve(snapshot)
            self._retire(handle)

    def _retire(self, handle: BatchHandle) -> None:
        # Waiters already hold the handle; only the newest finished ones stay addressable by id
        self._finished.append(handle.id)
        while len(self._finished) > self.keep_finished:
            self._handles.pop(self._finished.popleft(), None)

    async def _fire(self, hook_name: str, hook: Optional[BatchHook], snapshot: BatchSnapshot) -> None:
        if hook is None:
            return
        try:
            result = hook(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Batch {snapshot.batch_id} {hook_name} hook failed")
