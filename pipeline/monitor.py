"""
Follow a batch until it finishes, is cancelled, or the attempt budget runs out.
"""

import asyncio
import logging
from typing import Callable, Optional

from core.config import settings
from pipeline.coordinator import BatchCoordinator
from schemas.sync import BatchSnapshot

logger = logging.getLogger(__name__)

SnapshotObserver = Callable[[BatchSnapshot], None]


class ProgressMonitor:
    """
    Bounded observer of a batch's progress.

    Snapshots come from the persisted batch row, so any process can watch a
    batch by id. When the batch runs in this process, the monitor waits on
    the batch handle's change signal instead of sleeping blindly; the poll
    interval then only acts as a timeout.

    The percentage handed to observers never goes backwards, even if a poll
    races a concurrent counter update.
    """

    def __init__(
        self,
        coordinator: BatchCoordinator,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None
    ):
        self.coordinator = coordinator
        self.interval = interval if interval is not None else settings.MONITOR_INTERVAL
        self.max_attempts = max_attempts if max_attempts is not None else settings.MONITOR_MAX_ATTEMPTS
        self._last_progress = 0

    async def poll(self, batch_id: str) -> BatchSnapshot:
        """
        One snapshot of the batch with a monotonic percentage.

        Raises:
            BatchNotFoundError: unknown batch id
        """
        snapshot = await self.coordinator.snapshot(batch_id)
        if snapshot.progress < self._last_progress:
            snapshot = snapshot.model_copy(update={"progress": self._last_progress})
        self._last_progress = snapshot.progress
        return snapshot

    async def watch(
        self,
        batch_id: str,
        on_snapshot: Optional[SnapshotObserver] = None
    ) -> BatchSnapshot:
        """
        Poll until the batch is terminal or ``max_attempts`` intervals passed.

        An attempt is one ``interval`` of waiting, so the budget is
        ``interval * max_attempts`` however many snapshots an in-process
        batch publishes in between.

        Returns:
            The terminal snapshot, or the last partial one with
            ``timed_out=True`` when the budget was exhausted
        """
        self._last_progress = 0
        handle = self.coordinator.get_handle(batch_id)
        loop = asyncio.get_running_loop()
        attempt = 1
        attempt_ends = loop.time() + self.interval

        while True:
            snapshot = await self.poll(batch_id)
            self._emit(on_snapshot, snapshot)

            if snapshot.terminal:
                logger.info(
                    f"Batch {batch_id} {'cancelled' if snapshot.cancelled else 'finished'} "
                    f"at {snapshot.progress}% after {attempt} attempt(s)"
                )
                return snapshot

            if handle is None:
                if attempt >= self.max_attempts:
                    break
                await asyncio.sleep(self.interval)
                attempt += 1
                continue

            if loop.time() >= attempt_ends:
                if attempt >= self.max_attempts:
                    break
                attempt += 1
                attempt_ends = loop.time() + self.interval

            await handle.wait_for_change(max(attempt_ends - loop.time(), 0))

        logger.warning(
            f"Stopped monitoring batch {batch_id} after {self.max_attempts} attempts "
            f"at {snapshot.progress}%"
        )
        return snapshot.model_copy(update={"timed_out": True})

    @staticmethod
    def _emit(on_snapshot: Optional[SnapshotObserver], snapshot: BatchSnapshot) -> None:
        if on_snapshot is None:
            return
        try:
            on_snapshot(snapshot)
        except Exception:
            logger.exception("Progress observer failed")
