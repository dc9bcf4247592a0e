from sqlalchemy import Column, String, Integer, DateTime
from core.database import utcnow
from models.base import Base


class SyncBatch(Base):
    """
    Persisted counters for one dispatched batch of units of work.

    The row is the authoritative progress record: units decrement
    pending_jobs atomically as they reach a terminal state, so any process
    can observe (or cancel) the batch by its id.
    """
    __tablename__ = "sync_batches"

    id = Column(String(36), primary_key=True)  # uuid4 correlation id
    name = Column(String(255), nullable=False)

    total_jobs = Column(Integer, nullable=False, default=0)
    pending_jobs = Column(Integer, nullable=False, default=0)
    failed_jobs = Column(Integer, nullable=False, default=0)

    # Per-outcome counters feeding the run ledger
    created_jobs = Column(Integer, nullable=False, default=0)
    updated_jobs = Column(Integer, nullable=False, default=0)
    skipped_jobs = Column(Integer, nullable=False, default=0)

    chunk_size = Column(Integer, nullable=False, default=0)
    chunk_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    cancelled_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    @property
    def processed_jobs(self) -> int:
        return self.total_jobs - self.pending_jobs

    @property
    def progress(self) -> int:
        """Percentage of units that reached a terminal state (0-100)."""
        if self.total_jobs <= 0:
            return 100 if self.finished else 0
        return int(self.processed_jobs * 100 / self.total_jobs)

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    @property
    def cancelled(self) -> bool:
        return self.cancelled_at is not None
