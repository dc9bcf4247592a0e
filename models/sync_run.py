from sqlalchemy import Column, String, DateTime, Integer, Text, Index, JSON
from datetime import timedelta
from core.database import utcnow
from models.base import Base, BigIntegerPK, SyncStatus, value_enum


class SyncRun(Base):
    """
    Audit trail entry for one invocation of the sync pipeline.

    Lifecycle:
    - created in ``started`` state by RunLedger.start()
    - counters overwritten while the batch progresses
    - exactly one terminal transition to ``completed`` or ``failed``, which
      stamps completed_at and duration_seconds
    """
    __tablename__ = "sync_runs"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)

    sync_type = Column(String(50), nullable=False)  # full_sync, manual_sync, scheduled_sync
    status = Column(value_enum(SyncStatus), default=SyncStatus.STARTED, nullable=False)

    # Statistics
    total_products_fetched = Column(Integer, nullable=False, default=0)
    products_created = Column(Integer, nullable=False, default=0)
    products_updated = Column(Integer, nullable=False, default=0)
    products_skipped = Column(Integer, nullable=False, default=0)
    products_failed = Column(Integer, nullable=False, default=0)
    total_batches = Column(Integer, nullable=False, default=0)

    # Correlation with the dispatched batch
    batch_id = Column(String(36), nullable=True)

    error_message = Column(Text, nullable=True)
    sync_options = Column(JSON, nullable=True)  # batch size, source URL

    # Timestamps
    started_at = Column(DateTime, nullable=False, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_sync_runs_type_status", "sync_type", "status"),
        Index("idx_sync_runs_started", "started_at"),
        Index("idx_sync_runs_batch", "batch_id"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (SyncStatus.COMPLETED, SyncStatus.FAILED)

    @property
    def duration(self):
        """Elapsed time derived from the timestamps, None while running."""
        if self.completed_at is None or self.started_at is None:
            return None
        return max(self.completed_at - self.started_at, timedelta(0))

    @property
    def duration_formatted(self) -> str:
        if not self.duration_seconds:
            return "N/A"

        hours, remainder = divmod(int(self.duration_seconds), 3600)
        minutes, seconds = divmod(remainder, 60)

        if hours > 0:
            return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
        return f"{minutes:02d}:{seconds:02d}"

    @property
    def success_rate(self) -> float:
        """Share of processed products that were written, as a percentage."""
        written = (self.products_created or 0) + (self.products_updated or 0)
        failed = self.products_failed or 0

        if written + failed == 0:
            return 0.0

        return round(written / (written + failed) * 100, 2)
