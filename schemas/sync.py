"""
Pydantic schemas for sync runs, batches and aggregate statistics
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from models.base import SyncStatus


class BatchSnapshot(BaseModel):
    """Point-in-time view of a batch's counters"""
    batch_id: str
    name: Optional[str] = None
    total_jobs: int = 0
    pending_jobs: int = 0
    failed_jobs: int = 0
    processed_jobs: int = 0
    created_jobs: int = 0
    updated_jobs: int = 0
    skipped_jobs: int = 0
    chunk_count: int = 0
    progress: int = Field(0, ge=0, le=100, description="Percentage of units in a terminal state")
    finished: bool = False
    cancelled: bool = False
    timed_out: bool = False

    @classmethod
    def from_batch(cls, batch) -> "BatchSnapshot":
        return cls(
            batch_id=batch.id,
            name=batch.name,
            total_jobs=batch.total_jobs,
            pending_jobs=batch.pending_jobs,
            failed_jobs=batch.failed_jobs,
            processed_jobs=batch.processed_jobs,
            created_jobs=batch.created_jobs,
            updated_jobs=batch.updated_jobs,
            skipped_jobs=batch.skipped_jobs,
            chunk_count=batch.chunk_count,
            progress=batch.progress,
            finished=batch.finished,
            cancelled=batch.cancelled,
        )

    @property
    def terminal(self) -> bool:
        return self.finished or self.cancelled

    def run_stats(self) -> Dict[str, int]:
        """Absolute ledger counters derived from the batch counters."""
        return {
            "products_created": self.created_jobs,
            "products_updated": self.updated_jobs,
            "products_skipped": self.skipped_jobs,
            "products_failed": self.failed_jobs,
        }


class SyncRunResponse(BaseModel):
    """Response model for one sync run"""
    id: int
    sync_type: str
    status: SyncStatus
    total_products_fetched: int = 0
    products_created: int = 0
    products_updated: int = 0
    products_skipped: int = 0
    products_failed: int = 0
    total_batches: int = 0
    batch_id: Optional[str] = None
    error_message: Optional[str] = None
    sync_options: Optional[Dict[str, Any]] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    duration_formatted: str = "N/A"
    success_rate: float = 0.0

    class Config:
        from_attributes = True
        use_enum_values = True


class SyncStatsSummary(BaseModel):
    """Aggregate over all runs started within a recency window"""
    days: int
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    success_rate: float = Field(0.0, ge=0, le=100, description="Success rate percentage")
    total_products: int = 0
    total_created: int = 0
    total_updated: int = 0
    total_failed: int = 0
    avg_duration_seconds: float = 0.0


class SyncTriggerRequest(BaseModel):
    """Operator request to start a sync run"""
    batch_size: Optional[int] = Field(None, ge=1, le=10000)
    source_url: Optional[str] = None
    sync_type: str = "manual_sync"


class SyncDispatchResult(BaseModel):
    """Returned as soon as the batch has been scheduled"""
    run_id: int
    batch_id: Optional[str] = None
    total_products: int
    total_batches: int
    status: str = "dispatched"
    message: str = "Products are being processed in the background"
