"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class and shared enums (SyncStatus, SyncType, SyncOutcome)
    catalog: Category and CatalogItem, the reconciled local catalog
    sync_run: SyncRun audit trail, one row per pipeline invocation
    sync_batch: SyncBatch, persisted progress counters of a dispatched batch

Usage:
    from models.base import Base, SyncStatus
    from models.catalog import CatalogItem, Category
    from models.sync_run import SyncRun
    from models.sync_batch import SyncBatch

Relationships:
    - Category → CatalogItem (one-to-many, by category_id)
    - SyncRun → SyncBatch (correlated by batch_id, no foreign key)
"""

from models.base import Base, SyncStatus, SyncType, SyncOutcome
from models.catalog import Category, CatalogItem
from models.sync_run import SyncRun
from models.sync_batch import SyncBatch

__all__ = [
    "Base",
    "SyncStatus",
    "SyncType",
    "SyncOutcome",
    "Category",
    "CatalogItem",
    "SyncRun",
    "SyncBatch",
]
