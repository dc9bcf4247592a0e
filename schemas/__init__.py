"""
Pydantic schemas for data validation and serialization.

Schemas:
    catalog: SourceRecord (fetched catalog entry) and catalog item responses
    sync: Batch snapshots, sync run responses and aggregate statistics
    api: Health and error response models

Usage:
    from schemas.catalog import SourceRecord
    from schemas.sync import BatchSnapshot, SyncStatsSummary

Example:
    record = SourceRecord(
        id=1,
        title="  Fjallraven Backpack ",
        price=109.95,
        category="men's clothing",
        rating={"rate": 3.9, "count": 120},
    )
    assert record.id == "1"
    assert record.title == "Fjallraven Backpack"
"""

__all__ = [
    "SourceRecord",
    "Rating",
    "CatalogItemResponse",
    "CatalogPage",
    "BatchSnapshot",
    "SyncRunResponse",
    "SyncStatsSummary",
    "SyncTriggerRequest",
    "SyncDispatchResult",
    "HealthCheckResponse",
]
