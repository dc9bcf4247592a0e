"""
Catalog synchronization pipeline.

Modules:
    fetcher: CatalogFetcher, retrieves the full product list from the source API
    assets: AssetIngestor, downloads and stores product images locally
    upsert: UpsertEngine, idempotent create-or-update of one product
    coordinator: BatchCoordinator, chunks records and runs them as units of work
    ledger: RunLedger, audit trail and statistics of sync runs
    monitor: ProgressMonitor, bounded observation of a batch's progress
    notifier: final report delivery (log or e-mail)
    service: CatalogSyncService, wires one run end to end
    scheduler: APScheduler job for periodic syncs
    cli: operator commands (typer)

Data flow:
    CatalogFetcher → BatchCoordinator → UpsertEngine (→ AssetIngestor)
    → RunLedger → ProgressMonitor → notifier

Usage:
    from pipeline.service import CatalogSyncService

    service = CatalogSyncService()
    result = await service.sync(batch_size=50)
    snapshot = await ProgressMonitor(service.coordinator).watch(result.batch_id)
"""

__all__ = [
    "CatalogFetcher",
    "AssetIngestor",
    "UpsertEngine",
    "BatchCoordinator",
    "RunLedger",
    "ProgressMonitor",
    "CatalogSyncService",
    "SyncScheduler",
]
