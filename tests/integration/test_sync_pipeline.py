"""
End-to-end sync runs: fetch, dispatch, reconcile, audit and report
"""

import asyncio

import pytest
from sqlalchemy import func, select

from conftest import RecordingNotifier, ScriptedEngine, image_transport, run_to_completion
from core.exceptions import FetchFailure
from models.base import SyncStatus
from models.catalog import CatalogItem
from models.sync_run import SyncRun


def product(title, price, category="electronics", image=None, product_id=None):
    return {
        "id": product_id or abs(hash(title)) % 10000,
        "title": title,
        "price": price,
        "description": f"{title} description",
        "category": category,
        "image": image,
        "rating": {"rate": 4.5, "count": 10}
    }


async def prices(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(CatalogItem.title, CatalogItem.price).order_by(CatalogItem.title))
        return dict(result.all())


async def item_count(session_factory):
    async with session_factory() as session:
        return (await session.execute(select(func.count()).select_from(CatalogItem))).scalar()


@pytest.mark.asyncio
async def test_two_records_in_two_chunks(session_factory, build_service):
    service = build_service([product("A", 10), product("B", 20)])

    result, snapshot, run = await run_to_completion(service, batch_size=1)

    assert result.total_products == 2
    assert result.total_batches == 2
    assert snapshot.chunk_count == 2
    assert run.status == SyncStatus.COMPLETED
    assert run.total_products_fetched == 2
    assert run.total_batches == 2
    assert run.products_created == 2
    assert run.products_failed == 0
    assert run.batch_id == result.batch_id
    assert run.sync_options == {"batch_size": 1, "source_url": "https://catalog.test/products"}
    assert await prices(session_factory) == {"A": 10, "B": 20}


@pytest.mark.asyncio
async def test_changed_price_updates_existing_item(session_factory, build_service):
    await run_to_completion(build_service([product("A", 10)]))

    _, _, run = await run_to_completion(build_service([product("A", 15)]))

    assert run.status == SyncStatus.COMPLETED
    assert run.products_created == 0
    assert run.products_updated == 1
    assert await item_count(session_factory) == 1
    assert await prices(session_factory) == {"A": 15}


@pytest.mark.asyncio
async def test_rerun_on_unchanged_catalog_creates_nothing(session_factory, build_service, fakestore_products):
    _, _, first = await run_to_completion(build_service(fakestore_products), batch_size=2)
    _, _, second = await run_to_completion(build_service(fakestore_products), batch_size=2)

    assert first.products_created == 3
    assert second.products_created == 0
    assert second.products_updated == 3
    assert await item_count(session_factory) == 3


@pytest.mark.asyncio
async def test_duplicate_titles_keep_the_later_record(session_factory, build_service):
    service = build_service([product("A", 10, product_id=1), product("A", 12, product_id=2)])

    _, _, run = await run_to_completion(service, batch_size=10)

    assert run.products_created == 1
    assert run.products_updated == 1
    assert await item_count(session_factory) == 1
    assert await prices(session_factory) == {"A": 12}


@pytest.mark.asyncio
async def test_fetch_failure_records_failed_run(session_factory, build_service):
    notifier = RecordingNotifier()
    service = build_service({"error": "unavailable"}, status_code=503, notifier=notifier)

    with pytest.raises(FetchFailure) as exc_info:
        await service.sync(batch_size=10)

    assert exc_info.value.status_code == 503

    async with session_factory() as session:
        runs = (await session.execute(select(SyncRun))).scalars().all()

    assert len(runs) == 1
    run = runs[0]
    assert run.status == SyncStatus.FAILED
    assert run.error_message == "Failed to fetch products from API: 503"
    assert run.completed_at is not None
    assert run.duration_seconds >= 0
    assert run.batch_id is None

    assert len(notifier.reports) == 1
    reported_run, reported_snapshot = notifier.reports[0]
    assert reported_run.status == SyncStatus.FAILED
    assert reported_snapshot is None


@pytest.mark.asyncio
async def test_missing_image_falls_back_to_remote_url(session_factory, build_service):
    image = "https://fakestoreapi.com/img/missing.jpg"
    service = build_service([product("A", 10, image=image)], asset_transport=image_transport(status_code=404))

    _, _, run = await run_to_completion(service)

    assert run.status == SyncStatus.COMPLETED
    assert run.products_created == 1
    assert run.products_failed == 0

    async with session_factory() as session:
        stored = (await session.execute(select(CatalogItem.image))).scalar_one()
    assert stored == image


@pytest.mark.asyncio
async def test_downloaded_image_is_referenced_locally(session_factory, build_service, tmp_path):
    service = build_service(
        [product("Mens Cotton Jacket", 55.99, image="https://fakestoreapi.com/img/jacket.png")],
        asset_transport=image_transport(content_type="image/png", body=b"png-bytes")
    )

    await run_to_completion(service)

    async with session_factory() as session:
        stored = (await session.execute(select(CatalogItem.image))).scalar_one()
    assert stored == "/storage/products/mens_cotton_jacket.png"
    assert (tmp_path / "storage" / "products" / "mens_cotton_jacket.png").read_bytes() == b"png-bytes"


@pytest.mark.asyncio
async def test_item_failures_still_complete_the_run(session_factory, build_service):
    notifier = RecordingNotifier()
    service = build_service(
        [product("A", 1), product("B", 2), product("C", 3)],
        engine=ScriptedEngine(fail_titles={"B"}),
        notifier=notifier
    )

    _, snapshot, run = await run_to_completion(service, batch_size=2)

    assert snapshot.failed_jobs == 1
    assert run.status == SyncStatus.COMPLETED
    assert run.products_created == 2
    assert run.products_failed == 1
    assert run.success_rate == 66.67
    assert len(notifier.reports) == 1


@pytest.mark.asyncio
async def test_cancelled_batch_fails_the_run(session_factory, build_service):
    engine = ScriptedEngine(gated=True)
    notifier = RecordingNotifier()
    service = build_service([product("A", 1), product("B", 2), product("C", 3)], engine=engine, notifier=notifier)

    result = await service.sync(batch_size=1)
    await asyncio.wait_for(engine.started.wait(), timeout=5)
    await service.coordinator.cancel(result.batch_id)
    engine.gate.set()
    await service.coordinator.get_handle(result.batch_id).wait(timeout=5)

    run = await service.ledger.get(result.run_id)
    assert run.status == SyncStatus.FAILED
    assert run.error_message == f"Batch {result.batch_id} was cancelled"
    assert run.products_created == 1
    assert run.products_skipped == 2
    assert len(notifier.reports) == 1
    assert notifier.reports[0][1].cancelled is True


@pytest.mark.asyncio
async def test_notifier_failure_does_not_affect_the_run(session_factory, build_service):
    notifier = RecordingNotifier(fail=True)
    service = build_service([product("A", 1)], notifier=notifier)

    _, _, run = await run_to_completion(service)

    assert len(notifier.reports) == 1
    assert run.status == SyncStatus.COMPLETED


@pytest.mark.asyncio
async def test_empty_catalog_completes_with_zero_counts(session_factory, build_service):
    _, snapshot, run = await run_to_completion(build_service([]))

    assert snapshot.total_jobs == 0
    assert run.status == SyncStatus.COMPLETED
    assert run.total_products_fetched == 0
    assert run.total_batches == 0


@pytest.mark.asyncio
async def test_ledger_stats_after_mixed_runs(session_factory, build_service):
    await run_to_completion(build_service([product("A", 1), product("B", 2)]))
    with pytest.raises(FetchFailure):
        await build_service([], status_code=500).sync()

    service = build_service([])
    summary = await service.ledger.stats(days=30)

    assert summary.total_syncs == 2
    assert summary.successful_syncs == 1
    assert summary.failed_syncs == 1
    assert summary.success_rate == 50.0
    assert summary.total_created == 2
    assert 0 <= summary.success_rate <= 100
