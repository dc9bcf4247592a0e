"""
API endpoint tests
"""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient

from api.main import app
from api.dependencies import get_db, get_sync_service
from core.exceptions import FetchFailure
from models.catalog import CatalogItem, Category
from pipeline.coordinator import BatchCoordinator
from pipeline.ledger import RunLedger
from schemas.sync import SyncDispatchResult


@pytest.fixture
def service(session_factory):
    """Sync service stand-in sharing the test database"""
    stub = MagicMock()
    stub.ledger = RunLedger(session_factory)
    stub.coordinator = BatchCoordinator(session_factory, engine=MagicMock())
    stub.sync = AsyncMock(return_value=SyncDispatchResult(
        run_id=1, batch_id="batch-1", total_products=2, total_batches=1
    ))
    return stub


@pytest.fixture
def client(session_factory, service):
    """Create test client with database and service overrides"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_service] = lambda: service

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def catalog(session_factory):
    async with session_factory() as session:
        electronics = Category(name="electronics")
        jewelery = Category(name="jewelery")
        session.add_all([
            CatalogItem(title="USB Cable", price=9.99, description="Braided cable", category=electronics),
            CatalogItem(title="Monitor", price=599.0, description="27 inch display", category=electronics),
            CatalogItem(title="Silver Ring", price=49.5, description="Sterling silver", category=jewelery),
        ])
        await session.commit()


@pytest_asyncio.fixture
async def failed_run(session_factory):
    ledger = RunLedger(session_factory)
    handle = await ledger.start("manual_sync")
    await ledger.fail(handle, "Failed to fetch products from API: 500")
    return handle


@pytest_asyncio.fixture
async def batch_id(service):
    handle = await service.coordinator.submit([], chunk_size=10)
    await handle.wait(timeout=5)
    return handle.id


def test_health_with_empty_history(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database_connected"] is True
    assert data["last_run"] is None


def test_health_degraded_after_failed_run(client, failed_run):
    data = client.get("/health").json()

    assert data["status"] == "degraded"
    assert data["last_run"]["status"] == "failed"
    assert data["last_run"]["error_message"] == "Failed to fetch products from API: 500"


def test_products_pagination(client, catalog):
    response = client.get("/products?page=1&page_size=2")

    assert response.status_code == 200
    data = response.json()
    assert [item["title"] for item in data["items"]] == ["Monitor", "Silver Ring"]
    assert data["pagination"]["total_items"] == 3
    assert data["pagination"]["total_pages"] == 2
    assert data["pagination"]["has_next"] is True
    assert data["pagination"]["has_previous"] is False


def test_products_filter_by_category(client, catalog):
    data = client.get("/products?category=jewelery").json()

    assert [item["title"] for item in data["items"]] == ["Silver Ring"]
    assert data["items"][0]["category"]["name"] == "jewelery"


def test_products_search_and_price_range(client, catalog):
    assert [i["title"] for i in client.get("/products?search=cable").json()["items"]] == ["USB Cable"]

    data = client.get("/products?min_price=10&max_price=100").json()
    assert [i["title"] for i in data["items"]] == ["Silver Ring"]


def test_list_runs(client, failed_run):
    response = client.get("/sync/runs?days=7")

    assert response.status_code == 200
    runs = response.json()
    assert len(runs) == 1
    assert runs[0]["sync_type"] == "manual_sync"


def test_get_missing_run(client):
    assert client.get("/sync/runs/999").status_code == 404


def test_stats(client, failed_run):
    data = client.get("/sync/stats?days=30").json()

    assert data["total_syncs"] == 1
    assert data["failed_syncs"] == 1
    assert data["success_rate"] == 0.0


def test_trigger_sync_accepts_request(client, service):
    response = client.post("/sync", json={"batch_size": 5})

    assert response.status_code == 202
    assert response.json()["batch_id"] == "batch-1"
    assert service.sync.await_args.kwargs["batch_size"] == 5


def test_trigger_sync_without_body(client, service):
    response = client.post("/sync")

    assert response.status_code == 202
    service.sync.assert_awaited_once()


def test_trigger_sync_fetch_failure_is_bad_gateway(client, service):
    service.sync.side_effect = FetchFailure("Failed to fetch products from API: 503", status_code=503)

    response = client.post("/sync")

    assert response.status_code == 502
    assert response.json()["detail"] == "Failed to fetch products from API: 503"


def test_batch_snapshot(client, batch_id):
    response = client.get(f"/sync/batches/{batch_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["batch_id"] == batch_id
    assert data["finished"] is True
    assert data["progress"] == 100


def test_unknown_batch_is_not_found(client):
    assert client.get("/sync/batches/missing").status_code == 404
    assert client.post("/sync/batches/missing/cancel").status_code == 404


def test_cancel_finished_batch_is_noop(client, batch_id):
    response = client.post(f"/sync/batches/{batch_id}/cancel")

    assert response.status_code == 200
    assert response.json()["cancelled"] is False


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"
    assert "X-API-Latency-ms" in response.headers
