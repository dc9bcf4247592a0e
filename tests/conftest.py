"""
Pytest configuration and fixtures
"""

import os

# Point the application settings at throwaway resources before any project import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./catalog_sync_test.db")
os.environ.setdefault("ENABLE_SCHEDULER", "false")
os.environ.setdefault("ENABLE_SYNC_EMAILS", "false")

import asyncio
from typing import AsyncGenerator, Callable, List, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from models.base import Base, SyncOutcome
from schemas.catalog import SourceRecord
from pipeline.assets import AssetIngestor
from pipeline.coordinator import BatchCoordinator
from pipeline.fetcher import CatalogFetcher
from pipeline.notifier import SyncNotifier
from pipeline.service import CatalogSyncService
from pipeline.upsert import UpsertEngine

SOURCE_URL = "https://catalog.test/products"


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite engine, one database per test"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}",
        echo=False,
        poolclass=NullPool,  # Disable connection pooling for tests
    )

    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop all tables after test
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def empty_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Session factory on a database without any tables (every write fails)"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}", poolclass=NullPool)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def fakestore_products():
    """Catalog payload in the shape of the source API"""
    return [
        {
            "id": 1,
            "title": "Fjallraven - Foldsack No. 1 Backpack, Fits 15 Laptops",
            "price": 109.95,
            "description": "Your perfect pack for everyday use and walks in the forest.",
            "category": "men's clothing",
            "image": "https://fakestoreapi.com/img/81fPKd-2AYL._AC_SL1500_.jpg",
            "rating": {"rate": 3.9, "count": 120}
        },
        {
            "id": 2,
            "title": "Mens Casual Premium Slim Fit T-Shirts ",
            "price": 22.3,
            "description": "Slim-fitting style, contrast raglan long sleeve.",
            "category": "men's clothing",
            "image": "https://fakestoreapi.com/img/71-3HjGNDUL._AC_SY879._SX._UX._SY._UY_.jpg",
            "rating": {"rate": 4.1, "count": 259}
        },
        {
            "id": 5,
            "title": "John Hardy Women's Legends Naga Gold & Silver Dragon Station Chain Bracelet",
            "price": 695,
            "description": "From our Legends Collection, the Naga was inspired by the mythical water dragon.",
            "category": "jewelery",
            "image": "https://fakestoreapi.com/img/71pWzhdJNwL._AC_UL640_QL65_ML3_.jpg",
            "rating": {"rate": 4.6, "count": 400}
        }
    ]


@pytest.fixture
def make_record() -> Callable[..., SourceRecord]:
    def _make(title: str, price: float = 10.0, category: str = "electronics", **extra) -> SourceRecord:
        payload = {
            "id": extra.pop("id", title),
            "title": title,
            "price": price,
            "description": extra.pop("description", f"{title} description"),
            "category": category,
            "image": extra.pop("image", None),
            "rating": extra.pop("rating", {"rate": 4.0, "count": 10}),
        }
        payload.update(extra)
        return SourceRecord.model_validate(payload)
    return _make


def json_transport(payload, status_code: int = 200, calls: Optional[List[httpx.Request]] = None) -> httpx.MockTransport:
    """Transport answering every request with the same JSON payload"""
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        return httpx.Response(status_code, json=payload)
    return httpx.MockTransport(handler)


def image_transport(status_code: int = 200, content_type: str = "image/jpeg", body: bytes = b"\xff\xd8\xff") -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, content=body, headers={"Content-Type": content_type})
    return httpx.MockTransport(handler)


class RecordingNotifier(SyncNotifier):
    """Keeps every delivered report in memory"""

    def __init__(self, fail: bool = False):
        super().__init__()
        self.fail = fail
        self.reports = []

    async def deliver(self, run, snapshot):
        self.reports.append((run, snapshot))
        if self.fail:
            raise RuntimeError("smtp down")


class ScriptedEngine:
    """
    Stand-in for UpsertEngine.

    Titles listed in ``fail_titles`` raise; when ``gate`` is set every unit
    waits on it after signalling ``started``.
    """

    def __init__(self, fail_titles=(), delay: float = 0.0, gated: bool = False):
        self.fail_titles = set(fail_titles)
        self.delay = delay
        self.gate = asyncio.Event() if gated else None
        self.started = asyncio.Event()
        self.processed: List[str] = []

    async def process(self, record: SourceRecord) -> SyncOutcome:
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if record.title in self.fail_titles:
            raise RuntimeError(f"cannot store {record.title}")
        self.processed.append(record.title)
        return SyncOutcome.CREATED


@pytest.fixture
def build_service(session_factory, tmp_path):
    """Wire a CatalogSyncService against mock transports and the test database"""
    def _build(
        products=None,
        status_code: int = 200,
        asset_transport: Optional[httpx.MockTransport] = None,
        engine=None,
        notifier: Optional[SyncNotifier] = None,
        max_concurrency: int = 1
    ) -> CatalogSyncService:
        fetcher = CatalogFetcher(
            source_url=SOURCE_URL,
            max_retries=1,
            retry_delay=0,
            client=httpx.AsyncClient(transport=json_transport(products or [], status_code))
        )
        if engine is None:
            ingestor = None
            if asset_transport is not None:
                ingestor = AssetIngestor(
                    storage_dir=str(tmp_path / "storage" / "products"),
                    public_prefix="/storage/products",
                    client=httpx.AsyncClient(transport=asset_transport)
                )
            engine = UpsertEngine(session_factory, ingestor)

        return CatalogSyncService(
            session_factory,
            fetcher=fetcher,
            engine=engine,
            coordinator=BatchCoordinator(session_factory, engine, max_concurrency=max_concurrency, unit_timeout=5),
            notifier=notifier if notifier is not None else RecordingNotifier()
        )
    return _build


async def run_to_completion(service: CatalogSyncService, **kwargs):
    """Dispatch a sync and wait for its batch to be finalized"""
    result = await service.sync(**kwargs)
    handle = service.coordinator.get_handle(result.batch_id)
    snapshot = await handle.wait(timeout=10)
    run = await service.ledger.get(result.run_id)
    return result, snapshot, run
