"""
Shared FastAPI dependencies
"""

from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.database import async_session_maker, get_session
from pipeline.service import CatalogSyncService

_sync_service: Optional[CatalogSyncService] = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Database session per request"""
    async for session in get_session():
        yield session


def get_sync_service() -> CatalogSyncService:
    """
    Process-wide sync service.

    One instance keeps the in-process batch handles, so cancel and monitor
    requests see the batches started by this API process.
    """
    global _sync_service
    if _sync_service is None:
        _sync_service = CatalogSyncService(async_session_maker)
    return _sync_service
