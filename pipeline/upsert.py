"""
Reconcile one source record into the local catalog (idempotent upsert).

Ensures:
- No duplicate rows on repeated runs (source id first, exact title as fallback)
- Updates existing items in place when source data changes
- Race-safe category creation (unique name + INSERT ... ON CONFLICT DO NOTHING)
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.database import dialect_insert, utcnow
from models.base import SyncOutcome
from models.catalog import CatalogItem, Category
from pipeline.assets import AssetIngestor
from schemas.catalog import SourceRecord

logger = logging.getLogger(__name__)

categories_table = Category.__table__
items_table = CatalogItem.__table__


class UpsertEngine:
    """
    Create-or-update a CatalogItem (and its Category) from a SourceRecord.

    Each call runs in its own session and transaction, so many calls can
    execute concurrently against the same store. Storage errors propagate.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        asset_ingestor: Optional[AssetIngestor] = None
    ):
        self.session_factory = session_factory
        self.asset_ingestor = asset_ingestor

    async def process(self, record: SourceRecord) -> SyncOutcome:
        """
        Reconcile ``record`` and report whether it was created or updated.

        Raises:
            sqlalchemy.exc.SQLAlchemyError: underlying storage failure
        """
        image = await self.resolve_image(record)

        async with self.session_factory() as session:
            try:
                category_id = await self.find_or_create_category(session, record.category)
                outcome = await self.upsert_item(session, record, category_id, image)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

        logger.debug(f"{outcome.value} catalog item {record.title!r}")
        return outcome

    async def resolve_image(self, record: SourceRecord) -> Optional[str]:
        """Local reference when ingestion succeeds, otherwise the remote URL."""
        if not record.image or self.asset_ingestor is None:
            return record.image

        try:
            local_reference = await self.asset_ingestor.ingest(record.image, record.title)
        except Exception as e:
            logger.error(f"Asset ingestion raised for {record.title!r}: {e}")
            local_reference = None

        return local_reference or record.image

    async def find_or_create_category(self, session: AsyncSession, name: str) -> int:
        stmt = (
            dialect_insert(session, categories_table)
            .values(name=name, created_at=utcnow())
            .on_conflict_do_nothing(index_elements=["name"])
        )
        await session.execute(stmt)

        result = await session.execute(select(Category.id).where(Category.name == name))
        return result.scalar_one()

    async def upsert_item(
        self,
        session: AsyncSession,
        record: SourceRecord,
        category_id: int,
        image: Optional[str]
    ) -> SyncOutcome:
        values = self._mutable_fields(record, category_id, image)

        if record.id and await self._update_by_external_id(session, record.id, record.title, values):
            return SyncOutcome.UPDATED

        if await self._update_by_title(session, record.title, values):
            return SyncOutcome.UPDATED

        now = utcnow()
        insert_stmt = (
            dialect_insert(session, items_table)
            .values(title=record.title, created_at=now, updated_at=now, **values)
            .on_conflict_do_nothing(index_elements=["title"])
            .returning(items_table.c.id)
        )
        result = await session.execute(insert_stmt)
        if result.scalar_one_or_none() is not None:
            return SyncOutcome.CREATED

        # Another worker inserted the same title between our update and insert
        await self._update_by_title(session, record.title, values)
        return SyncOutcome.UPDATED

    async def _update_by_external_id(
        self,
        session: AsyncSession,
        external_id: str,
        title: str,
        values: Dict[str, Any]
    ) -> bool:
        # A renamed source item keeps its row; the title follows the source
        stmt = (
            update(items_table)
            .where(items_table.c.external_id == external_id)
            .values(title=title, updated_at=utcnow(), **values)
        )
        result = await session.execute(stmt)
        return result.rowcount > 0

    async def _update_by_title(self, session: AsyncSession, title: str, values: Dict[str, Any]) -> bool:
        stmt = (
            update(items_table)
            .where(items_table.c.title == title)
            .values(updated_at=utcnow(), **values)
        )
        result = await session.execute(stmt)
        return result.rowcount > 0

    @staticmethod
    def _mutable_fields(record: SourceRecord, category_id: int, image: Optional[str]) -> Dict[str, Any]:
        return {
            "external_id": record.id,
            "price": record.price,
            "description": record.description,
            "image": image,
            "category_id": category_id,
            "rating": record.rating.model_dump() if record.rating else None,
        }
