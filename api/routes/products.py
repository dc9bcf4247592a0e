"""
Catalog listing endpoint with pagination and filtering
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy import select, func, and_, or_
from api.dependencies import get_db
from schemas.catalog import CatalogPage, CatalogItemResponse, PaginationMetadata
from models.catalog import CatalogItem, Category
from typing import Optional
import time
import uuid
import math
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Products"])


@router.get("/products", response_model=CatalogPage)
async def list_products(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=1000, description="Items per page"),
    category: Optional[str] = Query(None, description="Filter by category name"),
    search: Optional[str] = Query(None, description="Search in title and description"),
    min_price: Optional[float] = Query(None, ge=0, description="Minimum price"),
    max_price: Optional[float] = Query(None, ge=0, description="Maximum price"),
    db: AsyncSession = Depends(get_db)
):
    """
    Retrieve the reconciled catalog, paginated and filtered.
    """
    start_time = time.time()
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")

    logger.info(
        f"[{request_id}] GET /products - page={page}, page_size={page_size}, "
        f"filters: category={category}, search={search}"
    )

    filters = []

    if category:
        filters.append(CatalogItem.category.has(Category.name == category))

    if search:
        filters.append(or_(
            CatalogItem.title.ilike(f"%{search}%"),
            CatalogItem.description.ilike(f"%{search}%")
        ))

    if min_price is not None:
        filters.append(CatalogItem.price >= min_price)

    if max_price is not None:
        filters.append(CatalogItem.price <= max_price)

    # Get total count
    count_query = select(func.count()).select_from(CatalogItem)
    if filters:
        count_query = count_query.where(and_(*filters))
    total_items = (await db.execute(count_query)).scalar() or 0

    # Calculate pagination
    total_pages = math.ceil(total_items / page_size) if total_items > 0 else 0
    offset = (page - 1) * page_size

    query = select(CatalogItem).options(selectinload(CatalogItem.category))
    if filters:
        query = query.where(and_(*filters))
    query = query.order_by(CatalogItem.title).offset(offset).limit(page_size)

    result = await db.execute(query)
    items = [CatalogItemResponse.model_validate(item) for item in result.scalars().all()]

    logger.info(
        f"[{request_id}] Returned {len(items)} products "
        f"(total: {(time.time() - start_time) * 1000:.2f}ms)"
    )

    return CatalogPage(
        items=items,
        pagination=PaginationMetadata(
            current_page=page,
            page_size=page_size,
            total_items=total_items,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_previous=page > 1
        )
    )
