"""
Pydantic schemas for catalog records with validation
"""

from pydantic import BaseModel, Field, validator
from typing import Optional, List
from datetime import datetime


class Rating(BaseModel):
    """Rating sub-object of a source record"""
    rate: float = 0.0
    count: int = 0


class SourceRecord(BaseModel):
    """
    One catalog entry as fetched from the source API.

    Transient: it is reconciled into a CatalogItem and never stored as-is.
    """

    id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=500)
    price: float = Field(0.0, ge=0)
    description: Optional[str] = None
    image: Optional[str] = Field(None, max_length=2048)
    category: str = Field(..., min_length=1, max_length=255)
    rating: Optional[Rating] = None

    @validator("id", pre=True)
    def coerce_id(cls, v):
        """Source ids arrive as ints or strings"""
        if v is None:
            return None
        return str(v)

    @validator("title")
    def clean_title(cls, v):
        """Strip surrounding whitespace; case is preserved"""
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be empty after stripping")
        return v

    @validator("image", pre=True)
    def blank_image_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    class Config:
        extra = "ignore"


class CategoryResponse(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


class CatalogItemResponse(BaseModel):
    """Response model for a reconciled catalog item"""
    id: int
    external_id: Optional[str] = None
    title: str
    price: float
    description: Optional[str] = None
    image: Optional[str] = None
    rating: Optional[Rating] = None
    category: Optional[CategoryResponse] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class PaginationMetadata(BaseModel):
    """Pagination metadata"""
    total_items: int
    total_pages: int
    current_page: int
    page_size: int
    has_next: bool
    has_previous: bool


class CatalogPage(BaseModel):
    """Paginated catalog listing"""
    items: List[CatalogItemResponse]
    pagination: PaginationMetadata
