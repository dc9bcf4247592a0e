from sqlalchemy import Column, BigInteger, String, Text, Float, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship
from core.database import utcnow
from models.base import Base, BigIntegerPK


class Category(Base):
    """
    Product category, keyed by its exact (case-sensitive) name.

    Created lazily the first time a record references it and never
    updated or deleted by the pipeline.
    """
    __tablename__ = "categories"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, unique=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    items = relationship("CatalogItem", back_populates="category")


class CatalogItem(Base):
    """
    Local copy of one catalog product.

    Identity:
    - external_id (the source system's own identifier) is matched first
    - title (unique, exact match) is the fallback and the uniqueness guard

    Mutable fields (price, description, image, category, rating) are
    overwritten in place on every sync that matches the item.
    """
    __tablename__ = "catalog_items"

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    external_id = Column(String(255), nullable=True)

    title = Column(String(500), nullable=False, unique=True)
    price = Column(Float, nullable=False, default=0)
    description = Column(Text, nullable=True)
    image = Column(String(2048), nullable=True)  # Local reference or original remote URL
    rating = Column(JSON, nullable=True)  # {"rate": float, "count": int}

    category_id = Column(BigInteger, ForeignKey("categories.id"), nullable=True, index=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    category = relationship("Category", back_populates="items")

    __table_args__ = (
        Index("idx_catalog_items_external_id", "external_id"),
    )
