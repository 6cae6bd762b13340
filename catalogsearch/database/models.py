"""Database models for the relational catalog tables.

The catalog search only reads these tables; they are written by the catalog
management side.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


product_categories = Table(
    "product_categories",
    Base.metadata,
    Column("product_id", String(64), ForeignKey("products.id"), primary_key=True),
    Column("category_id", String(64), ForeignKey("categories.id"), primary_key=True),
    Index("idx_product_categories_category", "category_id"),
)


class CategoryRow(Base):
    """Product category; ``parent_id`` forms a forest."""

    __tablename__ = "categories"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    handle = Column(String(200), nullable=False)
    parent_id = Column(String(64), ForeignKey("categories.id"), nullable=True)

    __table_args__ = (
        Index("idx_categories_parent", "parent_id"),
        UniqueConstraint("handle", name="uq_category_handle"),
    )

    def __repr__(self):
        return f"<CategoryRow(id='{self.id}', handle='{self.handle}')>"


class CollectionRow(Base):
    __tablename__ = "collections"

    id = Column(String(64), primary_key=True)
    title = Column(String(200), nullable=False)
    handle = Column(String(200), nullable=True)

    def __repr__(self):
        return f"<CollectionRow(id='{self.id}', title='{self.title}')>"


class ProductRow(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True)
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    handle = Column(String(200), nullable=True)
    thumbnail = Column(String(500), nullable=True)
    status = Column(String(20), nullable=False, default="published")  # draft, published
    collection_id = Column(String(64), ForeignKey("collections.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=func.now())

    categories = relationship(CategoryRow, secondary=product_categories)
    collection = relationship(CollectionRow)
    tags = relationship("TagRow", cascade="all, delete-orphan")
    variants = relationship(
        "VariantRow", cascade="all, delete-orphan", order_by="VariantRow.rank"
    )

    __table_args__ = (
        Index("idx_products_status", "status"),
        Index("idx_products_collection", "collection_id"),
        Index("idx_products_created_at", "created_at"),
    )

    def __repr__(self):
        return f"<ProductRow(id='{self.id}', title='{self.title[:50]}')>"


class TagRow(Base):
    __tablename__ = "product_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(64), ForeignKey("products.id"), nullable=False)
    value = Column(String(200), nullable=False)

    __table_args__ = (Index("idx_product_tags_product", "product_id"),)


class VariantRow(Base):
    __tablename__ = "product_variants"

    id = Column(String(64), primary_key=True)
    product_id = Column(String(64), ForeignKey("products.id"), nullable=False)
    title = Column(String(200), nullable=True)
    sku = Column(String(100), nullable=True)
    manage_inventory = Column(Boolean, nullable=False, default=True)
    inventory_quantity = Column(Integer, nullable=True)
    rank = Column(Integer, nullable=False, default=0)

    prices = relationship("PriceRow", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_product_variants_product", "product_id"),
        Index("idx_product_variants_sku", "sku"),
    )


class PriceRow(Base):
    __tablename__ = "variant_prices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    variant_id = Column(String(64), ForeignKey("product_variants.id"), nullable=False)
    currency_code = Column(String(3), nullable=False)
    amount = Column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("variant_id", "currency_code", name="uq_variant_price_currency"),
    )
