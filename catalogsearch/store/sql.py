"""Read-only relational store backed by the catalog database."""

import logging

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import selectinload

from ..catalog.filters import RelationalQueryParams
from ..database.connection import DatabaseManager
from ..database.models import (
    CategoryRow,
    ProductRow,
    TagRow,
    VariantRow,
)
from ..errors import CategoryLookupError, FallbackError
from ..model import Category, Collection, Money, Product, ProductPage, Variant

logger = logging.getLogger(__name__)


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _category(row: CategoryRow) -> Category:
    return Category(id=row.id, name=row.name, handle=row.handle, parent_id=row.parent_id)


def _product(row: ProductRow) -> Product:
    return Product(
        id=row.id,
        title=row.title,
        description=row.description,
        handle=row.handle,
        thumbnail=row.thumbnail,
        status=row.status,
        tags=[tag.value for tag in row.tags],
        categories=[_category(c) for c in row.categories],
        collection=(
            Collection(
                id=row.collection.id,
                title=row.collection.title,
                handle=row.collection.handle,
            )
            if row.collection
            else None
        ),
        variants=[
            Variant(
                id=v.id,
                title=v.title,
                sku=v.sku,
                prices=[
                    Money(amount=p.amount, currency_code=p.currency_code)
                    for p in v.prices
                ],
                manage_inventory=v.manage_inventory,
                inventory_quantity=v.inventory_quantity,
            )
            for v in row.variants
        ],
        created_at=row.created_at,
    )


class SqlCatalogStore:
    """Category and product store over the catalog tables."""

    supports_text_search = True

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def health(self) -> bool:
        return self.db_manager.health_check()

    def list_categories(
        self, handle: str | None = None, parent_id: str | None = None
    ) -> list[Category]:
        query = select(CategoryRow).order_by(CategoryRow.name, CategoryRow.id)
        if handle is not None:
            query = query.where(CategoryRow.handle == handle)
        if parent_id is not None:
            query = query.where(CategoryRow.parent_id == parent_id)

        try:
            with self.db_manager.get_session() as session:
                rows = session.execute(query).scalars().all()
                return [_category(row) for row in rows]
        except SQLAlchemyError as e:
            raise CategoryLookupError(f"Category query failed: {e}") from e

    def list_products(self, params: RelationalQueryParams) -> ProductPage:
        query = select(ProductRow).where(ProductRow.status == "published")

        if params.category_ids:
            query = query.where(
                ProductRow.categories.any(CategoryRow.id.in_(params.category_ids))
            )

        if params.collection_id:
            query = query.where(ProductRow.collection_id == params.collection_id)

        if params.q:
            pattern = _like_pattern(params.q)
            query = query.where(
                or_(
                    ProductRow.title.ilike(pattern, escape="\\"),
                    ProductRow.description.ilike(pattern, escape="\\"),
                    ProductRow.tags.any(TagRow.value.ilike(pattern, escape="\\")),
                    ProductRow.variants.any(
                        or_(
                            VariantRow.title.ilike(pattern, escape="\\"),
                            VariantRow.sku.ilike(pattern, escape="\\"),
                        )
                    ),
                )
            )

        count_query = select(func.count()).select_from(query.subquery())
        page_query = (
            query.options(
                selectinload(ProductRow.categories),
                selectinload(ProductRow.collection),
                selectinload(ProductRow.tags),
                selectinload(ProductRow.variants).selectinload(VariantRow.prices),
            )
            .order_by(ProductRow.created_at.desc(), ProductRow.id)
            .offset(params.offset)
            .limit(params.limit)
        )

        try:
            with self.db_manager.get_session() as session:
                count = session.execute(count_query).scalar_one()
                rows = session.execute(page_query).scalars().all()
                products = [_product(row) for row in rows]
        except SQLAlchemyError as e:
            raise FallbackError(f"Product query failed: {e}") from e

        logger.debug(f"Fetched {len(products)} of {count} products from the database")
        return ProductPage(products=products, count=count)
