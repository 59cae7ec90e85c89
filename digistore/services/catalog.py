# digistore/services/catalog.py
# Чтение каталога: активные товары и снимки цен на момент оформления заказа.
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from digistore.core.errors import ProductNotFound
from digistore.models.product import Product

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProductSnapshot:
    id: str
    title: str
    price: Decimal
    file_ref: str | None
    is_active: bool

    @classmethod
    def from_model(cls, product: Product) -> "ProductSnapshot":
        return cls(
            id=product.id,
            title=product.title,
            price=Decimal(product.price),
            file_ref=product.file_ref,
            is_active=product.is_active,
        )


async def find_active_products(session: AsyncSession, ids: Sequence[str]) -> List[Product]:
    """Активные товары в порядке ids; неактивные и удалённые пропускаются."""
    if not ids:
        return []
    result = await session.execute(
        select(Product).where(Product.id.in_(list(ids)), Product.is_active.is_(True))
    )
    by_id = {p.id: p for p in result.scalars().all()}
    return [by_id[pid] for pid in ids if pid in by_id]


async def find_active_products_by_ids(session: AsyncSession, ids: Sequence[str]) -> List[ProductSnapshot]:
    return [ProductSnapshot.from_model(p) for p in await find_active_products(session, ids)]


async def get_active_product(session: AsyncSession, product_id: str) -> Product:
    result = await session.execute(
        select(Product).where(Product.id == product_id, Product.is_active.is_(True))
    )
    product = result.scalar_one_or_none()
    if product is None:
        raise ProductNotFound()
    return product


async def list_active_products(session: AsyncSession, page: int = 1, limit: int = 20) -> List[Product]:
    result = await session.execute(
        select(Product)
        .where(Product.is_active.is_(True))
        .order_by(Product.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all())


async def get_product_by_slug(session: AsyncSession, slug: str) -> Product:
    result = await session.execute(
        select(Product).where(Product.slug == slug, Product.is_active.is_(True))
    )
    product = result.scalar_one_or_none()
    if product is None:
        raise ProductNotFound()
    return product


async def increment_view_count(session: AsyncSession, product_id: str) -> None:
    """Счётчик просмотров не критичен: ошибка логируется и не прерывает запрос."""
    try:
        await session.execute(
            update(Product).where(Product.id == product_id).values(view_count=Product.view_count + 1)
        )
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.warning("Failed to increment view count for product %s", product_id, exc_info=True)
