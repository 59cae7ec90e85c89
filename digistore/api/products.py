# digistore/api/products.py
# Публичный каталог только на чтение.
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from digistore.api.schemas import ProductOut
from digistore.core.security import get_db
from digistore.services import catalog

router = APIRouter()


@router.get("")
async def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    products = await catalog.list_active_products(db, page=page, limit=limit)
    return {"products": [ProductOut.model_validate(p).dump() for p in products]}


@router.get("/{slug}")
async def get_product(slug: str, db: AsyncSession = Depends(get_db)):
    product = await catalog.get_product_by_slug(db, slug)
    body = ProductOut.model_validate(product).dump()
    await catalog.increment_view_count(db, product.id)
    return {"product": body}
