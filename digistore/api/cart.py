# digistore/api/cart.py
# Роуты корзины: доступны и гостям (по session_id), и авторизованным пользователям.
from decimal import Decimal

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from digistore.api.schemas import AddToCartRequest, ProductOut
from digistore.core.security import get_db
from digistore.services import catalog
from digistore.services.cart_store import CartOwner, CartStore, get_cart_store, resolve_cart_owner

router = APIRouter()


@router.get("")
async def get_cart(
    owner: CartOwner = Depends(resolve_cart_owner),
    cart_store: CartStore = Depends(get_cart_store),
    db: AsyncSession = Depends(get_db),
):
    """Содержимое корзины по актуальному каталогу; снятые с продажи товары не показываются."""
    product_ids = await cart_store.get(owner)
    products = await catalog.find_active_products(db, product_ids)
    total = sum((Decimal(p.price) for p in products), Decimal("0"))
    return {
        "items": [ProductOut.model_validate(p).dump() for p in products],
        "total": str(total.quantize(Decimal("0.01"))),
    }


@router.post("/add")
async def add_to_cart(
    data: AddToCartRequest,
    owner: CartOwner = Depends(resolve_cart_owner),
    cart_store: CartStore = Depends(get_cart_store),
    db: AsyncSession = Depends(get_db),
):
    await catalog.get_active_product(db, data.product_id)
    count = await cart_store.add(owner, data.product_id)
    return {"message": "Added to cart", "count": count}


@router.delete("/remove/{product_id}")
async def remove_from_cart(
    product_id: str,
    owner: CartOwner = Depends(resolve_cart_owner),
    cart_store: CartStore = Depends(get_cart_store),
):
    count = await cart_store.remove(owner, product_id)
    return {"message": "Removed from cart", "count": count}


@router.delete("/clear")
async def clear_cart(
    owner: CartOwner = Depends(resolve_cart_owner),
    cart_store: CartStore = Depends(get_cart_store),
):
    await cart_store.clear(owner)
    return {"message": "Cart cleared"}
