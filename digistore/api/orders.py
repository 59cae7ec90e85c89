# digistore/api/orders.py
# Роуты заказов покупателя: оформление, UTR, просмотр и скачивание файлов.
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from digistore.api.schemas import OrderOut, PaymentOut, SubmitUtrRequest
from digistore.core.security import get_current_user, get_db
from digistore.models.order import PaymentStatus
from digistore.models.user import User
from digistore.services import entitlements, order_ledger
from digistore.services.blob_store import BlobStore, get_blob_store
from digistore.services.cart_store import CartStore, get_cart_store
from digistore.services.payments import build_payment_request

router = APIRouter()


def request_origin(request: Request) -> entitlements.RequestOrigin:
    return entitlements.RequestOrigin(
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


@router.post("", status_code=201)
async def create_order(
    current_user: User = Depends(get_current_user),
    cart_store: CartStore = Depends(get_cart_store),
    db: AsyncSession = Depends(get_db),
):
    """Создаёт заказ из корзины и возвращает данные для оплаты по UPI."""
    order, payment = await order_ledger.create_order(db, cart_store, current_user)
    return {
        "message": "Order created",
        "order": OrderOut.model_validate(order).dump(),
        "payment": PaymentOut.model_validate(payment).dump(),
    }


@router.post("/{order_id}/submit-utr")
async def submit_utr(
    order_id: str,
    data: SubmitUtrRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    order = await order_ledger.submit_payment_reference(db, order_id, current_user.id, data.utr_number)
    return {
        "message": "Payment reference submitted. We will verify and enable your downloads shortly.",
        "orderNumber": order.order_number,
    }


@router.get("/my")
async def my_orders(current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    orders = await order_ledger.list_user_orders(db, current_user.id)
    return {"orders": [OrderOut.model_validate(o).dump() for o in orders]}


@router.get("/download/{order_item_id}")
async def download(
    order_item_id: str,
    request: Request,
    current_user: User = Depends(get_current_user),
    blob_store: BlobStore = Depends(get_blob_store),
    db: AsyncSession = Depends(get_db),
):
    grant = await entitlements.request_download(
        db, blob_store, order_item_id, current_user.id, origin=request_origin(request)
    )
    return {
        "downloadUrl": grant.download_url,
        "remainingDownloads": grant.remaining_downloads,
        "productTitle": grant.product_title,
    }


@router.get("/{order_id}")
async def get_order(order_id: str, current_user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    """Детали заказа; для неоплаченного заказа QR-код генерируется заново."""
    order = await order_ledger.get_user_order(db, order_id, current_user.id)
    payment = None
    if order.payment_status == PaymentStatus.PENDING:
        payment = await build_payment_request(order.total_amount, order.order_number)
    return {
        "order": OrderOut.model_validate(order).dump(),
        "payment": PaymentOut.model_validate(payment).dump() if payment else None,
    }
