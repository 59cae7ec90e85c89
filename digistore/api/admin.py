# digistore/api/admin.py
# Админские роуты заказов. Роль проверяется зависимостью до вызова любых сервисов.
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from digistore.api.schemas import AdminOrderOut, OrderOut, RejectRequest
from digistore.core.security import get_db, require_role
from digistore.models.order import PaymentStatus
from digistore.models.user import RoleEnum, User
from digistore.services import admin_actions, order_ledger
from digistore.services.blob_store import BlobStore, get_blob_store

router = APIRouter()

require_admin = require_role(RoleEnum.admin)


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


@router.get("/orders")
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[PaymentStatus] = None,
    search: Optional[str] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    orders, total = await order_ledger.list_orders(db, page=page, limit=limit, status=status, search=search)
    return {
        "orders": [AdminOrderOut.model_validate(o).dump() for o in orders],
        "pagination": {"page": page, "limit": limit, "total": total, "totalPages": -(-total // limit)},
    }


@router.post("/orders/{order_id}/verify")
async def verify_payment(
    order_id: str,
    request: Request,
    admin: User = Depends(require_admin),
    blob_store: BlobStore = Depends(get_blob_store),
    db: AsyncSession = Depends(get_db),
):
    result = await admin_actions.verify_payment(db, admin, order_id, blob_store=blob_store, ip_address=client_ip(request))
    return {
        "message": "Payment verified",
        "order": OrderOut.model_validate(result.order).dump(),
        "activation": {"activated": result.activation.activated, "failed": result.activation.failed},
    }


@router.post("/orders/{order_id}/reject")
async def reject_payment(
    order_id: str,
    request: Request,
    data: Optional[RejectRequest] = None,
    admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    reason = data.reason if data else None
    order = await admin_actions.reject_payment(db, admin, order_id, reason=reason, ip_address=client_ip(request))
    return {"message": "Payment rejected", "order": OrderOut.model_validate(order).dump()}


@router.post("/orders/{order_id}/activate")
async def reactivate(
    order_id: str,
    request: Request,
    admin: User = Depends(require_admin),
    blob_store: BlobStore = Depends(get_blob_store),
    db: AsyncSession = Depends(get_db),
):
    outcome = await admin_actions.reactivate_entitlements(
        db, admin, order_id, blob_store=blob_store, ip_address=client_ip(request)
    )
    return {"activated": outcome.activated, "failed": outcome.failed}
