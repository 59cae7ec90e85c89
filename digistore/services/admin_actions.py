# digistore/services/admin_actions.py
# Действия администратора над заказами: проверка роли до любых изменений,
# вызов order_ledger и запись в журнал admin_logs.
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from digistore.core.errors import ForbiddenError
from digistore.models.admin_log import (
    AdminLog,
    ReactivatedEntitlementsDetails,
    RejectedPaymentDetails,
    VerifiedPaymentDetails,
)
from digistore.models.order import Order
from digistore.models.user import RoleEnum, User
from digistore.services import order_ledger
from digistore.services.blob_store import BlobStore
from digistore.services.order_ledger import ActivationResult, VerificationResult

logger = logging.getLogger(__name__)


def ensure_admin(actor: User) -> None:
    if actor is None or actor.role != RoleEnum.admin:
        raise ForbiddenError("Admin access required")


async def verify_payment(
    session: AsyncSession,
    actor: User,
    order_id: str,
    blob_store: BlobStore | None = None,
    ip_address: str | None = None,
) -> VerificationResult:
    ensure_admin(actor)
    admin_id = actor.id
    result = await order_ledger.verify(session, order_id, blob_store=blob_store)
    order = result.order
    await AdminLog.log(
        session,
        admin_id=admin_id,
        entity_type="order",
        entity_id=order.id,
        details=VerifiedPaymentDetails(
            order_number=order.order_number,
            amount=str(order.total_amount),
            activated=result.activation.activated,
            failed=result.activation.failed,
        ),
        ip_address=ip_address,
    )
    return result


async def reject_payment(
    session: AsyncSession,
    actor: User,
    order_id: str,
    reason: str | None = None,
    ip_address: str | None = None,
) -> Order:
    ensure_admin(actor)
    admin_id = actor.id
    order = await order_ledger.reject(session, order_id, reason)
    await AdminLog.log(
        session,
        admin_id=admin_id,
        entity_type="order",
        entity_id=order.id,
        details=RejectedPaymentDetails(order_number=order.order_number, reason=reason),
        ip_address=ip_address,
    )
    return order


async def reactivate_entitlements(
    session: AsyncSession,
    actor: User,
    order_id: str,
    blob_store: BlobStore | None = None,
    ip_address: str | None = None,
) -> ActivationResult:
    """Повторная активация позиций, не получивших срок при подтверждении."""
    ensure_admin(actor)
    admin_id = actor.id
    order = await order_ledger.get_order(session, order_id)
    order_number = order.order_number
    outcome = await order_ledger.activate_entitlements(session, order, blob_store=blob_store)
    await AdminLog.log(
        session,
        admin_id=admin_id,
        entity_type="order",
        entity_id=order_id,
        details=ReactivatedEntitlementsDetails(
            order_number=order_number,
            activated=outcome.activated,
            failed=outcome.failed,
        ),
        ip_address=ip_address,
    )
    return outcome
