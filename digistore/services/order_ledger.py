# digistore/services/order_ledger.py
# Жизненный цикл заказа: оформление из корзины, UTR, подтверждение/отклонение оплаты,
# активация прав на скачивание. Только этот модуль пишет payment_status.
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from digistore.core.config import settings
from digistore.core.errors import (
    AlreadyVerified,
    ConflictError,
    EmptyCart,
    InvalidTransition,
    NoValidProducts,
    OrderNotFound,
    ValidationError,
)
from digistore.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from digistore.models.product import Product
from digistore.models.user import User
from digistore.services.blob_store import BlobStore
from digistore.services.cart_store import CartOwner, CartStore
from digistore.services.catalog import find_active_products_by_ids
from digistore.services.payments import PaymentRequest, build_payment_request, generate_order_number

logger = logging.getLogger(__name__)

UTR_MIN_LENGTH = 5
UTR_MAX_LENGTH = 50


@dataclass
class ActivationResult:
    activated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed)


@dataclass
class VerificationResult:
    order: Order
    activation: ActivationResult


async def _load_order(session: AsyncSession, order_id: str) -> Order | None:
    result = await session.execute(
        select(Order).where(Order.id == order_id).options(selectinload(Order.items)).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _is_order_number_collision(exc: IntegrityError) -> bool:
    # sqlite: "UNIQUE constraint failed: orders.order_number", postgres: индекс ix_orders_order_number
    return "order_number" in str(exc.orig)


async def create_order(
    session: AsyncSession, cart_store: CartStore, user: User
) -> Tuple[Order, PaymentRequest]:
    """
    Оформляет заказ из корзины пользователя.

    Цены берутся из каталога на момент оформления, а не на момент добавления в корзину.
    Корзина очищается только после успешного коммита заказа.
    """
    # rollback при коллизии номера сбрасывает состояние ORM-объектов, поэтому копируем поля заранее
    user_id, user_email = user.id, user.email
    owner = CartOwner.for_user(user_id)
    product_ids = await cart_store.get(owner)
    if not product_ids:
        raise EmptyCart()

    products = await find_active_products_by_ids(session, product_ids)
    if not products:
        raise NoValidProducts()

    total_amount = sum((p.price for p in products), Decimal("0"))

    order = None
    for attempt in range(1, settings.ORDER_NUMBER_RETRIES + 1):
        order_number = generate_order_number()
        order = Order(
            order_number=order_number,
            user_id=user_id,
            user_email=user_email,
            total_amount=total_amount,
            payment_status=PaymentStatus.PENDING,
            order_status=OrderStatus.PENDING,
            items=[
                OrderItem(
                    product_id=p.id,
                    product_title=p.title,
                    product_price=p.price,
                    download_count=0,
                    download_limit=settings.DOWNLOAD_LIMIT,
                )
                for p in products
            ],
        )
        session.add(order)
        try:
            await session.commit()
            break
        except IntegrityError as e:
            await session.rollback()
            if not _is_order_number_collision(e):
                raise
            logger.warning(
                f"Order number collision on {order_number} ({attempt}/{settings.ORDER_NUMBER_RETRIES})"
            )
    else:
        raise ConflictError("Could not generate a unique order number")

    await cart_store.clear(owner)
    logger.info(f"Order {order_number} created for user {user_id}: {len(products)} items, total {total_amount}")

    order = await _load_order(session, order.id)
    payment = await build_payment_request(order.total_amount, order.order_number)
    return order, payment


async def submit_payment_reference(session: AsyncSession, order_id: str, user_id: str, utr: str) -> Order:
    """PENDING → SUBMITTED. Чужой, несуществующий и уже обработанный заказ неразличимы."""
    utr = (utr or "").strip()
    if not UTR_MIN_LENGTH <= len(utr) <= UTR_MAX_LENGTH:
        raise ValidationError(
            "Invalid UTR number",
            details=[{"field": "utrNumber", "message": f"must be {UTR_MIN_LENGTH}-{UTR_MAX_LENGTH} characters"}],
        )

    result = await session.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.user_id == user_id,
            Order.payment_status == PaymentStatus.PENDING,
        )
        .values(utr_number=utr, payment_status=PaymentStatus.SUBMITTED)
    )
    if result.rowcount != 1:
        await session.rollback()
        raise OrderNotFound("Order not found or already processed")
    await session.commit()

    order = await _load_order(session, order_id)
    logger.info(f"UTR submitted for order {order.order_number}")
    return order


async def verify(
    session: AsyncSession,
    order_id: str,
    blob_store: BlobStore | None = None,
    now: datetime | None = None,
) -> VerificationResult:
    """
    PENDING/SUBMITTED → VERIFIED, затем активация всех позиций.

    Переход выполняется условным UPDATE, поэтому из двух параллельных
    подтверждений успешно только одно. Заказ фиксируется до активации позиций.
    """
    now = now or datetime.utcnow()
    result = await session.execute(
        update(Order)
        .where(
            Order.id == order_id,
            Order.payment_status.in_([PaymentStatus.PENDING, PaymentStatus.SUBMITTED]),
        )
        .values(
            payment_status=PaymentStatus.VERIFIED,
            order_status=OrderStatus.COMPLETED,
            paid_at=now,
        )
    )
    if result.rowcount != 1:
        await session.rollback()
        order = await _load_order(session, order_id)
        if order is None:
            raise OrderNotFound()
        if order.payment_status == PaymentStatus.VERIFIED:
            raise AlreadyVerified()
        raise InvalidTransition("Rejected order cannot be verified")
    await session.commit()

    order = await _load_order(session, order_id)
    logger.info(f"Payment verified for order {order.order_number}")
    activation = await activate_entitlements(session, order, blob_store=blob_store, now=now)
    return VerificationResult(order=await _load_order(session, order_id), activation=activation)


async def activate_entitlements(
    session: AsyncSession,
    order: Order,
    blob_store: BlobStore | None = None,
    now: datetime | None = None,
) -> ActivationResult:
    """
    Выставляет expires_at = now + 7 дней каждой неактивной позиции подтверждённого заказа.
    Ошибка одной позиции не откатывает остальные и не отменяет подтверждение заказа.
    """
    if order.payment_status != PaymentStatus.VERIFIED:
        raise InvalidTransition("Order payment is not verified")

    now = now or datetime.utcnow()
    expiry_delta = timedelta(days=settings.DOWNLOAD_EXPIRY_DAYS)
    expires_at = now + expiry_delta
    outcome = ActivationResult()
    order_number = order.order_number
    item_ids = [(item.id, item.product_id, item.expires_at) for item in order.items]

    for item_id, product_id, current_expiry in item_ids:
        if current_expiry is not None:
            continue
        try:
            values = {"expires_at": expires_at}
            url = await _cached_download_url(session, product_id, blob_store, int(expiry_delta.total_seconds()))
            if url:
                values["download_url"] = url
            await session.execute(
                update(OrderItem)
                .where(OrderItem.id == item_id, OrderItem.expires_at.is_(None))
                .values(**values)
            )
            await session.commit()
            outcome.activated.append(item_id)
        except SQLAlchemyError:
            await session.rollback()
            logger.error(f"Failed to activate order item {item_id} of order {order_number}", exc_info=True)
            outcome.failed.append(item_id)

    if outcome.partial:
        logger.warning(
            f"Order {order_number}: activated {len(outcome.activated)} items, {len(outcome.failed)} failed"
        )
    return outcome


async def _cached_download_url(
    session: AsyncSession, product_id: str | None, blob_store: BlobStore | None, ttl_seconds: int
) -> str | None:
    # Кэшированная ссылка для UI, выдача всё равно идёт через шлюз скачивания
    if blob_store is None or not blob_store.enabled or product_id is None:
        return None

    file_ref = await session.scalar(select(Product.file_ref).where(Product.id == product_id))
    if not file_ref:
        return None
    try:
        return blob_store.mint_signed_url(file_ref, ttl_seconds)
    except Exception:
        logger.warning(f"Could not cache download URL for product {product_id}", exc_info=True)
        return None


async def reject(session: AsyncSession, order_id: str, reason: str | None = None) -> Order:
    """PENDING/SUBMITTED → FAILED. Повторное отклонение ничего не меняет."""
    result = await session.execute(
        update(Order)
        .where(Order.id == order_id, Order.payment_status != PaymentStatus.VERIFIED)
        .values(payment_status=PaymentStatus.FAILED, order_status=OrderStatus.CANCELLED)
    )
    if result.rowcount != 1:
        await session.rollback()
        order = await _load_order(session, order_id)
        if order is None:
            raise OrderNotFound()
        raise InvalidTransition("Verified order cannot be rejected")
    await session.commit()

    order = await _load_order(session, order_id)
    logger.info(f"Payment rejected for order {order.order_number}: {reason or 'no reason given'}")
    return order


async def get_order(session: AsyncSession, order_id: str) -> Order:
    order = await _load_order(session, order_id)
    if order is None:
        raise OrderNotFound()
    return order


async def get_user_order(session: AsyncSession, order_id: str, user_id: str) -> Order:
    order = await _load_order(session, order_id)
    if order is None or order.user_id != user_id:
        raise OrderNotFound()
    return order


async def list_user_orders(session: AsyncSession, user_id: str) -> List[Order]:
    result = await session.execute(
        select(Order)
        .where(Order.user_id == user_id)
        .options(selectinload(Order.items))
        .order_by(Order.created_at.desc())
    )
    return list(result.scalars().all())


async def list_orders(
    session: AsyncSession,
    page: int = 1,
    limit: int = 20,
    status: PaymentStatus | None = None,
    search: str | None = None,
) -> Tuple[List[Order], int]:
    """Список заказов для админки: фильтр по статусу оплаты и поиск по номеру/email/UTR."""
    conditions = []
    if status is not None:
        conditions.append(Order.payment_status == status)
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(
                Order.order_number.ilike(pattern),
                Order.user_email.ilike(pattern),
                Order.utr_number.ilike(pattern),
            )
        )

    total = await session.scalar(select(func.count()).select_from(Order).where(*conditions))
    result = await session.execute(
        select(Order)
        .where(*conditions)
        .options(selectinload(Order.items))
        .order_by(Order.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0
