# digistore/services/entitlements.py
# Шлюз скачивания: проверка права на файл позиции заказа и выдача ссылки на 1 час.
# Только этот модуль пишет download_count.
import enum
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from digistore.core.config import settings
from digistore.core.errors import DependencyUnavailable, LimitReached, LinkExpired, NotAvailable
from digistore.models.download_log import DownloadLog
from digistore.models.order import Order, OrderItem, PaymentStatus
from digistore.models.product import Product
from digistore.services.blob_store import BlobStore

logger = logging.getLogger(__name__)


class EntitlementState(str, enum.Enum):
    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"
    EXHAUSTED = "EXHAUSTED"
    EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class RequestOrigin:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class DownloadGrant:
    download_url: str
    remaining_downloads: int
    product_title: str


def entitlement_state(item: OrderItem, now: datetime | None = None) -> EntitlementState:
    now = now or datetime.utcnow()
    if item.expires_at is None:
        return EntitlementState.INACTIVE
    if item.download_count >= item.download_limit:
        return EntitlementState.EXHAUSTED
    if now > item.expires_at:
        return EntitlementState.EXPIRED
    return EntitlementState.ACTIVE


def _raise_for_state(state: EntitlementState) -> None:
    if state == EntitlementState.EXHAUSTED:
        raise LimitReached()
    if state == EntitlementState.EXPIRED:
        raise LinkExpired()
    if state == EntitlementState.INACTIVE:
        raise NotAvailable()


async def _load_item(session: AsyncSession, order_item_id: str, user_id: str):
    result = await session.execute(
        select(OrderItem, Product.file_ref)
        .join(Order, OrderItem.order_id == Order.id)
        .outerjoin(Product, OrderItem.product_id == Product.id)
        .where(
            OrderItem.id == order_item_id,
            Order.user_id == user_id,
            Order.payment_status == PaymentStatus.VERIFIED,
        )
        .execution_options(populate_existing=True)
    )
    return result.one_or_none()


async def request_download(
    session: AsyncSession,
    blob_store: BlobStore,
    order_item_id: str,
    user_id: str,
    origin: RequestOrigin | None = None,
    now: datetime | None = None,
) -> DownloadGrant:
    """
    Выдаёт подписанную ссылку на файл позиции заказа.

    Порядок: проверки на одном снимке, затем атомарный условный инкремент
    download_count с коммитом, и только потом подпись ссылки. Журнал скачиваний
    и общий счётчик товара пишутся после выдачи ссылки и не блокируют ответ.
    """
    now = now or datetime.utcnow()
    origin = origin or RequestOrigin()

    row = await _load_item(session, order_item_id, user_id)
    if row is None:
        raise NotAvailable()
    item, file_ref = row
    _raise_for_state(entitlement_state(item, now))
    if not file_ref:
        raise NotAvailable()
    if not blob_store.enabled:
        logger.error("Download requested while file storage is disabled")
        raise DependencyUnavailable("File storage is not configured")

    product_id, product_title = item.product_id, item.product_title

    # Инкремент только при count < limit и неистёкшем сроке: два параллельных запроса не превысят лимит
    result = await session.execute(
        update(OrderItem)
        .where(
            OrderItem.id == order_item_id,
            OrderItem.download_count < OrderItem.download_limit,
            OrderItem.expires_at.is_not(None),
            OrderItem.expires_at >= now,
        )
        .values(download_count=OrderItem.download_count + 1)
        .returning(OrderItem.download_count, OrderItem.download_limit)
        .execution_options(synchronize_session=False)
    )
    counters = result.one_or_none()
    if counters is None:
        await session.rollback()
        row = await _load_item(session, order_item_id, user_id)
        if row is None:
            raise NotAvailable()
        _raise_for_state(entitlement_state(row[0], now))
        raise LimitReached()
    await session.commit()
    download_count, download_limit = counters

    download_url = blob_store.mint_signed_url(file_ref, settings.SIGNED_URL_TTL_SECONDS)

    await _record_download(session, user_id, order_item_id, product_id, origin)
    logger.info(f"Download granted for item {order_item_id} ({download_count}/{download_limit})")

    return DownloadGrant(
        download_url=download_url,
        remaining_downloads=download_limit - download_count,
        product_title=product_title,
    )


async def _record_download(
    session: AsyncSession, user_id: str, order_item_id: str, product_id: str | None, origin: RequestOrigin
) -> None:
    """Журнал и счётчик товара пишутся best effort: ошибка логируется, ссылка уже выдана."""
    try:
        await session.execute(
            insert(DownloadLog).values(
                user_id=user_id,
                order_item_id=order_item_id,
                product_id=product_id,
                ip_address=origin.ip_address,
                user_agent=origin.user_agent,
                created_at=datetime.utcnow(),
            )
        )
        if product_id is not None:
            await session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(download_count=Product.download_count + 1)
                .execution_options(synchronize_session=False)
            )
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.warning(f"Failed to record download of item {order_item_id}", exc_info=True)
