# tests/test_entitlements.py
import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select, update

from digistore.core.errors import DependencyUnavailable, LimitReached, LinkExpired, NotAvailable
from digistore.models.download_log import DownloadLog
from digistore.models.order import OrderItem
from digistore.models.product import Product
from digistore.services import entitlements, order_ledger
from digistore.services.blob_store import BlobStore
from digistore.services.cart_store import CartOwner
from digistore.services.entitlements import EntitlementState, RequestOrigin

VERIFIED_AT = datetime(2026, 10, 1, 12, 0, 0)


@pytest.fixture
async def verified_item(db, cart_store, customer, make_product, blob_store):
    product = await make_product("100.00")
    await cart_store.add(CartOwner.for_user(customer.id), product.id)
    order, _ = await order_ledger.create_order(db, cart_store, customer)
    await order_ledger.submit_payment_reference(db, order.id, customer.id, "UTR123456")
    await order_ledger.verify(db, order.id, blob_store=blob_store, now=VERIFIED_AT)
    return order.items[0].id, product.id


async def test_download_grants_signed_url(db, blob_store, customer, verified_item):
    item_id, product_id = verified_item
    origin = RequestOrigin(ip_address="10.0.0.7", user_agent="pytest-agent")

    grant = await entitlements.request_download(
        db, blob_store, item_id, customer.id, origin=origin, now=VERIFIED_AT + timedelta(hours=1)
    )

    assert grant.remaining_downloads == 4
    assert "api.cloudinary.com" in grant.download_url
    assert "expires_at=" in grant.download_url
    assert grant.product_title == "Product 1"

    log = (await db.execute(select(DownloadLog))).scalar_one()
    assert (log.user_id, log.order_item_id, log.product_id) == (customer.id, item_id, product_id)
    assert (log.ip_address, log.user_agent) == ("10.0.0.7", "pytest-agent")
    assert await db.scalar(select(Product.download_count).where(Product.id == product_id)) == 1


async def test_limit_reached_after_five_downloads(db, blob_store, customer, verified_item):
    item_id, _ = verified_item
    now = VERIFIED_AT + timedelta(days=1)
    remaining = [
        (await entitlements.request_download(db, blob_store, item_id, customer.id, now=now)).remaining_downloads
        for _ in range(5)
    ]
    assert remaining == [4, 3, 2, 1, 0]

    with pytest.raises(LimitReached):
        await entitlements.request_download(db, blob_store, item_id, customer.id, now=now)


async def test_link_expired_after_seven_days(db, blob_store, customer, verified_item):
    item_id, _ = verified_item

    with pytest.raises(LinkExpired):
        await entitlements.request_download(
            db, blob_store, item_id, customer.id, now=VERIFIED_AT + timedelta(days=8)
        )
    count = await db.scalar(select(OrderItem.download_count).where(OrderItem.id == item_id))
    assert count == 0


async def test_other_user_cannot_download(db, blob_store, other_customer, verified_item):
    item_id, _ = verified_item
    with pytest.raises(NotAvailable):
        await entitlements.request_download(db, blob_store, item_id, other_customer.id, now=VERIFIED_AT)


async def test_unverified_order_is_not_available(db, cart_store, blob_store, customer, make_product):
    product = await make_product()
    await cart_store.add(CartOwner.for_user(customer.id), product.id)
    order, _ = await order_ledger.create_order(db, cart_store, customer)
    await order_ledger.submit_payment_reference(db, order.id, customer.id, "UTR123456")

    with pytest.raises(NotAvailable):
        await entitlements.request_download(db, blob_store, order.items[0].id, customer.id)


async def test_inactive_entitlement_is_not_available(db, blob_store, customer, verified_item):
    item_id, _ = verified_item
    await db.execute(update(OrderItem).where(OrderItem.id == item_id).values(expires_at=None))
    await db.commit()

    with pytest.raises(NotAvailable):
        await entitlements.request_download(db, blob_store, item_id, customer.id, now=VERIFIED_AT)


async def test_disabled_blob_store_does_not_consume_download(db, customer, verified_item):
    item_id, _ = verified_item
    disabled = BlobStore("", "", "")

    with pytest.raises(DependencyUnavailable):
        await entitlements.request_download(db, disabled, item_id, customer.id, now=VERIFIED_AT)
    count = await db.scalar(select(OrderItem.download_count).where(OrderItem.id == item_id))
    assert count == 0


async def test_concurrent_downloads_never_exceed_limit(session_factory, blob_store, customer, verified_item):
    item_id, _ = verified_item
    attempts = 9
    now = VERIFIED_AT + timedelta(hours=2)

    async def attempt():
        async with session_factory() as session:
            return await entitlements.request_download(session, blob_store, item_id, customer.id, now=now)

    results = await asyncio.gather(*(attempt() for _ in range(attempts)), return_exceptions=True)

    grants = [r for r in results if isinstance(r, entitlements.DownloadGrant)]
    refused = [r for r in results if isinstance(r, LimitReached)]
    assert len(grants) == 5
    assert len(refused) == attempts - 5
    assert sorted(g.remaining_downloads for g in grants) == [0, 1, 2, 3, 4]

    async with session_factory() as session:
        assert await session.scalar(select(OrderItem.download_count).where(OrderItem.id == item_id)) == 5
        assert await session.scalar(select(func.count()).select_from(DownloadLog)) == 5


def test_entitlement_state_machine():
    now = VERIFIED_AT
    item = OrderItem(download_count=0, download_limit=5, expires_at=None)
    assert entitlements.entitlement_state(item, now) == EntitlementState.INACTIVE

    item.expires_at = now + timedelta(days=7)
    assert entitlements.entitlement_state(item, now) == EntitlementState.ACTIVE

    item.download_count = 5
    assert entitlements.entitlement_state(item, now) == EntitlementState.EXHAUSTED

    item.download_count = 2
    assert entitlements.entitlement_state(item, now + timedelta(days=8)) == EntitlementState.EXPIRED
