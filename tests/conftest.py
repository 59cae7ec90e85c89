# tests/conftest.py
# Общие фикстуры: отдельная SQLite-база на тест, fakeredis для корзин, httpx-клиент к приложению.
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from decimal import Decimal

import fakeredis
import pytest
from httpx import ASGITransport, AsyncClient

from digistore.core.security import create_access_token, get_db
from digistore.db.base import Base
from digistore.db.session import build_engine, build_sessionmaker
from digistore.main import app
from digistore.models.product import Product
from digistore.models.user import RoleEnum, User
from digistore.services.blob_store import BlobStore, get_blob_store
from digistore.services.cart_store import CartStore, get_cart_store


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def redis_client():
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def cart_store(redis_client):
    return CartStore(redis_client)


@pytest.fixture
def blob_store():
    return BlobStore("demo-cloud", "123456789", "test-secret")


# Пользователи и товары создаются в отдельной сессии: откаты в тестовой сессии
# не должны сбрасывать их атрибуты.
@pytest.fixture
def add_user(session_factory):
    async def _add(email, role):
        user = User(email=email, name=email.split("@")[0], role=role)
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _add


@pytest.fixture
async def customer(add_user):
    return await add_user("buyer@example.com", RoleEnum.customer)


@pytest.fixture
async def other_customer(add_user):
    return await add_user("other@example.com", RoleEnum.customer)


@pytest.fixture
async def admin_user(add_user):
    return await add_user("admin@example.com", RoleEnum.admin)


@pytest.fixture
def make_product(session_factory):
    counter = {"n": 0}

    async def _make(price="100.00", title=None, is_active=True, file_ref="digitalghar/products/file"):
        counter["n"] += 1
        n = counter["n"]
        product = Product(
            title=title or f"Product {n}",
            slug=f"product-{n}",
            price=Decimal(price),
            file_ref=f"{file_ref}-{n}" if file_ref else None,
            is_active=is_active,
        )
        async with session_factory() as session:
            session.add(product)
            await session.commit()
        return product

    return _make


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers


@pytest.fixture
async def client(session_factory, cart_store, blob_store):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_cart_store] = lambda: cart_store
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
