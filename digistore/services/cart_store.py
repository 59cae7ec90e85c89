# digistore/services/cart_store.py
# Корзина в Redis: JSON-массив id товаров под ключом владельца, TTL 7 дней.
# Цифровые товары продаются без количества, поэтому повтор товара запрещён.
import enum
import json
import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional

import redis.asyncio as redis
from fastapi import Depends, Request, Response

from digistore.core.config import settings
from digistore.core.errors import DuplicateItem
from digistore.core.security import get_optional_user
from digistore.models.user import User

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Id"


class OwnerKind(str, enum.Enum):
    USER = "user"
    SESSION = "session"


@dataclass(frozen=True)
class CartOwner:
    kind: OwnerKind
    id: str

    @property
    def key(self) -> str:
        return f"cart:{self.kind.value}:{self.id}"

    @classmethod
    def for_user(cls, user_id: str) -> "CartOwner":
        return cls(OwnerKind.USER, str(user_id))

    @classmethod
    def for_session(cls, session_id: str) -> "CartOwner":
        return cls(OwnerKind.SESSION, session_id)


class CartStore:
    """Операции над корзиной. Каждая мутация продлевает TTL ключа."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = settings.CART_TTL_SECONDS):
        self._client = client
        self.ttl_seconds = ttl_seconds

    async def get(self, owner: CartOwner) -> List[str]:
        data = await self._client.get(owner.key)
        if not data:
            return []
        return json.loads(data)

    async def add(self, owner: CartOwner, product_id: str) -> int:
        product_ids = await self.get(owner)
        if product_id in product_ids:
            raise DuplicateItem()
        product_ids.append(product_id)
        await self._client.set(owner.key, json.dumps(product_ids), ex=self.ttl_seconds)
        return len(product_ids)

    async def remove(self, owner: CartOwner, product_id: str) -> int:
        product_ids = [pid for pid in await self.get(owner) if pid != product_id]
        if not product_ids:
            await self._client.delete(owner.key)
        else:
            await self._client.set(owner.key, json.dumps(product_ids), ex=self.ttl_seconds)
        return len(product_ids)

    async def clear(self, owner: CartOwner) -> None:
        await self._client.delete(owner.key)


_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def get_cart_store() -> CartStore:
    """Зависимость FastAPI: хранилище корзин поверх общего клиента Redis."""
    return CartStore(get_redis())


def resolve_cart_owner(
    request: Request,
    response: Response,
    user: User | None = Depends(get_optional_user),
) -> CartOwner:
    """
    Определяет владельца корзины: пользователь важнее сессии.
    Анонимному клиенту без идентификатора выдаём новую сессию (cookie + заголовок),
    общей «анонимной» корзины нет.
    """
    if user is not None:
        return CartOwner.for_user(user.id)

    session_id = request.headers.get(SESSION_HEADER) or request.cookies.get(settings.SESSION_COOKIE_NAME)
    if not session_id:
        session_id = uuid.uuid4().hex
        logger.info("Issued new cart session %s", session_id)
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        session_id,
        max_age=settings.CART_TTL_SECONDS,
        httponly=True,
        samesite="lax",
    )
    response.headers[SESSION_HEADER] = session_id
    return CartOwner.for_session(session_id)
