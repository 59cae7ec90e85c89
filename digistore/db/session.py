# digistore/db/session.py
# Инициализация асинхронного SQLAlchemy engine и фабрики сессий.
# Поддерживает как Postgres (asyncpg), так и SQLite (aiosqlite, для тестов/локального использования).

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from digistore.core.config import settings


def build_engine(url: str) -> AsyncEngine:
    """Создаёт engine; для sqlite увеличиваем таймаут блокировки, для Postgres pre_ping."""
    if url.startswith("sqlite"):
        return create_async_engine(url, connect_args={"timeout": 30})
    return create_async_engine(url, pool_pre_ping=True)


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=bind, autoflush=False, expire_on_commit=False)


engine = build_engine(settings.DATABASE_URL)

SessionLocal = build_sessionmaker(engine)
