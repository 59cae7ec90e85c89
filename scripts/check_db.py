# scripts/check_db.py
# Проверяет подключение к DATABASE_URL и REDIS_URL из digistore.core.config.settings
import asyncio

from sqlalchemy import text

from digistore.core.config import settings
from digistore.db.session import build_engine
from digistore.services.cart_store import close_redis, get_redis


async def main():
    url = settings.DATABASE_URL
    print('Trying to connect to:', url)
    engine = build_engine(url)
    try:
        async with engine.connect() as conn:
            print('Connection OK, SELECT 1 ->', (await conn.execute(text("SELECT 1"))).scalar())
    except Exception as e:
        print('Connection failed:', e)
    finally:
        await engine.dispose()

    print('Trying to connect to:', settings.REDIS_URL)
    try:
        print('Redis PING ->', await get_redis().ping())
    except Exception as e:
        print('Redis connection failed:', e)
    finally:
        await close_redis()

    print('File storage:', 'enabled' if settings.BLOB_STORE_ENABLED else 'disabled')


if __name__ == '__main__':
    asyncio.run(main())
