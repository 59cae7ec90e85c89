# digistore/main.py
# Точка входа FastAPI. Создание таблиц выполняется в событии startup с обработкой ошибок.

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from digistore.api import admin as admin_router
from digistore.api import auth as auth_router
from digistore.api import cart as cart_router
from digistore.api import orders as orders_router
from digistore.api import products as products_router
from digistore.core.config import settings
from digistore.core.errors import DigistoreError
from digistore.db.base import Base
from digistore.db.session import engine
from digistore.services.cart_store import close_redis

# Импорт моделей, чтобы SQLAlchemy видел их определения
import digistore.models.user
import digistore.models.product
import digistore.models.order
import digistore.models.download_log
import digistore.models.admin_log

# Настройка логирования
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


async def try_create_tables(retries: int = 5, delay: int = 2) -> bool:
    """
    Пытаемся создать таблицы с повторными попытками.
    Если БД недоступна, логируем ошибку и пробуем снова.

    Args:
        retries: Количество попыток подключения
        delay: Задержка между попытками в секундах

    Returns:
        True если таблицы созданы/существуют, False если все попытки исчерпаны
    """
    for attempt in range(1, retries + 1):
        try:
            logger.info(f"Попытка создания таблиц ({attempt}/{retries})...")
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("✅ Database tables created (or already exist).")
            return True
        except Exception as e:
            logger.warning(f"❌ Attempt {attempt}/{retries} failed to create tables: {e}")
            if attempt < retries:
                logger.info(f"⏳ Waiting {delay}s before retry...")
                await asyncio.sleep(delay)
            else:
                logger.error(
                    f"❌ Could not create tables after {retries} retries. "
                    "Database initialization failed. Startup cannot continue."
                )
    return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Управление жизненным циклом приложения.
    Запускается при старте и завершении приложения.
    """
    # Startup
    logger.info("🚀 FastAPI starting up...")
    if not await try_create_tables(retries=5, delay=2):
        logger.error("⚠️ Failed to create database tables. Application may not work correctly.")
        if settings.ENVIRONMENT in ("production", "prod"):
            raise RuntimeError("Cannot start application: database tables creation failed")

    if settings.BLOB_STORE_ENABLED:
        logger.info("✅ File storage configured: downloads enabled")
    else:
        logger.warning("⚠️ Cloudinary credentials missing: running without file storage, downloads are disabled")

    yield

    # Shutdown
    logger.info("🛑 FastAPI shutting down...")
    await close_redis()
    await engine.dispose()
    logger.info("✅ Database connection closed")


app = FastAPI(
    title="Digistore API",
    description="API магазина цифровых товаров с оплатой по UPI",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware для разработки (ограничить в продакшене!)
if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Session-Id"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["https://yourdomain.com"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
        expose_headers=["X-Session-Id"],
    )

# Подключаем роутеры
app.include_router(auth_router.router, prefix="/api/auth", tags=["auth"])
app.include_router(products_router.router, prefix="/api/products", tags=["products"])
app.include_router(cart_router.router, prefix="/api/cart", tags=["cart"])
app.include_router(orders_router.router, prefix="/api/orders", tags=["orders"])
app.include_router(admin_router.router, prefix="/api/admin", tags=["admin"])


# Базовые health check endpoints
@app.get("/", tags=["health"])
async def root():
    """Базовый health check."""
    return {
        "status": "ok",
        "service": "Digistore API",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/health", tags=["health"])
async def health():
    """Детальный health check."""
    return {
        "status": "healthy",
        "fileStorage": "enabled" if settings.BLOB_STORE_ENABLED else "disabled",
        "version": "1.0.0",
    }


@app.exception_handler(DigistoreError)
async def domain_exception_handler(request: Request, exc: DigistoreError):
    """Доменные ошибки сервисов → HTTP-ответ с их статусом."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    body = {"error": exc.message}
    if exc.details:
        body["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Ошибки валидации входных данных отдаём как 400 с деталями по полям."""
    details = [
        {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Validation error", "details": details})


# Глобальный обработчик исключений
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Глобальный обработчик ошибок."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "status": "error",
            "message": "Internal server error",
            "detail": str(exc) if settings.ENVIRONMENT == "development" else "An error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "digistore.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower(),
    )
