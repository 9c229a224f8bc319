# jewelhaven/main.py
# Точка входа FastAPI. Таблицы и сборка оформления заказа создаются в lifespan.

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from jewelhaven.db.session import engine
from jewelhaven.db.base import Base
from jewelhaven.core.config import settings
from jewelhaven.core.errors import StockConflictError, StorefrontError
from jewelhaven.api import admin, auth, cart, checkout, contact, orders, payments, products, users
from jewelhaven.services.checkout import build_checkout_registry

# Импорт моделей, чтобы SQLAlchemy видел их определения
import jewelhaven.models.user
import jewelhaven.models.product
import jewelhaven.models.cart
import jewelhaven.models.order
import jewelhaven.models.contact

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def try_create_tables(retries: int = 5, delay: int = 2) -> bool:
    """
    Пытаемся создать таблицы с повторными попытками.
    Если БД недоступна, логируем ошибку и пробуем снова.

    Returns:
        True если таблицы созданы/существуют, False если все попытки исчерпаны
    """
    for attempt in range(1, retries + 1):
        try:
            logger.info(f"Creating tables ({attempt}/{retries})...")
            Base.metadata.create_all(bind=engine)
            logger.info("✅ Database tables created (or already exist).")
            return True
        except Exception as e:
            logger.warning(f"❌ Attempt {attempt}/{retries} failed to create tables: {e}")
            if attempt < retries:
                logger.info(f"⏳ Waiting {delay}s before retry...")
                time.sleep(delay)
    logger.error(f"❌ Could not create tables after {retries} retries.")
    return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Старт: таблицы и реестр сессий оформления.
    Остановка: отмена незавершённых опросов оплаты, закрытие пула БД.
    """
    logger.info("🚀 Jewel Haven API starting up...")
    if not try_create_tables(retries=5, delay=2):
        if settings.ENVIRONMENT in ("production", "prod"):
            raise RuntimeError("Cannot start application: database tables creation failed")
        logger.error("⚠️ Failed to create database tables. Application may not work correctly.")

    if getattr(app.state, "checkout", None) is None:
        app.state.checkout = build_checkout_registry()

    yield

    logger.info("🛑 Jewel Haven API shutting down...")
    await app.state.checkout.shutdown()
    engine.dispose()


app = FastAPI(
    title="Jewel Haven API",
    description="Storefront API: catalog, cart, checkout with M-Pesa push payments",
    version="1.0.0",
    lifespan=lifespan
)

if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(products.router, prefix="/api/products", tags=["products"])
app.include_router(cart.router, prefix="/api/cart", tags=["cart"])
app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
app.include_router(payments.router, prefix="/api/payments/mpesa", tags=["payments"])
app.include_router(checkout.router, prefix="/api/checkout", tags=["checkout"])
app.include_router(users.router, prefix="/api/user", tags=["user"])
app.include_router(contact.router, prefix="/api/contact", tags=["contact"])
app.include_router(admin.router, prefix="/api/admin", tags=["admin"])


@app.get("/", tags=["health"])
async def root():
    return {
        "status": "ok",
        "service": "Jewel Haven API",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health", tags=["health"])
async def health():
    return {"status": "healthy", "version": "1.0.0"}


@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError) -> JSONResponse:
    """Ошибки предметной области -> HTTP-статус из самого исключения."""
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    if isinstance(exc, StockConflictError):
        content["issues"] = exc.issues
    if exc.status_code >= 500:
        logger.warning(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
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
        "jewelhaven.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower()
    )
