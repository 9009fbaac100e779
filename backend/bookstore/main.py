"""
Bookstore Shipping Backend
FastAPI application entry point
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.responses import JSONResponse
from sqlalchemy import text

from bookstore.api.routes import carrier_profiles, shipments
from bookstore.core.config import settings
from bookstore.core.database import AsyncSessionLocal, init_db
from bookstore.core.exceptions import (
    CarrierAuthError,
    CarrierBusinessError,
    InvalidTransitionError,
    LabelNotFoundError,
    OrderNotFoundError,
    ProfileNotFoundError,
    ShipmentNotBookedError,
    ShipmentValidationError,
    ShippingError,
    TransientCarrierError,
)
from bookstore.services.shipping_service import build_shipping_services

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# Checked in order; subclasses before ShippingError
ERROR_STATUS = [
    (ShipmentValidationError, 400),
    (OrderNotFoundError, 404),
    (ProfileNotFoundError, 404),
    (ShipmentNotBookedError, 404),
    (LabelNotFoundError, 404),
    (InvalidTransitionError, 409),
    (CarrierBusinessError, 422),
    (CarrierAuthError, 502),
    (TransientCarrierError, 503),
]


def status_for(error: ShippingError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables and the shared carrier clients; close them on shutdown."""
    await init_db()
    app.state.shipping = build_shipping_services()
    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")

    yield

    await app.state.shipping.close()


app = FastAPI(
    lifespan=lifespan,
    title="Bookstore Shipping API",
    description="Shiprocket and Blue Dart shipment booking, tracking, pickup and labels.",
    version="1.0.0",
)


@app.exception_handler(ShippingError)
async def shipping_error_handler(request: Request, exc: ShippingError):
    status_code = status_for(exc)
    details = {k: v for k, v in exc.details.items() if k != "raw"}
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": exc.message, "details": details},
    )


app.include_router(shipments.router, prefix="/api")
app.include_router(carrier_profiles.router, prefix="/api")


@app.get("/", tags=["Health"])
async def root():
    return {
        "message": settings.APP_NAME,
        "version": "1.0.0",
        "status": "operational"
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Returns 503 if the database is unreachable."""
    health_status = {"status": "healthy", "database": "unknown"}
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as e:
        health_status["database"] = f"error: {type(e).__name__}"
        health_status["status"] = "unhealthy"
        return JSONResponse(status_code=503, content=health_status)
    return health_status
