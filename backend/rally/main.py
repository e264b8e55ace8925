"""
Rally Checkout API - Main Application Entry Point

Ticket purchase and Rally Credits reward redemption:
- Reward selection and pricing with cent-exact fee previews
- Payment through pluggable rails (card, wallet, payment sheet, redirect)
- Idempotent settlement from both the client callback and the gateway webhook
- Structured logging with request correlation and Prometheus metrics
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rally.api.middleware import RequestLoggingMiddleware
from rally.api.router import api_router
from rally.core.config import get_settings
from rally.core.errors import CheckoutError, ErrorKind
from rally.core.logging import get_logger, setup_logging
from rally.core.metrics import metrics_endpoint
from rally.infrastructure.redis_client import close_redis, get_redis, redis_status
from rally.services.rail_factory import PLATFORMS

settings = get_settings()
logger = get_logger(__name__)

ERROR_STATUS = {
    ErrorKind.EVENT_NOT_FOUND: 404,
    ErrorKind.REWARD_NOT_FOUND: 404,
    ErrorKind.INSUFFICIENT_CREDITS: 409,
    ErrorKind.ALREADY_ATTENDING: 409,
    ErrorKind.RAIL_IN_PROGRESS: 409,
    ErrorKind.INVALID_INTENT_STATE: 409,
    ErrorKind.REDEMPTION_LIMIT_REACHED: 409,
    ErrorKind.INVALID_REWARD_DEFINITION: 422,
    ErrorKind.RAIL_UNAVAILABLE: 422,
    ErrorKind.INVALID_WEBHOOK_SIGNATURE: 400,
    ErrorKind.PAYMENT_GATEWAY_ERROR: 402,
    ErrorKind.LEDGER_DEBIT_FAILURE: 503,
    ErrorKind.ATTENDANCE_WRITE_FAILURE: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()

    if settings.PAYMENT_PLATFORM not in PLATFORMS:
        raise RuntimeError(f"PAYMENT_PLATFORM must be one of {PLATFORMS}")

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        payment_platform=settings.PAYMENT_PLATFORM,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Settlement throttle disabled")

    yield

    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Ticket checkout with Rally Credits rewards and idempotent settlement",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    status_code = ERROR_STATUS.get(exc.kind, 400)
    log = logger.error if status_code >= 500 else logger.info
    log("checkout_error", kind=exc.kind.value, status_code=status_code, message=exc.message)

    body = {"detail": exc.message, "kind": exc.kind.value}
    available = getattr(exc, "available", None)
    if available is not None:
        body["available_credits"] = available
        body["required_credits"] = exc.required
    return JSONResponse(status_code=status_code, content=body)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "redis": await redis_status(),
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
