"""
Wellness Subscriptions API - Main Application
=============================================

FastAPI application entry point with middleware configuration
and route registration.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import newrelic.agent

# Configure logging for the application (root logger defaults to WARNING)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.db.session import init_db, close_db
from app.core.errors import setup_exception_handlers

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


# =============================================================================
# New Relic Transaction Enrichment Middleware (Raw ASGI)
# =============================================================================

class NewRelicTransactionMiddleware:
    """
    Raw ASGI middleware that enriches every New Relic transaction with
    custom attributes for filtering and alerting.

    Uses raw ASGI instead of BaseHTTPMiddleware to preserve the async
    context chain New Relic relies on for span propagation.

    Captures: response status, latency, HTTP method and route pattern.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500  # default until we capture the real one

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000

            txn = newrelic.agent.current_transaction()
            if txn:
                route = scope.get("route")
                route_path = route.path if route else scope.get("path", "unknown")

                newrelic.agent.add_custom_attributes([
                    ("http.method", scope.get("method", "")),
                    ("http.route", route_path),
                    ("http.status_code", status_code),
                    ("http.duration_ms", round(duration_ms, 2)),
                    ("environment", settings.ENVIRONMENT),
                ])


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Opens the process-wide database engine on startup and disposes it on
    shutdown.
    """
    logger.info("Starting Wellness Subscriptions API...")

    if not settings.webhook_auth_enforced:
        logger.warning(
            "RevenueCat webhook authentication is DISABLED "
            "(REVENUECAT_WEBHOOK_AUTH=disabled); any caller can change "
            "subscription state. DO NOT use this setting in production!"
        )
    elif not settings.REVENUECAT_WEBHOOK_SECRET:
        logger.warning(
            "REVENUECAT_WEBHOOK_SECRET is not set; all RevenueCat webhooks "
            "will be rejected with 401"
        )

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.warning(
            "STRIPE_WEBHOOK_SECRET is not set; Stripe webhooks will be rejected"
        )

    # Continue startup even if DB fails (for health checks)
    try:
        await init_db()
    except Exception as e:
        logger.warning("Database connection failed: %s", e)

    yield

    logger.info("Shutting down Wellness Subscriptions API...")
    await close_db()


# Create FastAPI application
app = FastAPI(
    title="Wellness Subscriptions API",
    description="""
## Wellness Community Subscription Backend

Keeps local subscription state in sync with RevenueCat and Stripe.

### Features
- **Webhooks**: RevenueCat purchase, renewal, cancellation and expiration events
- **Stripe**: Checkout and subscription lifecycle events
- **Subscription**: Premium status and feature access for signed-in users
    """,
    version=API_VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
    responses={
        401: {"description": "Not authenticated"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
    },
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# New Relic transaction enrichment (adds custom attrs to every transaction)
app.add_middleware(NewRelicTransactionMiddleware)

# Setup exception handlers
setup_exception_handlers(app)


# =============================================================================
# Health Check Endpoints
# =============================================================================

@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns the current status of the API.
    """
    return {
        "status": "healthy",
        "version": API_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/", tags=["Health"])
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": "Wellness Subscriptions API",
        "version": API_VERSION,
        "docs": "/docs" if settings.is_development else "Disabled in production",
    }


# =============================================================================
# API Routes
# =============================================================================

from app.api.v1 import subscription, webhooks
app.include_router(webhooks.router, tags=["Webhooks"])
app.include_router(subscription.router, prefix="/api/v1/subscription", tags=["Subscription"])
