"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from bnpl_gateway.api.errors import register_exception_handlers
from bnpl_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from bnpl_gateway.api.v1 import accounts, mandates, orders, webhooks
from bnpl_gateway.infrastructure.clients.provider import MandateProviderClient, build_provider_client
from bnpl_gateway.infrastructure.observability.logging import setup_logging
from bnpl_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level, settings.service_name)


def create_app(provider_client: MandateProviderClient | None = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    The provider client is fixed here for the app's lifetime; pass one in
    to override the PROVIDER_MODE setting (tests pass the in-memory fake).
    """
    app = FastAPI(
        title="BNPL Gateway",
        description="Buy-now-pay-later orders, direct-debit mandates and payment reconciliation",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.provider_client = provider_client or build_provider_client()

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name, "degraded_mode": settings.degraded_mode}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(orders.router, prefix="/v1", tags=["orders"])
    app.include_router(accounts.router, prefix="/v1", tags=["accounts"])
    app.include_router(mandates.router, prefix="/v1", tags=["mandates"])
    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

    return app


app = create_app()
