"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from tabs_billing.api.middleware import RequestIDMiddleware, MetricsMiddleware
from tabs_billing.api.v1 import allocations, billing_groups, line_items, webhooks
from tabs_billing.infrastructure.observability.logging import setup_logging
from tabs_billing.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Tabs Billing",
        description="Billing group payment allocation and deletion protection service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(allocations.router, prefix="/v1", tags=["allocations"])
    app.include_router(billing_groups.router, prefix="/v1", tags=["billing-groups"])
    app.include_router(line_items.router, prefix="/v1", tags=["line-items"])
    app.include_router(webhooks.router, prefix="/v1", tags=["webhooks"])

    return app


app = create_app()
