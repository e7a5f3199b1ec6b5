"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from clinic_ledger.api.middleware import MetricsMiddleware, RequestIDMiddleware
from clinic_ledger.api.v1 import notifications, payments, plans, templates
from clinic_ledger.config import settings
from clinic_ledger.infrastructure.observability.logging import setup_logging

setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Clinic Ledger",
        description="Payment plans, payment reconciliation and SMS receipts for the clinic",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Last added runs first
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(plans.router, prefix="/v1", tags=["plans"])
    app.include_router(payments.router, prefix="/v1", tags=["payments"])
    app.include_router(notifications.router, prefix="/v1", tags=["notifications"])
    app.include_router(templates.router, prefix="/v1", tags=["plan-templates"])

    return app


app = create_app()
