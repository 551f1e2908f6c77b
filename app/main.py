"""EyeBalance billing API - FastAPI application entrypoint."""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import AppConfig, load_config, log_config_snapshot
from app.middleware import (
    RequestContextMiddleware,
    RequestSizeLimitMiddleware,
    SecurityHeadersMiddleware,
)
from app.routers import billing, status
from billing.reconciler import EntitlementReconciler
from billing.stripe_client import StripeProcessor, init_stripe
from persistence.db import Database
from persistence.entitlements import EntitlementStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    config: Optional[AppConfig] = None,
    database: Optional[Database] = None,
    processor=None,
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Loaded configuration (default: from environment)
        database: Entitlement database (default: opened at config.db_path)
        processor: Stripe gateway (default: StripeProcessor)
    """
    if config is None:
        config = load_config()
        log_config_snapshot(config)

    if database is None:
        database = Database(config.db_path)

    if processor is None:
        init_stripe()
        processor = StripeProcessor()

    started_at = datetime.now(timezone.utc)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        database.open()
        store = EntitlementStore(database)
        app.state.store = store
        app.state.reconciler = EntitlementReconciler(store, processor)
        logger.info("Entitlement store ready")
        try:
            yield
        finally:
            database.close()

    app = FastAPI(
        title="EyeBalance Billing",
        description="Device subscription entitlements synced from Stripe",
        version=config.service_version,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.processor = processor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Middleware stack (order matters - added in reverse execution order)
    # 1. RequestContext: First to run, wraps everything, adds X-Request-Id to responses
    # 2. SecurityHeaders: Adds security headers to responses
    # 3. RequestSizeLimit: Rejects oversized requests early
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=config.max_request_size_bytes)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestContextMiddleware)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": "Invalid request"})

    app.include_router(billing.router)
    app.include_router(status.router)

    @app.get("/health")
    async def health():
        """Health check for Railway with service observability."""
        return {
            "status": "healthy",
            "service": config.service_name,
            "version": config.service_version,
            "environment": config.environment,
            "started_at": started_at.isoformat(),
        }

    return app


if __name__ == "__main__":
    import uvicorn

    _config = load_config()
    log_config_snapshot(_config)
    logger.info(f"Backend running on port {_config.port}")
    uvicorn.run(create_app(_config), host="0.0.0.0", port=_config.port)
