"""
Billing Service - FastAPI Application

Main entry point for the tenant billing API.
Provides checkout, Efí webhook and admin billing endpoints.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config.settings import settings
from app.infrastructure.exceptions import (
    BillingServiceError,
    ConfigurationError,
    DatabaseError,
    GatewayError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    WebhookAuthenticationError,
    status_code_for,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info(f"Billing service starting in {settings.environment} mode...")

    if settings.database_url:
        try:
            from app.infrastructure.db.database import init_db
            await init_db()
            logger.info("Database connection pool initialized")
        except Exception as e:
            logger.warning(f"Database initialization skipped: {e}")

    if not settings.webhook_tokens:
        logger.warning("EFI_WEBHOOK_TOKEN is not set; Efí notifications will not be authenticated")

    yield

    if settings.database_url:
        try:
            from app.infrastructure.db.database import close_db
            await close_db()
            logger.info("Database connection pool closed")
        except Exception as e:
            logger.warning(f"Database shutdown error: {e}")

    logger.info("Billing service shutting down...")


app = FastAPI(
    title="Billing Service",
    description="Tenant subscription billing on the Efí payment gateway",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS configuration from Settings
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Exception Handlers
# ============================================================================

def _error_response(exc: BillingServiceError) -> JSONResponse:
    return JSONResponse(status_code=status_code_for(exc), content=exc.to_dict())


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """Handle validation errors."""
    return _error_response(exc)


@app.exception_handler(PermissionDeniedError)
async def permission_error_handler(request: Request, exc: PermissionDeniedError):
    """Handle tenant access violations."""
    return _error_response(exc)


@app.exception_handler(WebhookAuthenticationError)
async def webhook_auth_error_handler(request: Request, exc: WebhookAuthenticationError):
    return _error_response(exc)


@app.exception_handler(NotFoundError)
async def not_found_error_handler(request: Request, exc: NotFoundError):
    """Handle not found errors."""
    return _error_response(exc)


@app.exception_handler(GatewayError)
async def gateway_error_handler(request: Request, exc: GatewayError):
    """Handle Efí failures, keeping the gateway diagnostics in the body."""
    logger.error(f"Gateway error at stage {exc.stage}: {exc}")
    return _error_response(exc)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error: {exc}")
    return _error_response(exc)


@app.exception_handler(DatabaseError)
async def database_error_handler(request: Request, exc: DatabaseError):
    logger.error(f"Database error: {exc}")
    return _error_response(exc)


@app.exception_handler(BillingServiceError)
async def general_error_handler(request: Request, exc: BillingServiceError):
    """Handle all other application errors."""
    return JSONResponse(
        status_code=500,
        content=exc.to_dict(),
    )


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "billing-service"}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Billing Service API",
        "version": "1.0.0",
        "docs": "/docs",
    }


# ============================================================================
# Import and register routers
# ============================================================================

from app.api.routes import admin_billing, billing, webhooks

app.include_router(billing.router, prefix="/api", tags=["Billing"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(admin_billing.router, prefix="/api", tags=["Admin Billing"])
