"""
Entitlements Service - FastAPI Application

Main entry point for the backend API.
Provides checkout, free activation, entitlement lookups, the Stripe
webhook and the expiration sweep trigger.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from entitlements.config.settings import settings
from entitlements.infrastructure.exceptions import (
    ConfigurationError,
    ConflictError,
    EntitlementsError,
    ExternalServiceError,
    PersistenceError,
    PlanNotFound,
    SignatureInvalid,
    ValidationError,
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
    logger.info(f"Entitlements service starting in {settings.environment} mode...")

    if settings.database_url or settings.supabase_password:
        try:
            from entitlements.infrastructure.db.database import init_db
            await init_db()
            logger.info("Database connection pool initialized")
        except Exception as e:
            logger.warning(f"Database initialization skipped: {e}")

    yield

    if settings.database_url or settings.supabase_password:
        try:
            from entitlements.infrastructure.db.database import close_db
            await close_db()
            logger.info("Database connection pool closed")
        except Exception as e:
            logger.warning(f"Database shutdown error: {e}")

    logger.info("Entitlements service shutting down...")


app = FastAPI(
    title="Entitlements Service",
    description="Subscriptions, coupons and horse quotas",
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

@app.exception_handler(PlanNotFound)
async def plan_not_found_handler(request: Request, exc: PlanNotFound):
    return JSONResponse(status_code=404, content=exc.to_dict())


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    """User-correctable errors; the message is shown verbatim."""
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(SignatureInvalid)
async def signature_invalid_handler(request: Request, exc: SignatureInvalid):
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(ConflictError)
async def conflict_error_handler(request: Request, exc: ConflictError):
    logger.warning(f"Conflict on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=409, content=exc.to_dict())


@app.exception_handler(ExternalServiceError)
async def external_service_error_handler(request: Request, exc: ExternalServiceError):
    """Upstream failures. Webhooks answer 500 so Stripe redelivers."""
    logger.error(f"External service error on {request.url.path}: {exc.message} {exc.details}")
    status_code = 500 if request.url.path.startswith("/api/webhooks") else 502
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    logger.error(f"Persistence error on {request.url.path}: {exc.message} {exc.details}")
    status_code = 500 if request.url.path.startswith("/api/webhooks") else 503
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error: {exc.message} {exc.details}")
    return JSONResponse(status_code=503, content=exc.to_dict())


@app.exception_handler(EntitlementsError)
async def general_error_handler(request: Request, exc: EntitlementsError):
    """Handle all other application errors."""
    return JSONResponse(status_code=500, content=exc.to_dict())


# ============================================================================
# Health Check
# ============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "entitlements"}


# ============================================================================
# Import and register routers
# ============================================================================

from entitlements.api.routes import (  # noqa: E402
    admin,
    coupons,
    entitlements,
    jobs,
    subscriptions,
    webhooks,
)

app.include_router(subscriptions.router, prefix="/api", tags=["Subscriptions"])
app.include_router(entitlements.router, prefix="/api", tags=["Entitlements"])
app.include_router(coupons.router, prefix="/api", tags=["Coupons"])
app.include_router(webhooks.router, prefix="/api", tags=["Webhooks"])
app.include_router(admin.router)
app.include_router(jobs.router)
