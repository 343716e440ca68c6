"""
FastAPI main application.

Handles:
- Application initialization
- Middleware configuration
- Route mounting
- CORS setup
- Billing error translation
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from tribelab.core.config import settings
from tribelab.core.exceptions import BillingError
from tribelab.core.rate_limit import limiter, rate_limit_exception, rate_limit_handler
from tribelab.api.routes import communities, community_subscriptions, cron, subscription_conflicts, webhooks

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Community subscription, trial and billing reconciliation API",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(rate_limit_exception, rate_limit_handler)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Startup event
@app.on_event("startup")
async def startup_event():
    """Log configuration on startup."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Debug mode: {settings.debug}")

    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        logger.warning("Razorpay credentials not configured; checkout and cancellation will fail")
    if settings.allow_unverified_signatures:
        logger.warning("allow_unverified_signatures is ON; payment signatures are not enforced")

    logger.info("Application startup complete")


# Shutdown event
@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Shutting down application")


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment
    }


# Mount API routes
app.include_router(
    subscription_conflicts.router,
    prefix=f"{settings.api_v1_prefix}/admin/subscription-conflicts",
    tags=["subscription-conflicts"]
)

app.include_router(
    communities.router,
    prefix=f"{settings.api_v1_prefix}/communities",
    tags=["communities"]
)

app.include_router(
    community_subscriptions.router,
    prefix=f"{settings.api_v1_prefix}/community-subscriptions",
    tags=["community-subscriptions"]
)

app.include_router(
    webhooks.router,
    prefix=f"{settings.api_v1_prefix}/webhooks",
    tags=["webhooks"]
)

app.include_router(
    cron.router,
    prefix=f"{settings.api_v1_prefix}/cron",
    tags=["cron"]
)


# Exception handlers
@app.exception_handler(BillingError)
async def billing_error_handler(request, exc):
    """Handle billing errors raised outside route try blocks."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message}
    )


@app.exception_handler(ValueError)
async def value_error_handler(request, exc):
    """Handle ValueError exceptions."""
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc)}
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request, exc):
    """Handle uncaught exceptions."""
    logger.error(f"Uncaught exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "tribelab.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
