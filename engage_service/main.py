"""
Engage Service - FastAPI Application Entry Point

Run with: uvicorn engage_service.main:app --host 0.0.0.0 --port 8000 --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from database.database import init_db
from monitoring import init_monitoring
from .config import get_engage_settings, is_supabase_admin_configured, is_twilio_configured
from .routes import engage_router
from .dashboard_routes import dashboard_router
from .services.window_scheduler import get_window_scheduler
from . import __version__

settings = get_engage_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown."""
    # Startup
    logger.info(f"Starting Engage Service v{__version__} ({settings.environment})")
    init_monitoring(settings.sentry_dsn, settings.environment)
    init_db()

    if not is_twilio_configured():
        logger.warning("Twilio credentials not configured, WhatsApp sends will fail")
    if not is_supabase_admin_configured():
        logger.warning("Supabase service-role key not configured, user management and uploads will fail")

    scheduler = get_window_scheduler()
    if settings.window_sweep_enabled:
        await scheduler.initialize()

    yield

    # Shutdown
    await scheduler.shutdown()
    logger.info("Shutting down Engage Service")


app = FastAPI(
    title="Engage Service",
    description="Omnichannel WhatsApp engagement backend",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(engage_router)
app.include_router(dashboard_router)


@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "Engage Service",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health")
async def health():
    """Simple health check."""
    return {
        "status": "ok",
        "version": __version__,
        "twilio_configured": is_twilio_configured(),
        "supabase_admin_configured": is_supabase_admin_configured(),
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "engage_service.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
