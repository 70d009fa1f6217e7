"""
StatSnap - GA4 stats dashboard
Main FastAPI Application
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
from urllib.parse import urlparse

from app.core.config import settings
from app.api.accounts import router as accounts_router
from app.api.analytics import router as analytics_router
from app.api.cron import router as cron_router

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper()))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting StatSnap API...")
    try:
        db_host = urlparse(getattr(settings, "DATABASE_URL", "")).hostname
        logger.info("Config: db_host=%s env=%s", db_host, settings.ENVIRONMENT)
    except Exception:
        logger.info("Config: env=%s", settings.ENVIRONMENT)
    logger.info(
        "Sync config: google_client=%s cron_secret=%s replace_child_rows=%s detection_window=%sd",
        bool(getattr(settings, "GOOGLE_CLIENT_ID", "")),
        bool(getattr(settings, "CRON_SECRET", "")),
        getattr(settings, "SYNC_REPLACE_CHILD_ROWS", True),
        getattr(settings, "EVENT_DETECTION_WINDOW_DAYS", 30),
    )
    yield
    logger.info("Shutting down StatSnap API...")


app = FastAPI(
    title="StatSnap API",
    description="Sync Google Analytics 4 stats, annotate notable days, and share them",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.FRONTEND_URL, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(analytics_router, prefix="/api/analytics", tags=["analytics"])
app.include_router(accounts_router, prefix="/api/accounts", tags=["accounts"])
app.include_router(cron_router, prefix="/api/cron", tags=["cron"])


@app.get("/health")
async def health_check():
    """Liveness check (should be fast and not depend on external services)."""
    return {
        "status": "ok",
        "service": "statsnap-backend",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check (verifies the database is reachable)."""
    try:
        from sqlalchemy import text

        from app.core.database import SessionLocal

        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()

        return {"status": "ready", "db": "ok"}
    except Exception as e:
        return JSONResponse(status_code=503, content={"status": "not_ready", "error": str(e)})


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "StatSnap API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
    }
