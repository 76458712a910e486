"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, runs, teams
from core.config import settings
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from ingestion.scheduler import PipelineScheduler

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Impact Attribution Pipeline API",
    description="Read API for pipeline runs and team attribution totals",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

scheduler = PipelineScheduler()


# Include routers
app.include_router(health.router)
app.include_router(runs.router)
app.include_router(teams.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Impact Attribution Pipeline API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if settings.SCHEDULER_ENABLED:
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Impact Attribution Pipeline API")
    if scheduler.scheduler.running:
        scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Impact Attribution Pipeline API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "runs": "/runs",
            "teams": "/teams"
        }
    }
