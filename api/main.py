"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, products, sync
from api.dependencies import get_sync_service
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.logging import setup_logging
from pipeline.scheduler import SyncScheduler
import logging

setup_logging()

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Catalog Sync API",
    description="Product catalog synchronization service",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

scheduler = None


# Include routers
app.include_router(health.router)
app.include_router(sync.router)
app.include_router(products.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    global scheduler

    logger.info("Starting Catalog Sync API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if settings.ENABLE_SCHEDULER:
        scheduler = SyncScheduler(get_sync_service())
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Catalog Sync API")
    if scheduler is not None:
        scheduler.stop()
    await get_sync_service().coordinator.shutdown()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Catalog Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "sync": "/sync",
            "runs": "/sync/runs",
            "stats": "/sync/stats",
            "products": "/products"
        }
    }
