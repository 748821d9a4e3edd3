"""
Series Republisher - Main FastAPI Application
Download queue, upload schedule and live progress for republished series
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import time

from republisher.config import settings
from republisher.api.v1 import api_router
from republisher.clients.catalog_client import CatalogClient
from republisher.clients.hosting_client import create_hosting_client
from republisher.core.events import ProgressBroadcaster
from republisher.core.logging_config import configure_logging, get_logger
from republisher.database.session import async_session_maker, init_db, close_db
from republisher.services.batch_downloader import BatchDownloader
from republisher.services.upload_scheduler import UploadScheduler
from republisher.services.uploader import EpisodeUploader

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Builds the long-lived services on startup and closes them on shutdown.
    """
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.APP_ENV}")

    for problem in settings.validate_required_settings():
        logger.warning(f"Configuration: {problem}")

    if settings.DATABASE_AUTO_CREATE:
        await init_db()

    broadcaster = ProgressBroadcaster()
    catalog_client = CatalogClient()
    hosting_client = create_hosting_client()

    app.state.broadcaster = broadcaster
    app.state.catalog_client = catalog_client
    app.state.downloader = BatchDownloader(async_session_maker, catalog_client)
    app.state.hosting_client = hosting_client
    app.state.uploader = None
    app.state.scheduler = None

    if hosting_client is not None:
        uploader = EpisodeUploader(async_session_maker, hosting_client)
        scheduler = UploadScheduler(async_session_maker, uploader)
        app.state.uploader = uploader
        app.state.scheduler = scheduler

        if settings.SCHEDULER_ENABLED:
            scheduler.start(broadcaster)
    else:
        logger.warning("Hosting credentials missing, upload scheduler disabled")

    yield

    # Shutdown
    logger.info("Shutting down application")
    if app.state.scheduler is not None:
        app.state.scheduler.stop()
        await app.state.scheduler.wait_idle()

    await catalog_client.close()
    if hosting_client is not None:
        await hosting_client.close()
    await close_db()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Download, schedule and republish series episodes",
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
    lifespan=lifespan
)


# Middleware Configuration
# -----------------------

# CORS Middleware
app.add_middleware(CORSMiddleware, **settings.get_cors_config())

# GZip Compression
app.add_middleware(GZipMiddleware, minimum_size=1000)


# Request Timing Middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add X-Process-Time header to all responses."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = f"{process_time:.4f}"
    return response


# Exception Handlers
# ------------------

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for unhandled exceptions."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "error": str(exc) if settings.DEBUG else "An unexpected error occurred"
        }
    )


# API Routes
# ----------

@app.get("/health", tags=["health"])
async def health_check(request: Request):
    """Health check endpoint for monitoring."""
    scheduler = getattr(request.app.state, "scheduler", None)
    broadcaster = getattr(request.app.state, "broadcaster", None)
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "scheduler_running": scheduler.is_running if scheduler else False,
        "progress": broadcaster.get_stats() if broadcaster else {}
    }


app.include_router(api_router, prefix=settings.API_V1_PREFIX)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "republisher.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
