"""DonorSync Backend API - Main entry point."""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from donorsync.config import get_settings
from donorsync.cron import schedule_crm_sync
from donorsync.database import Database, get_admin_client
from donorsync.logging_config import setup_logging
from donorsync.routers import crm_sync_router
from donorsync.services.sync_service import build_sync_coordinator


settings = get_settings()
logger = setup_logging(settings.log_dir)

SHUTDOWN_JOIN_TIMEOUT = 30


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info(f"Starting {settings.app_name} API...")
    coordinator = build_sync_coordinator(settings)
    app.state.sync_coordinator = coordinator

    if settings.enable_cron_jobs:
        sync_task = schedule_crm_sync(
            coordinator,
            Database(get_admin_client()),
            interval_seconds=settings.crm_scheduled_sync_interval_hours * 60 * 60,
        )
        await sync_task()

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name} API...")
    coordinator.shutdown(timeout=SHUTDOWN_JOIN_TIMEOUT)


app = FastAPI(
    title=settings.app_name,
    description="CRM donor and donation syncing for prospect research",
    version="1.0.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    if settings.debug:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Internal server error",
                "detail": str(exc),
            },
        )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error": "Internal server error",
        },
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    coordinator = getattr(app.state, "sync_coordinator", None)
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": "1.0.0",
        "active_syncs": len(coordinator.active_job_ids) if coordinator else 0,
    }


app.include_router(crm_sync_router, prefix=settings.api_v1_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "donorsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )
