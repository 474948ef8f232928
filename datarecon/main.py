"""
datarecon - Main Application
FastAPI Entry Point with APScheduler for scheduled reconciliations
"""

from fastapi import FastAPI
from fastapi.responses import JSONResponse
import structlog

from datarecon import __version__
from datarecon import database
from datarecon.config import settings
from datarecon.middleware import CorrelationIdMiddleware
from datarecon.routers.datasets import router as datasets_router
from datarecon.routers.runs import router as runs_router
from datarecon.scheduler import start_scheduler, stop_scheduler
from datarecon.services import reconciliation
from datarecon.services.config_loader import load_reconciliation_config
from datarecon.services.monitoring import setup_logging

# Structured Logging Setup
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.JSONRenderer()
    ]
)
logger = structlog.get_logger()

# FastAPI App
app = FastAPI(
    title="datarecon",
    description="Row-level reconciliation of migrated datasets",
    version=__version__,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url="/redoc" if settings.environment == "development" else None,
)

app.add_middleware(CorrelationIdMiddleware)

# Register routers
app.include_router(runs_router)
app.include_router(datasets_router)

# Set on startup
scheduler = None
registry = None


@app.on_event("startup")
async def startup_event():
    """Application Startup"""
    global scheduler, registry

    setup_logging()
    logger.info("startup", environment=settings.environment)

    database.init_db()
    if database.SessionLocal is None:
        logger.warning("reconciliation_disabled", reason="database_not_configured")
        return

    # Bad dataset definitions fail startup, before any run begins
    registry, config = load_reconciliation_config(settings.reconciliation_config_path)
    service = reconciliation.init_reconciliation_service(config, database.SessionLocal)
    logger.info("reconciliation_service_initialized", datasets=sorted(config.datasets))

    scheduler = start_scheduler(
        service,
        environment=settings.environment,
        timezone=settings.scheduler_timezone,
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Application Shutdown"""
    logger.info("shutdown")

    stop_scheduler(scheduler)
    if registry is not None:
        registry.dispose()


@app.get("/")
async def root():
    """Root Endpoint"""
    return {
        "message": "datarecon API",
        "version": __version__,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    """
    Health Check Endpoint
    """
    health_status = {
        "status": "healthy",
        "environment": settings.environment,
        "services": {
            "api": "running",
            "scheduler": "running" if scheduler is not None and scheduler.running else "stopped",
            "reconciliation": "configured" if reconciliation.reconciliation_service is not None else "not_configured",
        }
    }

    if settings.database_url:
        health_status["services"]["database"] = "configured"

    return JSONResponse(
        content=health_status,
        status_code=200
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "datarecon.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development"
    )
