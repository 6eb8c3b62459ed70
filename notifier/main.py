"""Main FastAPI application"""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from notifier.core.config import settings
from notifier.core.database import AsyncSessionLocal, close_db, init_db
from notifier.core.exceptions import (
    ConfigurationError,
    DeliveryError,
    ExhaustionError,
    ValidationError,
)
from notifier.core.redis import redis_manager
from notifier.services.factory import build_services

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting up Notifier API...")

    await init_db()
    redis_client = await redis_manager.connect()

    services = build_services(settings, AsyncSessionLocal, redis_client)
    app.state.services = services

    worker = None
    if settings.JOB_QUEUE_WORKER_ENABLED:
        worker = services.job_queue.process(
            settings.JOB_QUEUE_NAME,
            services.notifications.handle_job,
            concurrency=settings.JOB_QUEUE_CONCURRENCY,
            interval=settings.JOB_QUEUE_POLL_INTERVAL,
        )

    yield

    # Shutdown
    logger.info("Shutting down Notifier API...")
    if worker:
        await worker.stop()
    await redis_manager.disconnect()
    await close_db()

# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Multi-channel notification dispatch API",
    version=settings.APP_VERSION,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    lifespan=lifespan
)

# Delivery errors that escape a handler
ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    ConfigurationError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ExhaustionError: status.HTTP_502_BAD_GATEWAY,
}

@app.exception_handler(DeliveryError)
async def delivery_error_handler(request: Request, exc: DeliveryError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_502_BAD_GATEWAY,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_code": type(exc).__name__},
    )

# Add middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
from notifier.api.v1 import api_router
from notifier.api.v1.websocket_routes import router as websocket_router
app.include_router(api_router, prefix="/api/v1")
app.include_router(websocket_router)

# Health check
@app.get("/health")
async def health_check(request: Request):
    services = getattr(request.app.state, "services", None)
    queue = None
    if services and services.job_queue:
        queue = await services.job_queue.stats(settings.JOB_QUEUE_NAME)
    return {"status": "healthy", "version": settings.APP_VERSION, "queue": queue}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "notifier.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
