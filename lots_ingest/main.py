"""
FastAPI application main module.
Wires the ingestion pipeline into an application lifespan and exposes
operational endpoints (health, queues, caches, breaker, manual triggers).
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
import time
import uuid
import os
from contextlib import asynccontextmanager
from lots_ingest.api.v1 import api_router
from lots_ingest.utils import setup_logging, get_logger
from lots_ingest.database import engine, Base, SessionLocal
from lots_ingest.config import ENABLE_BACKGROUND_WORKERS
from lots_ingest.runtime import ServiceContainer
import lots_ingest.models.db  # noqa: F401  (register tables on Base.metadata)

# Setup logging before creating the app
setup_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE", "logs/app.log"),
    enable_console=True
)

logger = get_logger(__name__)

SERVICE_NAME = "lots-ingest"
VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Builds the service container and starts/stops the background loops.
    """
    logger.info("Application startup initiated")
    container: ServiceContainer | None = None
    try:
        logger.info("Creating database tables")
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created successfully")

        container = ServiceContainer()
        # endpoints reach the pipeline through app.state, never through module globals
        app.state.container = container  # type: ignore[attr-defined]
        if ENABLE_BACKGROUND_WORKERS:
            container.start()
        else:
            logger.info("Background workers disabled; skipping loop startup")
        logger.info("Application startup completed successfully")
        yield
    except Exception as e:  # pragma: no cover
        logger.error("Application startup failed", error=str(e), exc_info=True)
        raise
    finally:
        logger.info("Application shutdown initiated")
        if container is not None:
            await container.stop()
        logger.info("Application shutdown completed")

app = FastAPI(
    title="Lots Ingest",
    description="""
    Ingestion pipeline for bankruptcy-auction lots.

    ## Features
    * **Discovery** - hourly scan of the legacy registry trade list
    * **Scraping** - bidding and lot cards with bounded per-item retry
    * **Classification** - LLM-based categorisation behind a shared breaker and throttle
    * **Coordinates** - cadastral-number geolocation with a retry list
    * **Recovery** - periodic re-classification of lots left without categories
    * **Trade outcomes** - daily status, final price and winner updates
    """,
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/api/v1/openapi.json",
    lifespan=lifespan,
)

# CORS middleware - configure appropriately for production
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Compression middleware for better performance
app.add_middleware(GZipMiddleware, minimum_size=1000)

# Request ID and comprehensive logging middleware
@app.middleware("http")
async def add_request_context_and_logging(request: Request, call_next):
    """
    Add request ID, timing, and request/response logging.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    request.state.start_time = time.time()

    logger.info(
        "Request started",
        method=request.method,
        url=str(request.url),
        user_agent=request.headers.get("User-Agent"),
        remote_addr=request.client.host if request.client else "unknown",
        request_id=request_id
    )

    response = await call_next(request)

    process_time = time.time() - request.state.start_time

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = str(round(process_time * 1000, 2))
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"

    logger.info(
        "Request completed",
        method=request.method,
        url=str(request.url),
        status_code=response.status_code,
        process_time_ms=round(process_time * 1000, 2),
        request_id=request_id
    )

    return response

# Custom exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle Pydantic validation errors."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "Request validation failed",
        errors=exc.errors(),
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "message": "Request validation failed",
            "details": exc.errors(),
            "request_id": request_id
        }
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
        url=str(request.url),
        method=request.method
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "message": exc.detail,
            "request_id": request_id
        }
    )

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")

    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        request_id=request_id,
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "request_id": request_id
        }
    )

# Health check endpoints
@app.get("/health", tags=["health"], summary="Basic health check")
async def health_check():
    """Basic health check endpoint for load balancers."""
    container = getattr(app.state, "container", None)
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "timestamp": time.time(),
        "workers_running": bool(container is not None and container.running),
    }

@app.get("/health/detailed", tags=["health"], summary="Detailed health check")
async def detailed_health_check():
    """Detailed health check with database, queue, cache and breaker status."""
    health_status = {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": VERSION,
        "timestamp": time.time(),
        "checks": {}
    }

    # Database check
    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    container = getattr(app.state, "container", None)
    if container is None:
        health_status["checks"]["pipeline"] = "not initialized"
        health_status["status"] = "degraded"
        return health_status

    # Avoid dumping potentially large internals
    queues = container.queue_snapshot()
    health_status["checks"]["queues"] = {
        name: {k: v for k, v in snap.items() if k in {"depth", "processed", "failed", "retry_list"}}
        for name, snap in queues.items()
    }
    health_status["checks"]["caches"] = container.cache_snapshot()
    breaker = container.breaker_snapshot()
    health_status["checks"]["circuit_breaker"] = {k: v for k, v in breaker.items() if k != "throttle"}
    if breaker.get("state") == "OPEN":
        health_status["status"] = "degraded"

    return health_status

# API Documentation root
@app.get("/", tags=["root"])
async def root():
    """API root endpoint with basic information."""
    return {
        "message": "Lots Ingest API",
        "version": VERSION,
        "documentation": "/docs",
        "health_check": "/health",
        "api_base": "/api/v1"
    }

# Include API router with version prefix
app.include_router(api_router, prefix="/api/v1")

# Development server configuration
if __name__ == "__main__":
    import uvicorn

    logger.info("Starting development server")

    uvicorn.run(
        "lots_ingest.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        reload_dirs=["lots_ingest"],
        log_level="info",
        access_log=True
    )
