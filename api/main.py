"""
FastAPI application for the trial balance classifier.

This module creates and configures the FastAPI application, registering
all routers and middleware.
"""

import logging
import os
import time
from contextlib import asynccontextmanager
import redis
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from api.config import settings
from api.dependencies import SessionLocal, engine
from api.routers import files, jobs, process, websocket
from api.schemas.common import ErrorResponse, HealthCheckResponse
from backend.models.schema import Base
from services.errors import (
    ClassificationError, ClassifierError, FileNotFound, FileTooLargeError,
    InvalidFileError, OCRError, StorageError, WorkbookError
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.FileHandler(settings.LOG_FILE),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

# Order matters: subclasses before their parents
ERROR_STATUS_CODES = [
    (FileNotFound, status.HTTP_404_NOT_FOUND),
    (FileTooLargeError, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (InvalidFileError, status.HTTP_400_BAD_REQUEST),
    (WorkbookError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (StorageError, status.HTTP_404_NOT_FOUND),
    (ClassificationError, status.HTTP_502_BAD_GATEWAY),
    (OCRError, status.HTTP_502_BAD_GATEWAY),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # Startup
    logger.info(f"Starting {settings.API_TITLE} v{settings.API_VERSION}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[-1]}")  # Hide credentials
    logger.info(f"Redis: {settings.REDIS_URL}")
    logger.info(f"Classifier: {settings.CLASSIFIER_PROVIDER}, OCR: {settings.OCR_PROVIDER}")

    # Ensure database tables exist
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables verified")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")

    os.makedirs(settings.TEMP_UPLOAD_DIR, exist_ok=True)
    os.makedirs(settings.STORAGE_DIR, exist_ok=True)
    logger.info(f"Storage directory: {settings.STORAGE_DIR}")

    yield

    # Shutdown
    logger.info("Shutting down application")


# Create FastAPI application
app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS
)


# Exception handlers

def _error_response(request: Request, status_code: int, error: str, detail=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            detail=detail,
            path=str(request.url)
        ).model_dump(mode='json')
    )


@app.exception_handler(ClassifierError)
async def classifier_exception_handler(request: Request, exc: ClassifierError):
    """Map service errors that reach the app to HTTP status codes."""
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return _error_response(request, status_code, str(exc), {'type': type(exc).__name__})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        {"message": str(exc)} if settings.DEBUG else None
    )


@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    """Handle 404 Not Found errors."""
    return _error_response(
        request,
        status.HTTP_404_NOT_FOUND,
        getattr(exc, 'detail', None) or "Resource not found",
        {"path": request.url.path}
    )


# Register routers with API prefix
app.include_router(files.router, prefix=settings.API_PREFIX)
app.include_router(jobs.router, prefix=settings.API_PREFIX)
app.include_router(process.router, prefix=settings.API_PREFIX)
app.include_router(websocket.router)  # WebSocket doesn't use /api prefix


# Root endpoints

@app.get('/', include_in_schema=False)
async def root():
    """
    Root endpoint with links to the docs.
    """
    return {
        'message': f'Welcome to {settings.API_TITLE}',
        'version': settings.API_VERSION,
        'docs': '/docs',
        'redoc': '/redoc',
        'openapi': '/openapi.json'
    }


# Health probes return (state, overall status when the probe fails)

def check_database():
    try:
        with SessionLocal() as session:
            session.execute(text('SELECT 1'))
        return 'connected', None
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return 'disconnected', 'unhealthy'


def check_redis():
    try:
        redis.Redis.from_url(settings.REDIS_URL, socket_connect_timeout=2).ping()
        return 'connected', None
    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return 'disconnected', 'degraded'


def check_celery():
    try:
        from tasks.celery_app import celery_app

        workers = celery_app.control.inspect(timeout=1.0).active()
    except Exception as e:
        logger.error(f"Celery health check failed: {e}")
        return 'unknown', None

    if workers:
        return f'active ({len(workers)} workers)', None
    return 'no workers', 'degraded'


HEALTH_PROBES = {
    'database': check_database,
    'redis': check_redis,
    'celery': check_celery,
}

STATUS_SEVERITY = ['healthy', 'degraded', 'unhealthy']


@app.get('/health', response_model=HealthCheckResponse, tags=['health'])
def health_check():
    """
    Report database, Redis and Celery worker connectivity.

    A database outage makes the service ``unhealthy``; a missing Redis or
    worker pool only ``degraded``.

    **Example:**
    ```bash
    curl http://localhost:3000/health
    ```
    """
    overall = 'healthy'
    components = {}

    for name, probe in HEALTH_PROBES.items():
        components[name], failure = probe()
        if failure and STATUS_SEVERITY.index(failure) > STATUS_SEVERITY.index(overall):
            overall = failure

    return HealthCheckResponse(status=overall, version=settings.API_VERSION, **components)


@app.get('/api/ping', tags=['health'])
async def ping():
    """
    Simple ping endpoint for load balancers.

    **Returns:**
    ```json
    {"ping": "pong"}
    ```
    """
    return {'ping': 'pong'}


# Middleware for request logging

@app.middleware("http")
async def log_requests(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} - {response.status_code} ({elapsed_ms:.0f} ms)")
    return response


if __name__ == '__main__':
    import uvicorn

    uvicorn.run(
        'api.main:app',
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower()
    )
