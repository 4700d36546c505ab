"""
Dependency injection utilities for FastAPI.

This module provides reusable dependencies for database sessions,
authentication, storage, the AI providers and other cross-cutting concerns.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Generator, Optional

import redis
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from fastapi import Depends, HTTPException, Header, Query, status

from api.config import settings
from services.classification_service import ClassificationService
from services.file_service import FileService
from services.ocr_service import OCRService
from services.providers import build_classifier, build_ocr
from services.storage_service import StorageService

logger = logging.getLogger(__name__)

# Create database engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=settings.DB_POOL_PRE_PING,
    echo=settings.DEBUG
)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Redis client for progress tracking
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


def get_db() -> Generator[Session, None, None]:
    """
    Get database session dependency.

    Yields database session and ensures it's closed after use.

    Usage:
        @app.get("/endpoint")
        def endpoint(db: Session = Depends(get_db)):
            # Use db session
            pass
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_redis() -> redis.Redis:
    """Redis client holding real-time job progress."""
    return redis_client


def get_api_key(
    x_api_key: str = Header(None, alias=settings.API_KEY_HEADER)
) -> str:
    """
    Validate API key from header.

    Args:
        x_api_key: API key from request header

    Returns:
        Validated API key

    Raises:
        HTTPException: If API key auth is enabled and the key is missing
    """
    if not settings.ENABLE_API_KEY_AUTH:
        # API key auth disabled - allow all requests
        return "public"

    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    return x_api_key


def get_current_user(api_key: str = Depends(get_api_key)) -> str:
    """
    Get current user from API key.

    Files are owned by this identifier, so every key sees only its own
    uploads.
    """
    return api_key


def get_websocket_user(
    api_key: Optional[str] = Query(None),
    x_api_key: Optional[str] = Header(None, alias=settings.API_KEY_HEADER)
) -> Optional[str]:
    """
    Identity of a WebSocket client.

    Browsers cannot set headers on a WebSocket handshake, so the key may
    also come as the ``api_key`` query parameter. ``None`` when auth is
    enabled and no key was sent.
    """
    if not settings.ENABLE_API_KEY_AUTH:
        return "public"
    return api_key or x_api_key


@lru_cache()
def get_storage() -> StorageService:
    return StorageService(
        storage_dir=settings.STORAGE_DIR,
        bucket=settings.STORAGE_BUCKET,
        signing_secret=settings.SIGNED_URL_SECRET
    )


@lru_cache()
def get_classifier() -> ClassificationService:
    """Classification service built from settings (loaded once)."""
    return build_classifier(settings)


@lru_cache()
def get_ocr_service() -> OCRService:
    return build_ocr(settings)


def get_file_service(
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage)
) -> FileService:
    """
    File service bound to the request's database session.

    Classification and OCR run in Celery workers, so the request-scoped
    service does not carry them.
    """
    return FileService(
        db_session=db,
        storage=storage,
        max_file_size=settings.MAX_FILE_SIZE_MB * 1024 * 1024,
        allowed_extensions=settings.ALLOWED_EXTENSIONS,
        signed_url_expiry=settings.SIGNED_URL_EXPIRY,
        api_prefix=settings.API_PREFIX
    )


def verify_file_size(file_size: int) -> bool:
    """
    Verify uploaded file size is within limit.

    Raises:
        HTTPException: If file is too large
    """
    max_size_bytes = settings.MAX_FILE_SIZE_MB * 1024 * 1024

    if file_size > max_size_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File size ({file_size / 1024 / 1024:.1f} MB) exceeds maximum allowed "
                   f"({settings.MAX_FILE_SIZE_MB} MB)"
        )

    return True


def verify_file_extension(filename: str) -> bool:
    """
    Verify file has allowed extension.

    Raises:
        HTTPException: If extension is not allowed
    """
    ext = Path(filename or '').suffix.lower()

    if ext not in [e.lower() for e in settings.ALLOWED_EXTENSIONS]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File extension '{ext}' not allowed. "
                   f"Allowed extensions: {', '.join(settings.ALLOWED_EXTENSIONS)}"
        )

    return True
