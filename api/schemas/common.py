"""
Common Pydantic schemas used across the API.

This module contains shared schemas for errors, health checks and
other common response patterns.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
from datetime import datetime


class ErrorResponse(BaseModel):
    """Standard error response format."""
    
    error: str = Field(..., description="Error message")
    detail: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")
    path: Optional[str] = Field(None, description="Request path that caused the error")
    
    class Config:
        json_schema_extra = {
            "example": {
                "error": "File not found",
                "detail": {"file_id": "3f2a9c1e-0b7d-4e51-9a2f-6c8d1e4b7a90"},
                "timestamp": "2025-10-15T12:00:00Z",
                "path": "/api/files/3f2a9c1e-0b7d-4e51-9a2f-6c8d1e4b7a90"
            }
        }


class HealthCheckResponse(BaseModel):
    """Health check response."""
    
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")
    version: str = Field(..., description="API version")
    database: str = Field(..., description="Database connection status")
    redis: str = Field(..., description="Redis connection status")
    celery: str = Field(..., description="Celery worker status")
    
    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2025-10-15T12:00:00Z",
                "version": "1.0.0",
                "database": "connected",
                "redis": "connected",
                "celery": "active"
            }
        }