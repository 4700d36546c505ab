"""
Job-related Pydantic schemas.

This module contains schemas for job status, progress, and results.
"""

from enum import Enum
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime


class JobStatusEnum(str, Enum):
    """Job execution status."""
    PENDING = 'pending'
    PROCESSING = 'processing'
    SUCCESS = 'success'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


class JobTypeEnum(str, Enum):
    """Type of background job."""
    CLASSIFICATION = 'classification'
    CONVERSION = 'conversion'


class JobProgressResponse(BaseModel):
    """Real-time progress update."""

    stage: str = Field(..., description="Current stage (e.g., 'loading', 'classifying')")
    percent: float = Field(..., ge=0, le=100, description="Progress percentage")
    message: str = Field(..., description="Human-readable progress message")
    timestamp: datetime = Field(..., description="Progress update timestamp")

    class Config:
        json_schema_extra = {
            "example": {
                "stage": "classifying",
                "percent": 30.0,
                "message": "Sending accounts for classification",
                "timestamp": "2025-10-15T12:30:45Z"
            }
        }


class JobStatusResponse(BaseModel):
    """Comprehensive job status response."""

    job_id: str = Field(..., description="Unique job identifier (Celery task ID)")
    job_type: JobTypeEnum = Field(..., description="Type of job")
    status: JobStatusEnum = Field(..., description="Current job status")
    created_at: datetime = Field(..., description="Job creation timestamp")
    started_at: Optional[datetime] = Field(None, description="Job start timestamp")
    completed_at: Optional[datetime] = Field(None, description="Job completion timestamp")

    # Progress information
    progress: Optional[JobProgressResponse] = Field(None, description="Latest progress update")

    # Results
    result: Optional[Dict[str, Any]] = Field(None, description="Job results (if completed)")
    error: Optional[Dict[str, Any]] = Field(None, description="Error details (if failed)")

    # Associated file
    file_id: Optional[str] = Field(None, description="File being classified or converted")

    # Metadata
    created_by: Optional[str] = Field(None, description="User who created the job")

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "job_id": "abc-123-def-456",
                "job_type": "classification",
                "status": "processing",
                "created_at": "2025-10-15T12:00:00Z",
                "started_at": "2025-10-15T12:00:05Z",
                "completed_at": None,
                "progress": {
                    "stage": "classifying",
                    "percent": 30.0,
                    "message": "Sending accounts for classification",
                    "timestamp": "2025-10-15T12:00:30Z"
                },
                "result": None,
                "error": None,
                "file_id": "3f2a9c1e-0b7d-4e51-9a2f-6c8d1e4b7a90",
                "created_by": "public"
            }
        }


class JobCreateResponse(BaseModel):
    """Response when a job is created."""

    job_id: str = Field(..., description="Unique job identifier")
    message: str = Field(default="Job created successfully", description="Success message")
    status_url: str = Field(..., description="URL to check job status")
    websocket_url: str = Field(..., description="WebSocket URL for real-time updates")

    class Config:
        json_schema_extra = {
            "example": {
                "job_id": "abc-123-def-456",
                "message": "Classification job started",
                "status_url": "/api/jobs/abc-123-def-456",
                "websocket_url": "/ws/jobs/abc-123-def-456"
            }
        }


class JobListItem(BaseModel):
    """Job list item for job history."""

    job_id: str
    job_type: JobTypeEnum
    status: JobStatusEnum
    created_at: datetime
    completed_at: Optional[datetime]
    file_id: Optional[str]

    class Config:
        from_attributes = True


class JobListResponse(BaseModel):
    """Paginated list of jobs."""

    total: int = Field(..., description="Total number of jobs")
    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Items per page")
    total_pages: int = Field(..., description="Total number of pages")
    items: List[JobListItem] = Field(..., description="Jobs in current page")
