"""
Pydantic schemas for request/response validation.

This package contains all Pydantic models used for API request validation
and response serialization.
"""

from api.schemas.common import ErrorResponse, HealthCheckResponse
from api.schemas.job_schema import (
    JobStatusEnum, JobTypeEnum, JobProgressResponse,
    JobStatusResponse, JobCreateResponse, JobListItem, JobListResponse
)
from api.schemas.file_schema import (
    FileResponse, FileListResponse, SignedUrlResponse,
    CellUpdateRequest, CellUpdateResponse
)
from api.schemas.worksheet_schema import CellData, CellStyle, WorksheetData, WorksheetsResponse
from api.schemas.process_schema import ProcessRequest, ProcessPdfRequest

__all__ = [
    # Common
    'ErrorResponse',
    'HealthCheckResponse',

    # Job
    'JobStatusEnum',
    'JobTypeEnum',
    'JobProgressResponse',
    'JobStatusResponse',
    'JobCreateResponse',
    'JobListItem',
    'JobListResponse',

    # File
    'FileResponse',
    'FileListResponse',
    'SignedUrlResponse',
    'CellUpdateRequest',
    'CellUpdateResponse',

    # Worksheet
    'CellData',
    'CellStyle',
    'WorksheetData',
    'WorksheetsResponse',

    # Relay
    'ProcessRequest',
    'ProcessPdfRequest',
]
