"""
File-related Pydantic schemas.

This module contains schemas for uploaded file records, cell edits and
signed download links.
"""

from typing import Any, List, Optional, Union
from pydantic import BaseModel, Field
from datetime import datetime


class FileResponse(BaseModel):
    """Uploaded file record."""

    id: str = Field(..., description="File identifier")
    filename: str = Field(..., description="Original filename")
    size: int = Field(..., description="Size in bytes")
    type: Optional[str] = Field(None, description="MIME type reported at upload")
    category: str = Field(..., description="'excel' or 'pdf'")
    url: Optional[str] = Field(None, description="Authenticated download URL")
    user_id: str = Field(..., description="Owner")
    storage_path: str = Field(..., description="Object path in storage")
    created_at: datetime

    reformatted: bool = False
    reformatted_at: Optional[datetime] = None
    has_account_type: Optional[bool] = None

    processed_data: Optional[List[List[str]]] = Field(
        None, description="Classification rows: [account type, primary, secondary, tertiary]"
    )
    processed_at: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    excel_data_updated_at: Optional[datetime] = None

    is_converted_from_pdf: bool = False
    converted_from_file_id: Optional[str] = None

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "id": "3f2a9c1e-0b7d-4e51-9a2f-6c8d1e4b7a90",
                "filename": "trial_balance_2024.xlsx",
                "size": 18432,
                "type": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                "category": "excel",
                "url": "/api/files/3f2a9c1e-0b7d-4e51-9a2f-6c8d1e4b7a90/download",
                "user_id": "public",
                "storage_path": "public/9b1c6f0e2d4a4c7e8f3b5a1d2c6e7f80.xlsx",
                "created_at": "2025-10-15T12:00:00Z",
                "reformatted": False,
                "is_converted_from_pdf": False
            }
        }


class FileListResponse(BaseModel):
    """Files of the current user, newest first."""

    total: int
    items: List[FileResponse]


class SignedUrlResponse(BaseModel):
    """Time-limited download link."""

    url: str = Field(..., description="Signed download URL")
    expires_in: int = Field(..., description="Lifetime in seconds")


class CellUpdateRequest(BaseModel):
    """Edit of a single worksheet cell (0-based coordinates)."""

    sheet_index: int = Field(0, ge=0, description="Worksheet index")
    row: int = Field(..., ge=0, description="Row index")
    col: int = Field(..., ge=0, description="Column index")
    value: Optional[Union[str, int, float]] = Field(
        None, description="New value; numeric text is stored as a number"
    )

    class Config:
        json_schema_extra = {
            "example": {"sheet_index": 0, "row": 3, "col": 1, "value": "1250.50"}
        }


class CellUpdateResponse(BaseModel):
    """Result of a cell edit."""

    sheet_index: int
    row: int
    col: int
    value: Any = Field(None, description="Value as stored")
