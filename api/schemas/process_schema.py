"""
Relay request schemas.

These mirror the JSON bodies the spreadsheet client posts to
``/api/process`` and ``/api/process-pdf``.
"""

from typing import Any, Optional
from pydantic import BaseModel, Field


class ProcessRequest(BaseModel):
    """Worksheets whose account descriptions should be classified."""

    data: Any = Field(None, description="List of {name, data: [[{value}]]} sheets, header removed")

    class Config:
        json_schema_extra = {
            "example": {
                "data": [{
                    "name": "Sheet1",
                    "data": [[
                        {"value": "Cash at bank"}, {"value": "1250"}, {"value": ""}, {"value": ""}
                    ]]
                }]
            }
        }


class ProcessPdfRequest(BaseModel):
    """PDF to run through OCR."""

    pdfUrl: Optional[str] = Field(None, description="Publicly reachable or signed PDF URL")

    class Config:
        json_schema_extra = {
            "example": {"pdfUrl": "https://example.com/api/storage/user/abc.pdf?expires=1&signature=x"}
        }
