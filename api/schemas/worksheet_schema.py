"""
Worksheet Pydantic schemas.

Parsed spreadsheets are returned as rows of styled cells so a client can
render them as an editable grid.
"""

from typing import Dict, List, Optional, Union
from pydantic import BaseModel, Field


class CellBorder(BaseModel):
    top: Optional[str] = None
    right: Optional[str] = None
    bottom: Optional[str] = None
    left: Optional[str] = None


class CellStyle(BaseModel):
    """Display style of a cell."""

    alignment: Optional[str] = None
    is_bold: Optional[bool] = None
    background_color: Optional[str] = None
    text_color: Optional[str] = None
    border: Optional[CellBorder] = None


class CellData(BaseModel):
    value: Optional[Union[str, int, float, bool]] = None
    row_span: Optional[int] = None
    col_span: Optional[int] = None
    is_hidden: Optional[bool] = None
    style: Optional[CellStyle] = None


class MergeRange(BaseModel):
    """Merged range with 0-based start (s) and end (e) coordinates."""

    s: Dict[str, int]
    e: Dict[str, int]


class WorksheetData(BaseModel):
    name: str
    data: List[List[CellData]] = Field(default_factory=list)
    merges: List[MergeRange] = Field(default_factory=list)


class WorksheetsResponse(BaseModel):
    """Parsed worksheets of a file."""

    file_id: str
    reformatted: bool = False
    has_account_type: Optional[bool] = None
    worksheets: List[WorksheetData]

    class Config:
        json_schema_extra = {
            "example": {
                "file_id": "3f2a9c1e-0b7d-4e51-9a2f-6c8d1e4b7a90",
                "reformatted": True,
                "has_account_type": False,
                "worksheets": [{
                    "name": "Sheet1",
                    "data": [[
                        {"value": "Account Description", "style": {}},
                        {"value": "Debit Amount", "style": {}}
                    ]],
                    "merges": []
                }]
            }
        }
