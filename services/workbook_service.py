"""
Workbook Service - Spreadsheet parsing and writing.

Worksheets are handled as plain dictionaries so they can be stored as JSON
and returned from the API without conversion:

    worksheet = {
        'name': 'Sheet1',
        'data': [[cell, ...], ...],          # rows of cells, 0-based
        'merges': [{'s': {'r': 0, 'c': 0}, 'e': {'r': 0, 'c': 2}}]
    }

    cell = {
        'value': 'Cash at bank' | 1250.0 | None,
        'row_span': 1, 'col_span': 3,        # only on merge anchors
        'is_hidden': True,                   # only when hidden
        'style': {
            'alignment': 'left', 'is_bold': False,
            'background_color': '#FFC000', 'text_color': '#000000',
            'border': {'top': '1px solid #000', ...}
        }
    }
"""

import logging
import math
from datetime import date, datetime, time
from io import BytesIO
from typing import Any, Dict, List, Optional

import openpyxl
from openpyxl.cell.cell import MergedCell

from services.errors import WorkbookError

logger = logging.getLogger(__name__)

# Office default theme palette, indexed by theme color number
THEME_COLORS = [
    '#FFFFFF',  # Background 1
    '#000000',  # Text 1
    '#E7E6E6',  # Background 2
    '#44546A',  # Text 2
    '#4472C4',  # Accent 1
    '#ED7D31',  # Accent 2
    '#A5A5A5',  # Accent 3
    '#FFC000',  # Accent 4
    '#5B9BD5',  # Accent 5
    '#70AD47',  # Accent 6
]

BORDER_CSS = '1px solid #000'


def empty_cell() -> Dict[str, Any]:
    return {'value': '', 'style': {}}


def convert_excel_color(rgb: Optional[str] = None, theme: Optional[int] = None) -> Optional[str]:
    """
    Convert an Excel color to a CSS hex color.

    Excel stores RGB as ARGB, so an 8-character value loses its alpha
    channel. Theme colors map onto the default Office palette.
    """
    if rgb:
        if len(rgb) == 8:
            rgb = rgb[2:]
        return f"#{rgb}"
    if theme is not None and 0 <= theme < len(THEME_COLORS):
        return THEME_COLORS[theme]
    return None


def _color(color) -> Optional[str]:
    """Convert an openpyxl Color object."""
    if color is None:
        return None
    if color.type == 'rgb':
        rgb = color.rgb
        # openpyxl returns a descriptor error string for non-rgb colors
        if isinstance(rgb, str) and not rgb.startswith('Values must be'):
            return convert_excel_color(rgb=rgb)
        return None
    if color.type == 'theme':
        return convert_excel_color(theme=color.theme)
    return None


def _json_value(value):
    """Make a cell value JSON friendly."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def _is_blank(value) -> bool:
    return value is None or str(value).strip() == ''


def extract_cell_style(cell) -> Dict[str, Any]:
    """Extract display style for a single openpyxl cell."""
    style = {
        'alignment': (cell.alignment.horizontal if cell.alignment else None) or 'left',
        'is_bold': bool(cell.font.bold) if cell.font else False,
        'background_color': None,
        'text_color': None,
        'border': {}
    }

    if cell.fill is not None and cell.fill.fill_type:
        style['background_color'] = _color(cell.fill.fgColor)

    if cell.font is not None:
        style['text_color'] = _color(cell.font.color)

    if cell.border is not None:
        for side in ('top', 'right', 'bottom', 'left'):
            border_side = getattr(cell.border, side, None)
            style['border'][side] = BORDER_CSS if border_side is not None and border_side.style else None

    return style


def parse_worksheet(ws, hide_empty_columns: bool = True) -> Dict[str, Any]:
    """
    Convert an openpyxl worksheet to the worksheet dictionary.

    Columns with no non-blank value are marked hidden. Merged ranges set
    ``row_span``/``col_span`` on the anchor cell and hide the rest.
    """
    max_row = ws.max_row or 0
    max_col = ws.max_column or 0

    data: List[List[Dict[str, Any]]] = []
    non_empty_columns = set()

    for row in ws.iter_rows(min_row=1, max_row=max_row, min_col=1, max_col=max_col):
        row_data = []
        for col_idx, cell in enumerate(row):
            value = _json_value(cell.value)
            row_data.append({'value': value, 'style': extract_cell_style(cell)})
            if not _is_blank(value):
                non_empty_columns.add(col_idx)
        data.append(row_data)

    if hide_empty_columns:
        for row_data in data:
            for col_idx, cell_data in enumerate(row_data):
                if col_idx not in non_empty_columns:
                    cell_data['is_hidden'] = True

    merges = []
    for merged in ws.merged_cells.ranges:
        start_r, start_c = merged.min_row - 1, merged.min_col - 1
        end_r, end_c = merged.max_row - 1, merged.max_col - 1
        merges.append({'s': {'r': start_r, 'c': start_c}, 'e': {'r': end_r, 'c': end_c}})

        if start_r >= len(data) or start_c >= len(data[start_r]):
            continue

        anchor = data[start_r][start_c]
        anchor['row_span'] = end_r - start_r + 1
        anchor['col_span'] = end_c - start_c + 1

        for r in range(start_r, min(end_r + 1, len(data))):
            for c in range(start_c, min(end_c + 1, len(data[r]))):
                if r != start_r or c != start_c:
                    data[r][c]['is_hidden'] = True

    return {'name': ws.title, 'data': data, 'merges': merges}


def _load(data: bytes, **kwargs):
    try:
        return openpyxl.load_workbook(BytesIO(data), **kwargs)
    except Exception as e:
        logger.error(f"Could not load workbook: {e}")
        raise WorkbookError("Failed to parse Excel file. Please ensure it's a valid Excel document.") from e


def _save(wb) -> bytes:
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def parse_workbook(data: bytes, hide_empty_columns: bool = True) -> List[Dict[str, Any]]:
    """
    Parse every sheet of a workbook.

    Args:
        data: Workbook bytes (.xlsx/.xlsm)
        hide_empty_columns: Mark columns without values as hidden

    Returns:
        List of worksheet dictionaries, in sheet order
    """
    wb = _load(data, data_only=True)
    worksheets = [parse_worksheet(ws, hide_empty_columns) for ws in wb.worksheets]
    logger.info(f"Parsed {len(worksheets)} sheets")
    return worksheets


def coerce_cell_value(text):
    """
    Convert edited text to the value stored in the workbook.

    Numeric text becomes an int or float; anything else stays as typed.
    Blank text is kept blank rather than becoming zero.
    """
    if not isinstance(text, str):
        return text
    if text.strip() == '' or '_' in text:
        return text
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        return text
    return number if math.isfinite(number) else text


def _worksheet(wb, sheet_index: int):
    if sheet_index < 0 or sheet_index >= len(wb.worksheets):
        raise WorkbookError('Worksheet not found')
    return wb.worksheets[sheet_index]


def update_cell(data: bytes, sheet_index: int, row: int, col: int, value) -> bytes:
    """
    Set a single cell (0-based row/col) and return the new workbook bytes.
    """
    wb = _load(data)
    ws = _worksheet(wb, sheet_index)

    cell = ws.cell(row=row + 1, column=col + 1)
    if isinstance(cell, MergedCell):
        raise WorkbookError(f"Cell {cell.coordinate} is part of a merged range")

    cell.value = coerce_cell_value(value)
    return _save(wb)


def fill_columns(data: bytes, columns: Dict[int, List[Any]], sheet_index: int = 0) -> bytes:
    """
    Write several columns of values below the header row.

    ``values[i]`` lands on 1-based row ``i + 2``. Values past the sheet's
    row count are dropped.
    """
    wb = _load(data)
    ws = _worksheet(wb, sheet_index)
    row_count = ws.max_row

    for column, values in columns.items():
        for index, value in enumerate(values):
            target_row = index + 2
            if target_row <= row_count:
                ws.cell(row=target_row, column=column + 1).value = value

    return _save(wb)


def fill_column(data: bytes, column: int, values: List[Any], sheet_index: int = 0) -> bytes:
    return fill_columns(data, {column: values}, sheet_index)


def fill_worksheet_column(worksheet: Dict[str, Any], column: int, values: List[Any]):
    """Apply ``fill_column`` to an in-memory worksheet dictionary."""
    rows = worksheet['data']
    for index, value in enumerate(values):
        row_index = index + 1
        if row_index >= len(rows):
            break
        row = rows[row_index]
        while len(row) <= column:
            row.append(empty_cell())
        row[column]['value'] = value
    return worksheet


def worksheets_to_workbook(worksheets: List[Dict[str, Any]]) -> bytes:
    """Write worksheet dictionaries to a new workbook (values only)."""
    wb = openpyxl.Workbook()
    wb.remove(wb.active)

    for sheet in worksheets or [{'name': 'Sheet1', 'data': []}]:
        ws = wb.create_sheet(title=sheet.get('name') or 'Sheet1')
        for row in sheet.get('data', []):
            ws.append([cell.get('value') if cell else None for cell in row])

    return _save(wb)


def rows_to_workbook(rows: List[List[Any]], sheet_name: str = 'Sheet1') -> bytes:
    """Write rows of plain values to a single-sheet workbook."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_name
    for row in rows:
        if isinstance(row, (list, tuple)):
            ws.append(list(row))
    return _save(wb)
