"""
Reformat Service - Normalise trial balance layouts.

Exports from different accounting packages put the ledger table at
different rows and name the columns differently. Reformatting finds the
header row, projects every row onto a fixed column layout and inserts
empty classification columns:

    Account Description | Debit Amount | Credit Amount | Account Type |
    Primary Classification | Secondary Classification | Tertiary Classification

Blank rows, "Total" rows and date rows are dropped afterwards.
"""

import copy
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from services.workbook_service import empty_cell

logger = logging.getLogger(__name__)

# Ordered: the mapped names form the first four output columns
HEADER_MAPPINGS: Dict[str, str] = {
    'Account': 'Account Description',
    'Debit': 'Debit Amount',
    'Credit': 'Credit Amount',
    'Type': 'Account Type',
}

HEADER_INDICATORS = ['Account Code', 'Account', 'Account Type', 'Debit - Year to date', 'Debit', 'Credit']

CLASSIFICATION_HEADERS = ['Primary Classification', 'Secondary Classification', 'Tertiary Classification']
CLASSIFICATION_INSERT_AT = 4

ACCOUNT_TYPE_COLUMN = 3
PRIMARY_COLUMN = 4
SECONDARY_COLUMN = 5
TERTIARY_COLUMN = 6

TOTAL_RE = re.compile(r'^total$', re.IGNORECASE)
MONTH_RE = re.compile(r'\b(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)\b', re.IGNORECASE)

_INDICATORS_LOWER = {indicator.lower() for indicator in HEADER_INDICATORS}


@dataclass
class ReformatResult:
    """Outcome of reformatting one worksheet."""
    worksheet: Dict[str, Any]
    has_account_type: bool
    header_row: int


def _text(cell) -> str:
    if not cell:
        return ''
    value = cell.get('value')
    return '' if value is None else str(value).strip()


def find_header_row(rows: List[List[Dict[str, Any]]]) -> int:
    """Index of the first row holding a known header label, or 0."""
    for index, row in enumerate(rows):
        for cell in row or []:
            value = cell.get('value') if cell else None
            if isinstance(value, str) and value.strip().lower() in _INDICATORS_LOWER:
                return index
    return 0


def header_texts(row: List[Dict[str, Any]]) -> List[str]:
    """
    Lower-cased header labels.

    QuickBooks exports leave the account column header blank and put
    "Debit"/"Credit" next to it; that blank is treated as "account".
    """
    texts = [_text(cell).lower() for cell in row or []]

    if (len(texts) >= 3 and texts[0] == ''
            and 'debit' in texts[1] and 'credit' in texts[2]):
        texts[0] = 'account'

    return texts


def has_account_type(texts: List[str]) -> bool:
    return any(text in ('account type', 'type') for text in texts)


def resolve_column_indices(texts: List[str]) -> List[int]:
    """
    Source column for each mapping key, or -1 when absent.

    Prefers an exact match on the mapped name, then on the key, then the
    first header containing the key.
    """
    indices = []

    for key, mapped in HEADER_MAPPINGS.items():
        key_lower = key.lower()
        mapped_lower = mapped.lower()

        if mapped_lower in texts:
            indices.append(texts.index(mapped_lower))
        elif key_lower in texts:
            indices.append(texts.index(key_lower))
        else:
            indices.append(next((i for i, text in enumerate(texts) if key_lower in text), -1))

    return indices


def keep_row(row: List[Dict[str, Any]]) -> bool:
    """Drop blank, "Total" and date rows, judged by the first value."""
    first = _text(row[0]) if row else ''
    if not first:
        return False
    if TOTAL_RE.match(first):
        return False
    if MONTH_RE.search(first):
        return False
    return True


def _header_row() -> List[Dict[str, Any]]:
    header = [{'value': name, 'style': {}} for name in HEADER_MAPPINGS.values()]
    header[CLASSIFICATION_INSERT_AT:CLASSIFICATION_INSERT_AT] = [
        {'value': name, 'style': {}} for name in CLASSIFICATION_HEADERS
    ]
    return header


def _project_row(row: List[Dict[str, Any]], indices: List[int]) -> List[Dict[str, Any]]:
    projected = []
    for i in indices:
        if 0 <= i < len(row) and row[i]:
            cell = copy.deepcopy(row[i])
            # merge layout does not survive the projection
            for key in ('is_hidden', 'row_span', 'col_span'):
                cell.pop(key, None)
            projected.append(cell)
        else:
            projected.append(empty_cell())
    projected[CLASSIFICATION_INSERT_AT:CLASSIFICATION_INSERT_AT] = [empty_cell() for _ in CLASSIFICATION_HEADERS]
    return projected


def reformat_worksheet(worksheet: Dict[str, Any]) -> ReformatResult:
    """Reformat a single worksheet dictionary. The input is not modified."""
    rows = worksheet.get('data') or []
    start = find_header_row(rows)

    texts = header_texts(rows[start] if start < len(rows) else [])
    account_type = has_account_type(texts)
    indices = resolve_column_indices(texts)

    logger.debug(f"Sheet '{worksheet.get('name')}': header row {start}, columns {indices}, "
                 f"account type column: {account_type}")

    new_rows = []
    for offset, row in enumerate(rows[start:]):
        if offset == 0:
            new_rows.append(_header_row())
        else:
            new_rows.append(_project_row(row or [], indices))

    new_rows = [row for row in new_rows if keep_row(row)]

    reformatted = {
        'name': worksheet.get('name'),
        'data': new_rows,
        'merges': []
    }

    return ReformatResult(worksheet=reformatted, has_account_type=account_type, header_row=start)


def reformat_worksheets(worksheets: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], bool]:
    """
    Reformat every sheet.

    Returns:
        (reformatted worksheets, whether the first sheet had an account type column)
    """
    results = [reformat_worksheet(ws) for ws in worksheets]
    account_type = results[0].has_account_type if results else False

    logger.info(f"Reformatted {len(results)} sheets "
                f"({sum(len(r.worksheet['data']) for r in results)} rows kept)")

    return [r.worksheet for r in results], account_type
