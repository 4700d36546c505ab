"""
Tests for trial balance reformatting.
"""

import pytest

from services.reformat_service import (
    find_header_row, has_account_type, header_texts, keep_row,
    reformat_worksheet, reformat_worksheets, resolve_column_indices
)

EXPECTED_HEADER = [
    'Account Description', 'Debit Amount', 'Credit Amount', 'Account Type',
    'Primary Classification', 'Secondary Classification', 'Tertiary Classification'
]


def cells(*values):
    return [{'value': value, 'style': {}} for value in values]


def values(row):
    return [cell.get('value') for cell in row]


class TestHeaderDetection:
    """Test locating and reading the header row."""

    def test_header_row_after_title_block(self):
        """Title rows above the table are skipped."""
        rows = [
            cells('Demo Company'),
            cells('Trial Balance'),
            cells('Account', 'Debit', 'Credit'),
            cells('Cash', 10, None),
        ]
        assert find_header_row(rows) == 2

    def test_header_match_is_case_insensitive(self):
        rows = [cells('x'), cells('  DEBIT  ', 'credit')]
        assert find_header_row(rows) == 1

    def test_no_header_defaults_to_first_row(self):
        rows = [cells('Cash', 10), cells('Bank', 20)]
        assert find_header_row(rows) == 0

    def test_numeric_cells_are_ignored(self):
        rows = [cells(1, 2, 3), cells('Account Code', 'Name')]
        assert find_header_row(rows) == 1

    def test_quickbooks_blank_account_header(self):
        """A blank first header before Debit/Credit is read as the account column."""
        texts = header_texts(cells(None, 'Debit', 'Credit'))
        assert texts == ['account', 'debit', 'credit']

    def test_blank_first_header_without_debit_credit(self):
        texts = header_texts(cells(None, 'Amount', 'Credit'))
        assert texts[0] == ''

    def test_account_type_detection(self):
        assert has_account_type(['account', 'account type', 'debit'])
        assert has_account_type(['type'])
        assert not has_account_type(['account', 'debit', 'credit'])


class TestColumnResolution:
    """Test mapping source columns onto the standard layout."""

    def test_exact_mapped_name_wins(self):
        texts = ['account code', 'account description', 'debit amount', 'credit amount']
        assert resolve_column_indices(texts) == [1, 2, 3, -1]

    def test_exact_key_before_substring(self):
        texts = ['account code', 'account', 'debit', 'credit', 'type']
        assert resolve_column_indices(texts) == [1, 2, 3, 4]

    def test_substring_fallback(self):
        texts = ['account name', 'debit - year to date', 'credit - year to date']
        assert resolve_column_indices(texts) == [0, 1, 2, -1]

    def test_missing_columns(self):
        assert resolve_column_indices(['name', 'amount']) == [-1, -1, -1, -1]


class TestRowFilter:
    """Test dropping blank, total and date rows."""

    @pytest.mark.parametrize('first, expected', [
        ('Cash at bank', True),
        ('', False),
        (None, False),
        ('   ', False),
        ('Total', False),
        ('TOTAL', False),
        ('Total Assets', True),
        ('31 Dec 2023', False),
        ('As at 30 June', True),
        ('Jun 2024', False),
    ])
    def test_keep_row(self, first, expected):
        assert keep_row(cells(first, 1)) is expected

    def test_empty_row(self):
        assert keep_row([]) is False


class TestReformatWorksheet:
    """Test reformatting whole worksheets."""

    def test_xero_layout(self):
        worksheet = {
            'name': 'TB',
            'data': [
                cells('Demo Company', None, None, None),
                cells('Account', 'Account Code', 'Debit - Year to date', 'Credit - Year to date'),
                cells('Cash at bank', '090', 1250.0, None),
                cells('Trade payables', '800', None, 800.0),
                cells(None, None, None, None),
                cells('Total', None, 1250.0, 800.0),
            ],
            'merges': [{'s': {'r': 0, 'c': 0}, 'e': {'r': 0, 'c': 3}}]
        }

        result = reformat_worksheet(worksheet)

        assert result.header_row == 1
        assert result.has_account_type is False
        assert result.worksheet['name'] == 'TB'
        assert result.worksheet['merges'] == []

        rows = result.worksheet['data']
        assert len(rows) == 3
        assert values(rows[0]) == EXPECTED_HEADER
        assert values(rows[1]) == ['Cash at bank', 1250.0, None, '', '', '', '']
        assert values(rows[2]) == ['Trade payables', None, 800.0, '', '', '', '']

    def test_account_type_column_is_kept(self):
        worksheet = {
            'name': 'Sheet1',
            'data': [
                cells('Account', 'Type', 'Debit', 'Credit'),
                cells('Sales', 'Revenue', None, 500),
            ]
        }

        result = reformat_worksheet(worksheet)

        assert result.has_account_type is True
        assert values(result.worksheet['data'][1]) == ['Sales', None, 500, 'Revenue', '', '', '']

    def test_input_is_not_modified(self):
        source = cells('Cash', 10, 0)
        source[0]['is_hidden'] = True
        worksheet = {'name': 'S', 'data': [cells('Account', 'Debit', 'Credit'), source]}

        result = reformat_worksheet(worksheet)

        assert source[0]['is_hidden'] is True
        assert 'is_hidden' not in result.worksheet['data'][1][0]

    def test_styles_travel_with_cells(self):
        source = cells('Cash', 10, 0)
        source[0]['style'] = {'is_bold': True}
        worksheet = {'name': 'S', 'data': [cells('Account', 'Debit', 'Credit'), source]}

        result = reformat_worksheet(worksheet)

        assert result.worksheet['data'][1][0]['style'] == {'is_bold': True}

    def test_empty_worksheet(self):
        result = reformat_worksheet({'name': 'Empty', 'data': []})
        assert result.worksheet['data'] == []
        assert result.has_account_type is False

    def test_first_sheet_decides_account_type(self):
        first = {'name': 'A', 'data': [cells('Account', 'Debit', 'Credit')]}
        second = {'name': 'B', 'data': [cells('Account', 'Account Type', 'Debit', 'Credit')]}

        worksheets, account_type = reformat_worksheets([first, second])

        assert [ws['name'] for ws in worksheets] == ['A', 'B']
        assert account_type is False

    def test_no_worksheets(self):
        assert reformat_worksheets([]) == ([], False)
