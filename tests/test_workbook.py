"""
Tests for workbook parsing and writing.
"""

from io import BytesIO

import openpyxl
import pytest
from openpyxl.styles import Font, PatternFill

from services.errors import WorkbookError
from services.workbook_service import (
    coerce_cell_value, convert_excel_color, fill_column, fill_columns,
    fill_worksheet_column, parse_workbook, rows_to_workbook, update_cell,
    worksheets_to_workbook
)


def load(data):
    return openpyxl.load_workbook(BytesIO(data))


class TestColors:
    """Test Excel to CSS color conversion."""

    def test_argb_drops_alpha(self):
        assert convert_excel_color(rgb='FFFF0000') == '#FF0000'

    def test_rgb_kept(self):
        assert convert_excel_color(rgb='00FF00') == '#00FF00'

    def test_theme_color(self):
        assert convert_excel_color(theme=7) == '#FFC000'

    def test_unknown_theme(self):
        assert convert_excel_color(theme=42) is None
        assert convert_excel_color() is None


class TestCoerceCellValue:
    """Test conversion of edited text."""

    @pytest.mark.parametrize('text, expected', [
        ('1250', 1250),
        ('-3', -3),
        ('1250.50', 1250.5),
        ('1e3', 1000.0),
        ('Cash', 'Cash'),
        ('', ''),
        ('  ', '  '),
        ('1_000', '1_000'),
        ('nan', 'nan'),
        (12, 12),
        (None, None),
    ])
    def test_coerce(self, text, expected):
        assert coerce_cell_value(text) == expected


class TestParseWorkbook:
    """Test converting workbooks to worksheet dictionaries."""

    def test_values_and_sheet_order(self, make_workbook):
        data = make_workbook(
            [['Account', 'Debit'], ['Cash', 100]],
            title='TB',
            extra_sheets={'Notes': [['hello']]}
        )

        worksheets = parse_workbook(data)

        assert [ws['name'] for ws in worksheets] == ['TB', 'Notes']
        assert [[cell['value'] for cell in row] for row in worksheets[0]['data']] == [
            ['Account', 'Debit'], ['Cash', 100]
        ]

    def test_empty_columns_are_hidden(self, make_workbook):
        data = make_workbook([['Account', None, 'Debit'], ['Cash', None, 5]])

        worksheet = parse_workbook(data)[0]

        assert worksheet['data'][0][1]['is_hidden'] is True
        assert 'is_hidden' not in worksheet['data'][0][0]

        visible = parse_workbook(data, hide_empty_columns=False)[0]
        assert 'is_hidden' not in visible['data'][0][1]

    def test_merged_cells(self):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws['A1'] = 'Demo Company'
        ws['A2'] = 'Account'
        ws['B2'] = 'Debit'
        ws['C2'] = 'Credit'
        ws.merge_cells('A1:C1')
        buffer = BytesIO()
        wb.save(buffer)

        worksheet = parse_workbook(buffer.getvalue())[0]

        anchor = worksheet['data'][0][0]
        assert anchor['row_span'] == 1
        assert anchor['col_span'] == 3
        assert worksheet['data'][0][1]['is_hidden'] is True
        assert worksheet['data'][0][2]['is_hidden'] is True
        assert worksheet['merges'] == [{'s': {'r': 0, 'c': 0}, 'e': {'r': 0, 'c': 2}}]

    def test_styles(self):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws['A1'] = 'Header'
        ws['A1'].font = Font(bold=True, color='FFFF0000')
        ws['A1'].fill = PatternFill(fill_type='solid', fgColor='FF00FF00')
        buffer = BytesIO()
        wb.save(buffer)

        style = parse_workbook(buffer.getvalue())[0]['data'][0][0]['style']

        assert style['is_bold'] is True
        assert style['text_color'] == '#FF0000'
        assert style['background_color'] == '#00FF00'
        assert style['alignment'] == 'left'
        assert style['border'] == {'top': None, 'right': None, 'bottom': None, 'left': None}

    def test_invalid_bytes(self):
        with pytest.raises(WorkbookError):
            parse_workbook(b'not a workbook')


class TestWriting:
    """Test cell edits and column fills."""

    def test_update_cell(self, make_workbook):
        data = make_workbook([['Account', 'Debit'], ['Cash', 100]])

        updated = update_cell(data, 0, 1, 1, '250.5')

        assert load(updated).active['B2'].value == 250.5

    def test_update_cell_text(self, make_workbook):
        data = make_workbook([['Account', 'Debit'], ['Cash', 100]])

        updated = update_cell(data, 0, 1, 0, 'Cash at bank')

        assert load(updated).active['A2'].value == 'Cash at bank'

    def test_update_missing_sheet(self, make_workbook):
        data = make_workbook([['Account']])
        with pytest.raises(WorkbookError, match='Worksheet not found'):
            update_cell(data, 3, 0, 0, 'x')

    def test_update_merged_cell(self):
        wb = openpyxl.Workbook()
        wb.active['A1'] = 'Title'
        wb.active.merge_cells('A1:C1')
        buffer = BytesIO()
        wb.save(buffer)

        with pytest.raises(WorkbookError, match='merged'):
            update_cell(buffer.getvalue(), 0, 0, 1, 'x')

    def test_fill_column_skips_header(self, make_workbook):
        data = make_workbook([['Account', 'Type'], ['Cash', None], ['Sales', None]])

        filled = load(fill_column(data, 1, ['Asset', 'Revenue/Income']))

        assert filled.active['B1'].value == 'Type'
        assert filled.active['B2'].value == 'Asset'
        assert filled.active['B3'].value == 'Revenue/Income'

    def test_fill_drops_values_past_last_row(self, make_workbook):
        data = make_workbook([['Account'], ['Cash']])

        filled = load(fill_columns(data, {1: ['Asset', 'Liability', 'Equity']}))

        assert filled.active['B2'].value == 'Asset'
        assert filled.active.max_row == 2

    def test_fill_worksheet_column(self):
        worksheet = {'name': 'S', 'data': [[{'value': 'Account'}], [{'value': 'Cash'}]]}

        fill_worksheet_column(worksheet, 3, ['Asset', 'ignored'])

        row = worksheet['data'][1]
        assert len(row) == 4
        assert row[3]['value'] == 'Asset'
        assert row[1] == {'value': '', 'style': {}}
        assert len(worksheet['data']) == 2

    def test_worksheets_to_workbook(self):
        worksheets = [{
            'name': 'TB',
            'data': [[{'value': 'Account'}, {'value': 'Debit'}], [{'value': 'Cash'}, {'value': 10}]]
        }]

        wb = load(worksheets_to_workbook(worksheets))

        assert wb.sheetnames == ['TB']
        assert wb['TB']['A2'].value == 'Cash'
        assert wb['TB']['B2'].value == 10

    def test_rows_to_workbook(self):
        wb = load(rows_to_workbook([['Account', 'Debit'], ['Cash', '100']], 'Extracted Data'))

        assert wb.sheetnames == ['Extracted Data']
        assert wb.active['A2'].value == 'Cash'
        assert wb.active['B2'].value == '100'
