"""
Tests for the local CLI commands.
"""

import json
from io import BytesIO
from pathlib import Path

import openpyxl
import pytest
from click.testing import CliRunner

from api.config import settings
from scripts import tb_cli

TAXONOMY_PATH = Path(__file__).parent.parent / 'data' / 'classifications.json'


class FakePdfProvider:

    name = 'pdfplumber'

    def extract_bytes(self, data):
        return 'Account | Debit | Credit\nCash | 100 |\nCash | 100 |'


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def xero_file(tmp_path, xero_workbook):
    path = tmp_path / 'tb.xlsx'
    path.write_bytes(xero_workbook)
    return path


def sheet_values(path):
    ws = openpyxl.load_workbook(BytesIO(path.read_bytes())).active
    return [list(row) for row in ws.iter_rows(values_only=True)]


class TestLocalCommands:
    """Test reformat, classify and pdf-rows."""

    def test_reformat(self, runner, xero_file, tmp_path):
        output = tmp_path / 'out.xlsx'

        result = runner.invoke(tb_cli.cli, ['reformat', str(xero_file), '-o', str(output)])

        assert result.exit_code == 0, result.output
        rows = sheet_values(output)
        assert rows[0][:3] == ['Account Description', 'Debit Amount', 'Credit Amount']
        assert [row[0] for row in rows[1:]] == ['Cash at bank', 'Trade payables', 'Paid up capital']

    def test_classify_with_sample_provider(self, runner, xero_file, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, 'CLASSIFICATIONS_PATH', str(TAXONOMY_PATH))
        output = tmp_path / 'classified.xlsx'

        result = runner.invoke(tb_cli.cli, ['classify', str(xero_file), '--provider', 'sample', '-o', str(output)])

        assert result.exit_code == 0, result.output
        assert 'Validation:' in result.output
        rows = sheet_values(output)
        assert len(rows) == 4
        assert rows[1][3:5] == ['Revenue/Income', 'Revenue']

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(tb_cli.cli, ['reformat', str(tmp_path / 'missing.xlsx')])
        assert result.exit_code != 0

    def test_pdf_rows(self, runner, tmp_path, monkeypatch):
        monkeypatch.setattr(tb_cli, 'PdfPlumberOCRProvider', FakePdfProvider)
        pdf = tmp_path / 'tb.pdf'
        pdf.write_bytes(b'%PDF-1.4')

        result = runner.invoke(tb_cli.cli, ['pdf-rows', str(pdf)])

        assert result.exit_code == 0, result.output
        rows = sheet_values(tmp_path / 'tb.xlsx')
        assert [row[:2] for row in rows] == [['Account', 'Debit'], ['Cash', '100']]

    def test_is_reformatted(self):
        assert tb_cli.is_reformatted([{'data': [[{'value': 'Account Description'}]]}])
        assert not tb_cli.is_reformatted([{'data': [[{'value': 'Trial Balance'}]]}])
        assert not tb_cli.is_reformatted([])


class FakeWebSocket:

    def __init__(self, messages):
        self.messages = [json.dumps(message) for message in messages]
        self.closed = False

    def recv(self):
        return self.messages.pop(0)

    def close(self):
        self.closed = True


class TestJobTracking:
    """Test following a remote job."""

    def test_websocket_sends_api_key(self, monkeypatch):
        socket = FakeWebSocket([
            {'job_id': 'job-1', 'status': 'processing', 'message': 'Connected to job progress stream'},
            {'job_id': 'job-1', 'status': 'success', 'completed_at': '2025-01-01T00:00:00', 'result': {'rows': 2}},
        ])
        calls = []

        def fake_connect(url, **kwargs):
            calls.append((url, kwargs))
            return socket

        monkeypatch.setattr(tb_cli, 'create_connection', fake_connect)

        result = tb_cli.track_progress_websocket('https://tb.example.com', 'job-1', {'X-API-Key': 'key-1'})

        assert result == {'rows': 2}
        assert calls[0][0] == 'wss://tb.example.com/ws/jobs/job-1'
        assert calls[0][1]['header'] == {'X-API-Key': 'key-1'}
        assert socket.closed
