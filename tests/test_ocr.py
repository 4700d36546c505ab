"""
Tests for PDF text extraction and row cleanup.
"""

import pytest
import requests

from services.errors import OCRError
from services.ocr_service import (
    JigsawStackOCRProvider, OCRService, PdfPlumberOCRProvider,
    create_ocr_provider, dedupe_rows, text_to_rows
)


class FakeResponse:

    def __init__(self, body=None, error=None, content=b''):
        self.body = body
        self.error = error
        self.content = content

    def raise_for_status(self):
        if self.error:
            raise self.error

    def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


class FakeSession:

    def __init__(self, response):
        self.response = response
        self.requests = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.requests.append({'url': url, 'json': json, 'headers': headers})
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


class FakeLocalProvider:
    """Byte-based provider, like pdfplumber."""

    name = 'local'

    def __init__(self, text):
        self.text = text
        self.received = []

    def extract_bytes(self, data):
        self.received.append(data)
        return self.text


class TestTextToRows:
    """Test cleaning OCR text into rows."""

    def test_markdown_table(self, ocr_text):
        rows = text_to_rows(ocr_text)

        assert rows[0] == ['', 'Account', 'Debit', 'Credit', '']
        assert rows[1] == ['', 'Cash at bank', '1250.00', '', '']
        assert rows[2] == ['', 'Trade payables', '', '800.00', '']
        assert len(rows) == 4

    def test_separator_lines_are_dropped(self):
        text = 'A | B\n---|---\n| - | - |\n   \nC | D'
        assert text_to_rows(text) == [['A', 'B'], ['C', 'D']]

    def test_empty_cells_only(self):
        assert text_to_rows('|  |  |\nCash') == [['Cash']]

    def test_plain_lines(self):
        assert text_to_rows('Trial Balance\nAs at 31 December') == [['Trial Balance'], ['As at 31 December']]

    def test_none(self):
        assert text_to_rows(None) == []

    def test_dedupe_keeps_first(self):
        rows = [['a', 'b'], ['c'], ['a', 'b'], ['a,b']]
        assert dedupe_rows(rows) == [['a', 'b'], ['c']]

    def test_dedupe_treats_none_as_blank(self):
        assert dedupe_rows([['a', None], ['a', '']]) == [['a', None]]


class TestJigsawStack:
    """Test the vOCR request/response handling."""

    def test_request(self):
        session = FakeSession(FakeResponse({'success': True, 'context': 'A | B'}))
        provider = JigsawStackOCRProvider('key-1', url='https://ocr.example.com/vocr', session=session)

        assert provider.extract_text('https://files.example.com/a.pdf') == 'A | B'
        sent = session.requests[0]
        assert sent['url'] == 'https://ocr.example.com/vocr'
        assert sent['json'] == {'url': 'https://files.example.com/a.pdf', 'prompt': 'Extract all text content'}
        assert sent['headers']['x-api-key'] == 'key-1'

    def test_context_list(self):
        session = FakeSession(FakeResponse({'context': ['page 1', 'page 2']}))

        assert JigsawStackOCRProvider('k', session=session).extract_text('u') == 'page 1\npage 2'

    @pytest.mark.parametrize('response, message', [
        (FakeResponse({'success': True}), 'Failed to extract text from PDF'),
        (FakeResponse({'context': ''}), 'Failed to extract text from PDF'),
        (FakeResponse(ValueError('html')), 'invalid JSON'),
        (requests.exceptions.Timeout('slow'), 'vOCR request failed'),
    ])
    def test_errors(self, response, message):
        provider = JigsawStackOCRProvider('k', session=FakeSession(response))

        with pytest.raises(OCRError, match=message):
            provider.extract_text('u')


class TestPdfPlumber:
    """Test local extraction failures."""

    def test_invalid_pdf(self):
        with pytest.raises(OCRError, match='Failed to read PDF'):
            PdfPlumberOCRProvider().extract_bytes(b'not a pdf')

    def test_create_ocr_provider(self):
        assert isinstance(create_ocr_provider('pdfplumber'), PdfPlumberOCRProvider)
        assert isinstance(create_ocr_provider('jigsawstack', api_key='k'), JigsawStackOCRProvider)

        with pytest.raises(ValueError):
            create_ocr_provider('tesseract')


class TestOCRService:
    """Test routing between URL and byte providers."""

    def test_url_provider(self, ocr_service):
        rows = ocr_service.extract_rows(pdf_url='https://files.example.com/a.pdf', dedupe=True)

        assert ocr_service.needs_url
        assert len(rows) == 3
        assert ocr_service.provider.urls == ['https://files.example.com/a.pdf']

    def test_url_provider_requires_url(self, ocr_service):
        with pytest.raises(OCRError, match='PDF URL is required'):
            ocr_service.extract_rows(data=b'%PDF')

    def test_local_provider_uses_bytes(self):
        provider = FakeLocalProvider('A | B')
        service = OCRService(provider)

        assert not service.needs_url
        assert service.extract_rows(data=b'%PDF') == [['A', 'B']]
        assert provider.received == [b'%PDF']

    def test_local_provider_downloads_url(self, monkeypatch):
        provider = FakeLocalProvider('A | B')
        fetched = []

        def fake_get(url, timeout=None):
            fetched.append(url)
            return FakeResponse(content=b'%PDF-remote')

        monkeypatch.setattr(requests, 'get', fake_get)

        assert OCRService(provider).extract_rows(pdf_url='https://files.example.com/a.pdf') == [['A', 'B']]
        assert fetched == ['https://files.example.com/a.pdf']
        assert provider.received == [b'%PDF-remote']

    def test_local_provider_download_failure(self, monkeypatch):
        def fake_get(url, timeout=None):
            raise requests.exceptions.ConnectionError('refused')

        monkeypatch.setattr(requests, 'get', fake_get)

        with pytest.raises(OCRError, match='Could not download PDF'):
            OCRService(FakeLocalProvider('x')).extract_text(pdf_url='https://files.example.com/a.pdf')

    def test_local_provider_without_input(self):
        with pytest.raises(OCRError, match='PDF contents are required'):
            OCRService(FakeLocalProvider('x')).extract_text()
