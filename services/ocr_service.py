"""
OCR Service - Extract table rows from PDF trial balances.

Two providers are supported:
    - JigsawStack vOCR: fetches the PDF from a (signed) URL and returns
      the text as pipe-delimited table lines
    - pdfplumber: reads the PDF bytes locally, tables first, then text
"""

import logging
from io import BytesIO
from typing import Any, List, Optional

import pdfplumber
import requests

from services.errors import OCRError

logger = logging.getLogger(__name__)

DEFAULT_VOCR_URL = 'https://api.jigsawstack.com/v1/vocr'
DEFAULT_PROMPT = 'Extract all text content'

_SEPARATOR_CHARS = set('-| ')


def _is_separator(line: str) -> bool:
    """Markdown table rules such as ``|---|---|``."""
    return bool(line) and set(line) <= _SEPARATOR_CHARS


def text_to_rows(text: str) -> List[List[str]]:
    """
    Turn extracted text into table rows.

    Blank lines and separator lines are dropped, each line is split on
    ``|`` and rows without any non-empty cell are discarded.
    """
    rows = []
    for line in (text or '').split('\n'):
        if not line.strip() or _is_separator(line.strip()):
            continue
        cells = [cell.strip() for cell in line.split('|')]
        if any(cells):
            rows.append(cells)
    return rows


def dedupe_rows(rows: List[List[Any]]) -> List[List[Any]]:
    """Keep the first occurrence of each row."""
    seen = set()
    unique = []
    for row in rows:
        key = ','.join('' if cell is None else str(cell) for cell in row)
        if key not in seen:
            seen.add(key)
            unique.append(row)
    return unique


class JigsawStackOCRProvider:
    """Visual OCR through the JigsawStack vOCR endpoint."""

    name = 'jigsawstack'

    def __init__(self, api_key: Optional[str], url: str = DEFAULT_VOCR_URL,
                 prompt: str = DEFAULT_PROMPT, timeout: int = 120,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.url = url
        self.prompt = prompt
        self.timeout = timeout
        self.session = session or requests.Session()

    def extract_text(self, pdf_url: str) -> str:
        headers = {'x-api-key': self.api_key or '', 'Content-Type': 'application/json'}
        payload = {'url': pdf_url, 'prompt': self.prompt}

        try:
            response = self.session.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"vOCR request failed: {e}")
            raise OCRError(f"vOCR request failed: {e}") from e
        except ValueError as e:
            raise OCRError('vOCR returned invalid JSON') from e

        context = result.get('context') if isinstance(result, dict) else None
        if not context:
            raise OCRError('Failed to extract text from PDF')

        # context is a string, or a list of strings for multi-page input
        if isinstance(context, list):
            context = '\n'.join(str(part) for part in context)
        return str(context)


class PdfPlumberOCRProvider:
    """Local text and table extraction with pdfplumber."""

    name = 'pdfplumber'

    def extract_bytes(self, data: bytes) -> str:
        lines = []

        try:
            with pdfplumber.open(BytesIO(data)) as pdf:
                for page in pdf.pages:
                    tables = page.extract_tables()
                    if tables:
                        for table in tables:
                            for row in table:
                                lines.append(' | '.join('' if cell is None else str(cell) for cell in row))
                        continue

                    text = page.extract_text()
                    if text:
                        lines.extend(text.split('\n'))
        except Exception as e:
            logger.error(f"pdfplumber failed: {e}")
            raise OCRError(f"Failed to read PDF: {e}") from e

        if not lines:
            raise OCRError('Failed to extract text from PDF')

        return '\n'.join(lines)


def create_ocr_provider(name: str, **options):
    if name == 'jigsawstack':
        return JigsawStackOCRProvider(**options)
    if name == 'pdfplumber':
        return PdfPlumberOCRProvider()
    raise ValueError(f"Unknown OCR provider: {name}")


class OCRService:
    """
    Turns a PDF into deduplicated table rows.

    URL-based providers need ``pdf_url``; local providers need ``data``.
    """

    def __init__(self, provider):
        self.provider = provider

    @property
    def needs_url(self) -> bool:
        return hasattr(self.provider, 'extract_text')

    def extract_text(self, pdf_url: Optional[str] = None, data: Optional[bytes] = None) -> str:
        if self.needs_url:
            if not pdf_url:
                raise OCRError('PDF URL is required')
            return self.provider.extract_text(pdf_url)

        if data is None and pdf_url:
            data = self._download(pdf_url)
        if data is None:
            raise OCRError('PDF contents are required')
        return self.provider.extract_bytes(data)

    @staticmethod
    def _download(pdf_url: str, timeout: int = 120) -> bytes:
        try:
            response = requests.get(pdf_url, timeout=timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise OCRError(f"Could not download PDF: {e}") from e
        return response.content

    def extract_rows(self, pdf_url: Optional[str] = None, data: Optional[bytes] = None,
                     dedupe: bool = False) -> List[List[str]]:
        text = self.extract_text(pdf_url=pdf_url, data=data)
        rows = text_to_rows(text)
        if dedupe:
            rows = dedupe_rows(rows)
        logger.info(f"Extracted {len(rows)} rows from PDF with {self.provider.name}")
        return rows
