#!/usr/bin/env python3
"""
Trial Balance Classifier CLI

Runs the reformat, classification and PDF extraction steps on local files,
or uploads a file to a running API and follows the classification job.

Usage:
    # Normalise the columns of an export
    python scripts/tb_cli.py reformat tb.xlsx -o tb_reformatted.xlsx

    # Reformat (if needed) and classify every account
    python scripts/tb_cli.py classify tb.xlsx --provider openai -o tb_classified.xlsx

    # Extract a PDF trial balance into a workbook
    python scripts/tb_cli.py pdf-rows tb.pdf -o tb.xlsx

    # API mode
    python scripts/tb_cli.py upload tb.xlsx --api-url http://localhost:3000 --process
"""

import os
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import json
import time
import logging
from typing import Any, Dict, List, Optional

import click
from dotenv import load_dotenv
import requests
from websocket import create_connection, WebSocketException

from api.config import settings
from services.classification_service import worksheet_payload
from services.errors import ClassifierError
from services.file_service import classification_columns
from services.ocr_service import OCRService, PdfPlumberOCRProvider
from services.providers import build_classifier
from services.reformat_service import ACCOUNT_TYPE_COLUMN, HEADER_MAPPINGS, reformat_worksheets
from services.workbook_service import (
    fill_columns, parse_workbook, rows_to_workbook, worksheets_to_workbook
)

# Load environment variables
load_dotenv()

# Configure logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FILE = os.getenv('LOG_FILE', 'cli.log')

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(LOG_FILE),
        logging.StreamHandler(sys.stderr)
    ]
)

logger = logging.getLogger('tb_cli')

DEFAULT_API_URL = os.getenv('API_URL', 'http://localhost:3000')
XLSX_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def _default_output(file_path: str, suffix: str) -> str:
    path = Path(file_path)
    return str(path.with_name(f"{path.stem}_{suffix}.xlsx"))


def _first_cell(worksheets: List[Dict[str, Any]]) -> Optional[str]:
    if not worksheets or not worksheets[0]['data'] or not worksheets[0]['data'][0]:
        return None
    return worksheets[0]['data'][0][0].get('value')


def is_reformatted(worksheets: List[Dict[str, Any]]) -> bool:
    """True when the first sheet already starts with the standard header."""
    return _first_cell(worksheets) == HEADER_MAPPINGS['Account']


def source_has_account_type(worksheet: Dict[str, Any]) -> bool:
    """True when a reformatted sheet carries account types from the export."""
    for row in worksheet['data'][1:]:
        if len(row) > ACCOUNT_TYPE_COLUMN and row[ACCOUNT_TYPE_COLUMN].get('value') not in (None, ''):
            return True
    return False


def _bar(percent: float) -> str:
    bar_length = 40
    filled = int(bar_length * percent / 100)
    return '█' * filled + '░' * (bar_length - filled)


def _echo_validation(validation: Dict[str, Any]):
    click.echo(f"\nValidation:")
    click.echo(f"  Status: {validation.get('status', 'unknown').upper()}")
    click.echo(f"  Valid: {validation.get('valid', 0)} / {validation.get('total', 0)}")

    invalid_rows = validation.get('invalid_rows') or []
    for row in invalid_rows[:10]:
        click.echo(f"  Row {row['row'] + 1}: {', '.join(row['classification'])} "
                   f"(matched {row['matched_levels']} levels)")
    if len(invalid_rows) > 10:
        click.echo(f"  ... and {len(invalid_rows) - 10} more")


@click.group()
def cli():
    """Trial balance reformatting and classification."""


# ============================================================================
# Local commands
# ============================================================================

@cli.command('reformat')
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Output workbook (.xlsx)')
def reformat_cmd(file: str, output: Optional[str]):
    """Normalise the columns of a trial balance workbook."""
    output = output or _default_output(file, 'reformatted')
    click.echo(f"\n📁 Reformatting: {file}")

    try:
        worksheets, account_type = reformat_worksheets(parse_workbook(Path(file).read_bytes()))
        Path(output).write_bytes(worksheets_to_workbook(worksheets))
    except ClassifierError as e:
        logger.error(f"Reformat failed: {e}", exc_info=True)
        click.echo(f"\n✗ Reformat failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"✓ Wrote {output}")
    for ws in worksheets:
        click.echo(f"  {ws['name']}: {max(len(ws['data']) - 1, 0)} accounts")
    if account_type:
        click.echo("  Account types kept from the export")


@cli.command('classify')
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--provider', '-p', type=click.Choice(['openai', 'prompt_engine', 'sample']),
              help='Classifier provider (defaults to CLASSIFIER_PROVIDER)')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Output workbook (.xlsx)')
def classify_cmd(file: str, provider: Optional[str], output: Optional[str]):
    """Reformat a workbook if needed, then classify its accounts."""
    output = output or _default_output(file, 'classified')
    click.echo(f"\n📁 Classifying: {file}")

    try:
        data = Path(file).read_bytes()
        worksheets = parse_workbook(data, hide_empty_columns=False)

        if is_reformatted(worksheets):
            account_type = source_has_account_type(worksheets[0])
        else:
            click.echo("🔄 Reformatting first...")
            worksheets, account_type = reformat_worksheets(worksheets)
            data = worksheets_to_workbook(worksheets)

        classifier = build_classifier(settings, provider)
        click.echo(f"🤖 Sending accounts to {getattr(classifier.provider, 'name', provider)}...")
        rows = classifier.classify_sheets(worksheet_payload(worksheets[:1]))

        columns = classification_columns(rows, include_account_type=not account_type)
        Path(output).write_bytes(fill_columns(data, columns))
    except ClassifierError as e:
        logger.error(f"Classification failed: {e}", exc_info=True)
        click.echo(f"\n✗ Classification failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"✓ Classified {len(rows)} accounts into {output}")
    _echo_validation(classifier.validate(rows))


@cli.command('pdf-rows')
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Output workbook (.xlsx)')
@click.option('--keep-duplicates', is_flag=True, help='Do not drop repeated rows')
def pdf_rows_cmd(file: str, output: Optional[str], keep_duplicates: bool):
    """Extract the table rows of a PDF trial balance with pdfplumber."""
    output = output or str(Path(file).with_suffix('.xlsx'))
    click.echo(f"\n📄 Extracting: {file}")

    try:
        ocr = OCRService(PdfPlumberOCRProvider())
        rows = ocr.extract_rows(data=Path(file).read_bytes(), dedupe=not keep_duplicates)
        if not rows:
            click.echo("✗ No data extracted from PDF", err=True)
            sys.exit(1)
        Path(output).write_bytes(rows_to_workbook(rows))
    except ClassifierError as e:
        logger.error(f"Extraction failed: {e}", exc_info=True)
        click.echo(f"\n✗ Extraction failed: {e}", err=True)
        sys.exit(1)

    click.echo(f"✓ Wrote {len(rows)} rows to {output}")


# ============================================================================
# API mode
# ============================================================================

@cli.command('upload')
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--api-url', envvar='API_URL', default=DEFAULT_API_URL, show_default=True,
              help='API base URL')
@click.option('--api-key', envvar='TB_API_KEY', help='API key sent in the X-API-Key header')
@click.option('--process', 'process_flag', is_flag=True, help='Reformat and classify after upload')
def upload_cmd(file: str, api_url: str, api_key: Optional[str], process_flag: bool):
    """Upload a file to the API, optionally classifying it."""
    api_url = api_url.rstrip('/')
    headers = {settings.API_KEY_HEADER: api_key} if api_key else {}

    click.echo(f"\n📤 Uploading {file} to {api_url}...")

    try:
        content_type = 'application/pdf' if file.lower().endswith('.pdf') else XLSX_TYPE
        with open(file, 'rb') as f:
            response = requests.post(
                f"{api_url}/api/files/upload",
                files={'file': (Path(file).name, f, content_type)},
                headers=headers,
                timeout=60
            )
        if response.status_code != 201:
            click.echo(f"❌ Upload failed ({response.status_code}): {response.text}", err=True)
            sys.exit(1)

        record = response.json()
        click.echo(f"✓ Uploaded. File ID: {record['id']}")

        if not process_flag:
            return

        if record['category'] == 'pdf':
            job_id = _start_job(api_url, f"/api/files/{record['id']}/convert", headers)
            click.echo(f"🔄 Converting PDF (job {job_id})...\n")
            result = track_job(api_url, job_id, headers)
            click.echo(f"✓ Converted into file {result.get('converted_file_id')}")
            return

        if not record.get('reformatted'):
            response = requests.post(f"{api_url}/api/files/{record['id']}/reformat",
                                     headers=headers, timeout=60)
            if response.status_code != 200:
                click.echo(f"❌ Reformat failed ({response.status_code}): {response.text}", err=True)
                sys.exit(1)
            click.echo("✓ Reformatted")

        job_id = _start_job(api_url, f"/api/files/{record['id']}/process", headers)
        click.echo(f"🔄 Classifying (job {job_id})...\n")
        result = track_job(api_url, job_id, headers)
        click.echo(f"✓ Classified {result.get('rows', 0)} accounts")
        if result.get('validation'):
            _echo_validation(result['validation'])

    except requests.exceptions.RequestException as e:
        click.echo(f"❌ Network error: {e}", err=True)
        sys.exit(1)


def _start_job(api_url: str, path: str, headers: Dict[str, str]) -> str:
    response = requests.post(f"{api_url}{path}", headers=headers, timeout=30)
    if response.status_code != 202:
        click.echo(f"❌ Could not start job ({response.status_code}): {response.text}", err=True)
        sys.exit(1)
    return response.json()['job_id']


def track_job(api_url: str, job_id: str, headers: Dict[str, str]) -> Dict[str, Any]:
    """Follow a job over the WebSocket, falling back to polling."""
    try:
        return track_progress_websocket(api_url, job_id, headers)
    except (WebSocketException, ConnectionError, OSError) as e:
        logger.warning(f"WebSocket connection failed: {e}")
        click.echo(f"\n⚠️  WebSocket unavailable, falling back to polling...")
        return track_progress_polling(api_url, job_id, headers)


def _finish(status: str, data: Dict[str, Any]) -> Dict[str, Any]:
    click.echo()  # New line after progress bar
    if status == 'success':
        return data.get('result') or {}

    error = data.get('error') or {}
    click.echo(f"\n❌ Job {status}: {error.get('error', 'Unknown error')}", err=True)
    if error.get('traceback'):
        logger.error(f"Full traceback:\n{error['traceback']}")
    sys.exit(1)


def track_progress_websocket(api_url: str, job_id: str, headers: Dict[str, str]) -> Dict[str, Any]:
    ws_url = api_url.replace('http://', 'ws://').replace('https://', 'wss://')
    ws = create_connection(f"{ws_url}/ws/jobs/{job_id}", timeout=30, header=headers)

    try:
        while True:
            data = json.loads(ws.recv())

            if data.get('status') is None and 'error' in data:
                click.echo(f"\n❌ Error: {data['error']}", err=True)
                sys.exit(1)

            progress = data.get('progress')
            if progress:
                click.echo(f"\r[{_bar(progress['percent'])}] {progress['percent']:.1f}% - "
                           f"{progress['stage']}: {progress['message']}", nl=False)

            if 'completed_at' in data:
                return _finish(data['status'], data)
    finally:
        ws.close()


def track_progress_polling(api_url: str, job_id: str, headers: Dict[str, str],
                           interval: float = 2.0) -> Dict[str, Any]:

    last_percent = None
    while True:
        response = requests.get(f"{api_url}/api/jobs/{job_id}", headers=headers, timeout=10)
        if response.status_code != 200:
            click.echo(f"\n❌ Error checking status: {response.text}", err=True)
            sys.exit(1)

        data = response.json()
        progress = data.get('progress')
        if progress and progress['percent'] != last_percent:
            click.echo(f"\r[{_bar(progress['percent'])}] {progress['percent']:.1f}% - "
                       f"{progress['stage']}: {progress['message']}", nl=False)
            last_percent = progress['percent']

        if data['status'] in ('success', 'failed', 'cancelled'):
            return _finish(data['status'], data)

        time.sleep(interval)


if __name__ == '__main__':
    cli()
