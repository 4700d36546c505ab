"""
Pytest configuration and fixtures for trial balance classifier tests.
"""

import os
from io import BytesIO
from pathlib import Path

import openpyxl
import pytest
from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from backend.models import Base
from services.classification_service import ClassificationService, SampleProvider, load_taxonomy
from services.ocr_service import OCRService
from services.storage_service import StorageService

# Load environment
load_dotenv()

# Test database URL (in-memory SQLite unless a real database is configured)
TEST_DATABASE_URL = os.getenv('TEST_DATABASE_URL', 'sqlite://')

PROJECT_ROOT = Path(__file__).parent.parent


@pytest.fixture(scope='session')
def engine():
    """Create test database engine."""
    if TEST_DATABASE_URL.startswith('sqlite'):
        eng = create_engine(
            TEST_DATABASE_URL,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool
        )

        # let pysqlite honour SAVEPOINT so tests can roll back service commits
        @event.listens_for(eng, 'connect')
        def do_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(eng, 'begin')
        def do_begin(conn):
            conn.exec_driver_sql('BEGIN')
    else:
        eng = create_engine(TEST_DATABASE_URL)

    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture(scope='function')
def connection(engine):
    """Connection wrapped in a transaction that is rolled back after the test."""
    conn = engine.connect()
    transaction = conn.begin()

    yield conn

    transaction.rollback()
    conn.close()


@pytest.fixture(scope='function')
def session_factory(connection):
    """Session factory whose commits become savepoints of the test transaction."""
    return sessionmaker(bind=connection, join_transaction_mode='create_savepoint')


@pytest.fixture(scope='function')
def session(session_factory):
    """Create a new database session for a test."""
    sess = session_factory()
    yield sess
    sess.close()


@pytest.fixture
def storage(tmp_path):
    """Object storage in a temporary directory."""
    return StorageService(storage_dir=str(tmp_path / 'storage'), bucket='files', signing_secret='test-secret')


@pytest.fixture(scope='session')
def taxonomy():
    return load_taxonomy(str(PROJECT_ROOT / 'data' / 'classifications.json'))


@pytest.fixture
def classifier(taxonomy):
    """Classification service answering with the canned sample response."""
    return ClassificationService(SampleProvider(), taxonomy)


class FakeProvider:
    """Classification provider returning a fixed answer and recording calls."""

    name = 'fake'

    def __init__(self, response='', error=None):
        self.response = response
        self.error = error
        self.calls = []

    def complete(self, values):
        self.calls.append(values)
        if self.error:
            raise self.error
        return self.response


class FakeOCRProvider:
    """URL-based OCR provider returning fixed text."""

    name = 'fake-ocr'

    def __init__(self, text='', error=None):
        self.text = text
        self.error = error
        self.urls = []

    def extract_text(self, pdf_url):
        self.urls.append(pdf_url)
        if self.error:
            raise self.error
        return self.text


class FakeRedis:
    """Minimal stand-in for the progress keys kept in Redis."""

    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = value


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def fake_ocr_provider():
    return FakeOCRProvider


@pytest.fixture
def ocr_text():
    return (
        "| Account | Debit | Credit |\n"
        "|---|---|---|\n"
        "| Cash at bank | 1250.00 | |\n"
        "| Trade payables | | 800.00 |\n"
        "| Cash at bank | 1250.00 | |\n"
        "\n"
    )


@pytest.fixture
def ocr_service(ocr_text):
    return OCRService(FakeOCRProvider(ocr_text))


@pytest.fixture
def fake_redis():
    return FakeRedis()


def build_workbook(rows, title='Sheet1', extra_sheets=None) -> bytes:
    """Write rows of values to .xlsx bytes."""
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = title
    for row in rows:
        ws.append(row)
    for name, sheet_rows in (extra_sheets or {}).items():
        extra = wb.create_sheet(title=name)
        for row in sheet_rows:
            extra.append(row)
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture
def make_workbook():
    return build_workbook


@pytest.fixture
def xero_rows():
    """Trial balance export with a title block above the ledger table."""
    return [
        ['Demo Company (SG)'],
        ['Trial Balance'],
        ['As at 31 December 2023'],
        [None],
        ['Account', 'Account Code', 'Debit - Year to date', 'Credit - Year to date'],
        ['Cash at bank', '090', 1250.0, None],
        ['Trade payables', '800', None, 800.0],
        ['Paid up capital', '970', None, 450.0],
        [None, None, None, None],
        ['Total', None, 1250.0, 1250.0],
    ]


@pytest.fixture
def xero_workbook(xero_rows):
    return build_workbook(xero_rows)


class FakeTask:
    """Records Celery dispatches instead of sending them to the broker."""

    def __init__(self, calls):
        self.calls = calls

    def apply_async(self, args=None, task_id=None, **kwargs):
        self.calls.append({'args': args, 'task_id': task_id})


@pytest.fixture
def dispatched():
    """Celery tasks sent by the API during a test."""
    return []


@pytest.fixture
def revoked():
    return []


@pytest.fixture
def client(session, storage, classifier, ocr_service, fake_redis, dispatched, revoked, monkeypatch):
    """API client wired to the test database, storage and fake providers."""
    from fastapi.testclient import TestClient

    from api import dependencies
    from api.main import app
    from api.routers import files as files_router
    from tasks.celery_app import celery_app

    app.dependency_overrides[dependencies.get_db] = lambda: session
    app.dependency_overrides[dependencies.get_storage] = lambda: storage
    app.dependency_overrides[dependencies.get_classifier] = lambda: classifier
    app.dependency_overrides[dependencies.get_ocr_service] = lambda: ocr_service
    app.dependency_overrides[dependencies.get_redis] = lambda: fake_redis

    monkeypatch.setattr(files_router, 'classify_file', FakeTask(dispatched))
    monkeypatch.setattr(files_router, 'convert_pdf_file', FakeTask(dispatched))
    monkeypatch.setattr(celery_app.control, 'revoke',
                        lambda task_id, terminate=False: revoked.append(task_id))

    yield TestClient(app)

    app.dependency_overrides.clear()
