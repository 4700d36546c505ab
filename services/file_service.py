"""
File Service - Trial balance document lifecycle.

Ties together storage, the database record, workbook parsing,
reformatting, AI classification and PDF conversion. Long-running
operations report progress through an optional callback with the
signature ``callback(stage: str, percent: float, message: str)``.
"""

import copy
import logging
import re
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from backend.models.schema import FileRecord
from services.classification_service import ClassificationService, worksheet_payload
from services.errors import (
    FileNotFound, FileTooLargeError, InvalidFileError, OCRError, StorageError
)
from services.ocr_service import OCRService, dedupe_rows
from services.reformat_service import (
    ACCOUNT_TYPE_COLUMN, PRIMARY_COLUMN, SECONDARY_COLUMN, TERTIARY_COLUMN,
    reformat_worksheets
)
from services.storage_service import StorageService
from services.workbook_service import (
    coerce_cell_value, empty_cell, fill_columns, fill_worksheet_column,
    parse_workbook, rows_to_workbook, update_cell, worksheets_to_workbook
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB
DEFAULT_ALLOWED_EXTENSIONS = ('.xlsx', '.xlsm', '.pdf')
XLSX_CONTENT_TYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
CONVERTED_SHEET_NAME = 'Extracted Data'

# Output column for each level of a classification row
CLASSIFICATION_COLUMNS = [ACCOUNT_TYPE_COLUMN, PRIMARY_COLUMN, SECONDARY_COLUMN, TERTIARY_COLUMN]

_PDF_SUFFIX_RE = re.compile(r'\.pdf$', re.IGNORECASE)


def categorize(filename: str) -> str:
    """'pdf' for PDF documents, 'excel' for everything else."""
    return 'pdf' if Path(filename).suffix.lower() == '.pdf' else 'excel'


def classification_columns(rows: List[List[str]], include_account_type: bool = True) -> Dict[int, List[str]]:
    """
    Split classification rows into per-column value lists.

    Missing levels become empty strings. The account type column is left
    out when the source already had one.
    """
    columns = {}
    for level, column in enumerate(CLASSIFICATION_COLUMNS):
        if column == ACCOUNT_TYPE_COLUMN and not include_account_type:
            continue
        columns[column] = [
            (row[level] if len(row) > level and row[level] is not None else '')
            for row in rows
        ]
    return columns


def overlay_processed_data(worksheets: List[Dict[str, Any]], processed_data: Optional[List[List[str]]],
                           include_account_type: bool = True) -> List[Dict[str, Any]]:
    """
    Write stored classifications into the first worksheet.

    Used for records whose stored workbook predates the classification.
    """
    if not worksheets or not isinstance(processed_data, list) or not processed_data:
        return worksheets

    for column, values in classification_columns(processed_data, include_account_type).items():
        fill_worksheet_column(worksheets[0], column, values)

    return worksheets


class FileService:
    """
    Framework-agnostic service for uploaded trial balance files.

    Usage:
        service = FileService(db_session, storage, classifier=classifier)
        record = service.upload('user-1', 'tb.xlsx', content)
        service.reformat_file(record)
        summary = service.process_file(record)
    """

    def __init__(
        self,
        db_session: Session,
        storage: StorageService,
        classifier: Optional[ClassificationService] = None,
        ocr: Optional[OCRService] = None,
        progress_callback: Optional[Callable[[str, float, str], None]] = None,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        allowed_extensions: Iterable[str] = DEFAULT_ALLOWED_EXTENSIONS,
        signed_url_expiry: int = 3600,
        api_prefix: str = '/api'
    ):
        """
        Initialize file service.

        Args:
            db_session: SQLAlchemy database session
            storage: Object storage for file contents
            classifier: Classification service (needed by process_file)
            ocr: OCR service (needed by convert_pdf)
            progress_callback: Optional callback for progress updates
                              Signature: callback(stage: str, percent: float, message: str)
            max_file_size: Upload size limit in bytes
            allowed_extensions: Accepted file extensions (lower case, with dot)
            signed_url_expiry: Lifetime of signed URLs handed to OCR, in seconds
            api_prefix: Prefix used to build download URLs
        """
        self.db = db_session
        self.storage = storage
        self.classifier = classifier
        self.ocr = ocr
        self.progress_callback = progress_callback or (lambda *args: None)
        self.max_file_size = max_file_size
        self.allowed_extensions = {ext.lower() for ext in allowed_extensions}
        self.signed_url_expiry = signed_url_expiry
        self.api_prefix = api_prefix.rstrip('/')

    def _emit_progress(self, stage: str, percent: float, message: str):
        """Emit progress update via callback."""
        self.progress_callback(stage, percent, message)
        logger.info(f"Progress: {stage} ({percent:.1f}%) - {message}")

    def _download_url(self, file_id: str) -> str:
        return f"{self.api_prefix}/files/{file_id}/download"

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def validate_upload(self, filename: str, size: int):
        ext = Path(filename or '').suffix.lower()
        if ext not in self.allowed_extensions:
            raise InvalidFileError(
                f"Invalid file type '{ext or filename}'. Allowed: {', '.join(sorted(self.allowed_extensions))}"
            )
        if size == 0:
            raise InvalidFileError('File is empty')
        if size > self.max_file_size:
            limit_mb = self.max_file_size / (1024 * 1024)
            raise FileTooLargeError(f"File size must be less than {limit_mb:g}MB")

    def upload(self, user_id: str, filename: str, content: bytes,
               content_type: Optional[str] = None) -> FileRecord:
        """
        Store an uploaded file and create its record.

        Raises:
            InvalidFileError: Unsupported extension or empty file
            FileTooLargeError: File exceeds the size limit
        """
        self.validate_upload(filename, len(content))

        file_id = str(uuid.uuid4())
        object_path = self.storage.new_object_path(user_id, filename)
        self.storage.put(object_path, content)

        record = FileRecord(
            id=file_id,
            filename=filename,
            size=len(content),
            type=content_type,
            category=categorize(filename),
            url=self._download_url(file_id),
            user_id=user_id,
            storage_path=object_path,
            created_at=datetime.utcnow()
        )

        try:
            self.db.add(record)
            self.db.commit()
        except Exception:
            self.db.rollback()
            self.storage.remove([object_path])
            raise

        self.db.refresh(record)
        logger.info(f"Uploaded {filename} for {user_id} as {file_id} "
                    f"({len(content)} bytes, sha256 {self.storage.compute_hash(content)})")
        return record

    def list_files(self, user_id: str) -> List[FileRecord]:
        """All files of a user, newest first."""
        return (
            self.db.query(FileRecord)
            .filter(FileRecord.user_id == user_id)
            .order_by(FileRecord.created_at.desc())
            .all()
        )

    def get_file(self, user_id: str, file_id: str) -> FileRecord:
        record = (
            self.db.query(FileRecord)
            .filter(FileRecord.id == file_id, FileRecord.user_id == user_id)
            .first()
        )
        if record is None:
            raise FileNotFound(f"File {file_id} not found")
        return record

    def delete_file(self, user_id: str, file_id: str):
        """Remove the stored object, then the record."""
        record = self.get_file(user_id, file_id)

        self.storage.remove([record.storage_path])
        self.db.delete(record)
        self.db.commit()

        logger.info(f"Deleted file {file_id} ({record.filename})")

    def download(self, record: FileRecord) -> bytes:
        return self.storage.get(record.storage_path)

    # ------------------------------------------------------------------
    # Worksheets
    # ------------------------------------------------------------------

    def _require_excel(self, record: FileRecord):
        if record.category != 'excel':
            raise InvalidFileError('Only Excel files can be opened as worksheets')

    def load_worksheets(self, record: FileRecord, hide_empty_columns: bool = True) -> List[Dict[str, Any]]:
        """Parse the stored workbook of an Excel record."""
        self._require_excel(record)
        return parse_workbook(self.download(record), hide_empty_columns=hide_empty_columns)

    def get_worksheets(self, record: FileRecord) -> List[Dict[str, Any]]:
        """Parsed worksheets with any stored classifications applied."""
        worksheets = self.load_worksheets(record)
        return overlay_processed_data(
            worksheets, record.processed_data,
            include_account_type=not record.has_account_type
        )

    def edit_cell(self, record: FileRecord, sheet_index: int, row: int, col: int, value) -> Any:
        """
        Update one cell of the stored workbook.

        Returns:
            The value as stored (numeric text is converted to a number)
        """
        self._require_excel(record)
        if row < 0 or col < 0:
            raise InvalidFileError('Row and column must be non-negative')

        stored = coerce_cell_value(value)
        self.storage.update(record.storage_path, update_cell(self.download(record), sheet_index, row, col, value))

        now = datetime.utcnow()
        record.last_modified = now

        if record.excel_data and 0 <= sheet_index < len(record.excel_data):
            excel_data = copy.deepcopy(record.excel_data)
            rows = excel_data[sheet_index]['data']
            while len(rows) <= row:
                rows.append([])
            while len(rows[row]) <= col:
                rows[row].append(empty_cell())
            rows[row][col]['value'] = stored
            record.excel_data = excel_data
            record.excel_data_updated_at = now

        # keep stored classifications in line with manual corrections
        if (sheet_index == 0 and record.processed_data and row >= 1
                and col in CLASSIFICATION_COLUMNS and row - 1 < len(record.processed_data)):
            processed = copy.deepcopy(record.processed_data)
            level = CLASSIFICATION_COLUMNS.index(col)
            entry = processed[row - 1]
            while len(entry) <= level:
                entry.append('')
            entry[level] = '' if stored is None else str(stored)
            record.processed_data = processed

        self.db.commit()
        logger.info(f"Updated cell ({sheet_index}, {row}, {col}) of {record.id}")
        return stored

    # ------------------------------------------------------------------
    # Reformat and classification
    # ------------------------------------------------------------------

    def reformat_file(self, record: FileRecord) -> List[Dict[str, Any]]:
        """
        Normalise the columns of every sheet and save the result.

        Raises:
            InvalidFileError: The file was already reformatted or is not Excel
        """
        self._require_excel(record)
        if record.reformatted:
            raise InvalidFileError('File has already been reformatted')

        self._emit_progress('loading', 10, f"Loading {record.filename}")
        worksheets = self.load_worksheets(record)

        self._emit_progress('reformatting', 40, f"Reformatting {len(worksheets)} sheets")
        reformatted, has_account_type = reformat_worksheets(worksheets)

        self._emit_progress('saving', 80, 'Saving reformatted workbook')
        self.storage.update(record.storage_path, worksheets_to_workbook(reformatted))

        now = datetime.utcnow()
        record.reformatted = True
        record.reformatted_at = now
        record.has_account_type = has_account_type
        record.excel_data = reformatted
        record.excel_data_updated_at = now
        record.last_modified = now
        self.db.commit()

        self._emit_progress('complete', 100, 'Reformat complete')
        return reformatted

    def process_file(self, record: FileRecord) -> Dict[str, Any]:
        """
        Classify the accounts of the first sheet and write the results
        into the classification columns.

        Returns:
            Summary with the classification rows and their validation report
        """
        self._require_excel(record)
        if not record.reformatted:
            raise InvalidFileError('File must be reformatted before processing')
        if self.classifier is None:
            raise InvalidFileError('No classifier configured')

        self._emit_progress('loading', 10, f"Loading {record.filename}")
        worksheets = copy.deepcopy(record.excel_data) if record.excel_data else \
            self.load_worksheets(record, hide_empty_columns=False)
        if not worksheets:
            raise InvalidFileError('Workbook has no worksheets')

        self._emit_progress('classifying', 30, 'Sending accounts for classification')
        rows = self.classifier.classify_sheets(worksheet_payload(worksheets[:1]))

        self._emit_progress('writing', 70, f"Writing {len(rows)} classifications")
        columns = classification_columns(rows, include_account_type=not record.has_account_type)
        self.storage.update(record.storage_path, fill_columns(self.download(record), columns))
        for column, values in columns.items():
            fill_worksheet_column(worksheets[0], column, values)

        now = datetime.utcnow()
        record.processed_data = rows
        record.processed_at = now
        record.last_modified = now
        record.excel_data = worksheets
        record.excel_data_updated_at = now
        self.db.commit()

        validation = self.classifier.validate(rows)
        self._emit_progress('complete', 100,
                            f"Classified {len(rows)} accounts ({validation['valid']} match the structure)")

        return {
            'file_id': record.id,
            'rows': len(rows),
            'classifications': rows,
            'validation': validation
        }

    # ------------------------------------------------------------------
    # PDF conversion
    # ------------------------------------------------------------------

    def convert_pdf(self, record: FileRecord, base_url: str = '') -> FileRecord:
        """
        Convert a PDF trial balance into a new Excel file record.

        Args:
            record: PDF file record
            base_url: Public base URL used for the signed link given to OCR

        Raises:
            OCRError: Nothing could be extracted
        """
        if record.category != 'pdf':
            raise InvalidFileError('Only PDF files can be converted')
        if self.ocr is None:
            raise InvalidFileError('No OCR provider configured')

        self._emit_progress('extracting', 10, f"Extracting text from {record.filename}")
        if self.ocr.needs_url:
            signed_url = self.storage.create_signed_url(record.storage_path, self.signed_url_expiry, base_url)
            rows = self.ocr.extract_rows(pdf_url=signed_url)
        else:
            rows = self.ocr.extract_rows(data=self.download(record))

        rows = dedupe_rows(rows)
        if not rows:
            raise OCRError('No data extracted from PDF')

        self._emit_progress('writing', 60, f"Writing {len(rows)} rows to workbook")
        content = rows_to_workbook(rows, CONVERTED_SHEET_NAME)
        object_path = _PDF_SUFFIX_RE.sub('.xlsx', record.storage_path)
        if object_path == record.storage_path:
            object_path = f"{object_path}.xlsx"
        self.storage.put(object_path, content, upsert=True)

        file_id = str(uuid.uuid4())
        converted = FileRecord(
            id=file_id,
            filename=_PDF_SUFFIX_RE.sub('.xlsx', record.filename) if _PDF_SUFFIX_RE.search(record.filename)
            else f"{record.filename}.xlsx",
            size=len(content),
            type=XLSX_CONTENT_TYPE,
            category='excel',
            url=self._download_url(file_id),
            user_id=record.user_id,
            storage_path=object_path,
            created_at=datetime.utcnow(),
            is_converted_from_pdf=True,
            converted_from_file_id=record.id
        )

        try:
            self.db.add(converted)
            self.db.commit()
        except Exception:
            self.db.rollback()
            try:
                self.storage.remove([object_path])
            except StorageError as e:
                logger.warning(f"Could not remove {object_path} after failed insert: {e}")
            raise

        self.db.refresh(converted)
        self._emit_progress('complete', 100, f"Converted {record.filename} to {converted.filename}")
        return converted
