"""
Files router - Upload, edit, reformat and classify trial balances.

This module provides endpoints for managing uploaded files, working with
their worksheets and starting the classification and PDF conversion jobs.
"""

import os
import logging
import tempfile
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, UploadFile, File, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from api.config import settings
from api.dependencies import (
    get_current_user, get_db, get_file_service, get_storage,
    verify_file_extension, verify_file_size
)
from api.schemas.file_schema import (
    CellUpdateRequest, CellUpdateResponse, FileListResponse, FileResponse, SignedUrlResponse
)
from api.schemas.job_schema import JobCreateResponse
from api.schemas.worksheet_schema import WorksheetsResponse
from backend.models.job import JobRun, JobStatus, JobType
from services.errors import (
    FileNotFound, FileTooLargeError, InvalidFileError, StorageError, WorkbookError
)
from services.file_service import FileService
from services.storage_service import StorageService
from tasks.classification_tasks import classify_file
from tasks.conversion_tasks import convert_pdf_file

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=['files'])

CHUNK_SIZE = 1024 * 1024

MEDIA_TYPES = {
    'excel': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'pdf': 'application/pdf',
}


def _get_record(service: FileService, user: str, file_id: str):
    try:
        return service.get_file(user, file_id)
    except FileNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File {file_id} not found"
        )


def _read_upload(file: UploadFile) -> bytes:
    """
    Spool the upload to the temp directory, stopping at the size limit.
    """
    os.makedirs(settings.TEMP_UPLOAD_DIR, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(suffix=Path(file.filename or '').suffix, dir=settings.TEMP_UPLOAD_DIR)

    try:
        written = 0
        with os.fdopen(fd, 'wb') as tmp:
            while True:
                chunk = file.file.read(CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                verify_file_size(written)
                tmp.write(chunk)

        with open(temp_path, 'rb') as tmp:
            return tmp.read()
    finally:
        os.unlink(temp_path)


def _start_job(db: Session, job_type: JobType, task, args: list, params: dict,
               file_id: str, user: str) -> JobCreateResponse:
    """
    Create the job record and enqueue the Celery task.

    The record is committed under the task ID before the task is sent so
    a fast worker always finds it.
    """
    job_id = str(uuid.uuid4())

    job_run = JobRun(
        job_id=job_id,
        job_type=job_type.value,
        status=JobStatus.PENDING.value,
        params=params,
        file_id=file_id,
        created_by=user
    )
    db.add(job_run)
    db.commit()

    try:
        task.apply_async(args=args, task_id=job_id)
    except Exception as e:
        logger.error(f"Could not enqueue {job_type.value} job {job_id}: {e}", exc_info=True)
        job_run.mark_failed({'error': 'Task queue unavailable', 'detail': str(e)})
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Task queue unavailable"
        )

    logger.info(f"Started {job_type.value} task {job_id} for file {file_id}")

    return JobCreateResponse(
        job_id=job_id,
        message=f"{job_type.value.capitalize()} job started",
        status_url=f"{settings.API_PREFIX}/jobs/{job_id}",
        websocket_url=f"/ws/jobs/{job_id}"
    )


@router.post('/files/upload', response_model=FileResponse, status_code=status.HTTP_201_CREATED)
def upload_file(
    file: UploadFile = File(..., description="Trial balance (.xlsx, .xlsm or .pdf)"),
    service: FileService = Depends(get_file_service),
    current_user: str = Depends(get_current_user)
):
    """
    Upload a trial balance file.

    The file is stored under a random name in the user's folder and a file
    record is created. PDFs are categorised as `pdf`, everything else as
    `excel`.

    **Returns:**
    - 201 Created with the file record
    - 400 for an unsupported or empty file
    - 413 if the file exceeds the size limit
    """
    logger.info(f"Upload request from {current_user}: {file.filename}")

    verify_file_extension(file.filename)
    content = _read_upload(file)

    try:
        record = service.upload(current_user, file.filename, content, content_type=file.content_type)
    except FileTooLargeError as e:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(e))
    except InvalidFileError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return FileResponse.model_validate(record)


@router.get('/files', response_model=FileListResponse)
def list_files(
    service: FileService = Depends(get_file_service),
    current_user: str = Depends(get_current_user)
):
    """List the current user's files, newest first."""
    records = service.list_files(current_user)
    return FileListResponse(
        total=len(records),
        items=[FileResponse.model_validate(record) for record in records]
    )


@router.get('/files/{file_id}', response_model=FileResponse)
def get_file(
    file_id: str,
    service: FileService = Depends(get_file_service),
    current_user: str = Depends(get_current_user)
):
    return FileResponse.model_validate(_get_record(service, current_user, file_id))


@router.delete('/files/{file_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_file(
    file_id: str,
    service: FileService = Depends(get_file_service),
    current_user: str = Depends(get_current_user)
):
    """
    Delete a file.

    The stored object is removed first, then the record.
    """
    try:
        service.delete_file(current_user, file_id)
    except FileNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"File {file_id} not found"
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get('/files/{file_id}/download')
def download_file(
    file_id: str,
    service: FileService = Depends(get_file_service),
    current_user: str = Depends(get_current_user)
):
    """Download the stored file."""
    record = _get_record(service, current_user, file_id)

    try:
        content = service.download(record)
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return Response(
        content=content,
        media_type=record.type or MEDIA_TYPES.get(record.category, 'application/octet-stream'),
        headers={'Content-Disposition': f'attachment; filename="{record.filename}"'}
    )


@router.get('/files/{file_id}/signed-url', response_model=SignedUrlResponse)
def get_signed_url(
    file_id: str,
    request: Request,
    expires_in: Optional[int] = Query(None, ge=1, le=86400, description="Lifetime in seconds"),
    service: FileService = Depends(get_file_service),
    storage: StorageService = Depends(get_storage),
    current_user: str = Depends(get_current_user)
):
    """
    Create a time-limited download link, e.g. for an external OCR provider.
    """
    record = _get_record(service, current_user, file_id)
    expires_in = expires_in or settings.SIGNED_URL_EXPIRY
    base_url = settings.PUBLIC_BASE_URL or str(request.base_url)

    try:
        url = storage.create_signed_url(record.storage_path, expires_in, base_url)
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return SignedUrlResponse(url=url, expires_in=expires_in)


@router.get('/storage/{object_path:path}', include_in_schema=False)
def signed_download(
    object_path: str,
    expires: int = Query(...),
    signature: str = Query(...),
    storage: StorageService = Depends(get_storage)
):
    """Serve an object through a signed URL (no API key needed)."""
    try:
        valid = storage.verify_signature(object_path, expires, signature)
    except StorageError:
        valid = False

    if not valid:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired signature"
        )

    try:
        content = storage.get(object_path)
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    media_type = MEDIA_TYPES['pdf'] if object_path.lower().endswith('.pdf') else MEDIA_TYPES['excel']
    return Response(content=content, media_type=media_type)


@router.get('/files/{file_id}/worksheets', response_model=WorksheetsResponse)
def get_worksheets(
    file_id: str,
    service: FileService = Depends(get_file_service),
    current_user: str = Depends(get_current_user)
):
    """
    Parse the stored workbook.

    Empty columns are hidden, merged cells carry their spans and stored
    classifications are filled into the classification columns.
    """
    record = _get_record(service, current_user, file_id)

    try:
        worksheets = service.get_worksheets(record)
    except InvalidFileError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except WorkbookError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return WorksheetsResponse(
        file_id=record.id,
        reformatted=bool(record.reformatted),
        has_account_type=record.has_account_type,
        worksheets=worksheets
    )


@router.put('/files/{file_id}/cells', response_model=CellUpdateResponse)
def update_cell(
    file_id: str,
    update: CellUpdateRequest,
    service: FileService = Depends(get_file_service),
    current_user: str = Depends(get_current_user)
):
    """
    Edit a single cell.

    Numeric text is stored as a number; anything else is stored as typed.
    """
    record = _get_record(service, current_user, file_id)

    try:
        value = service.edit_cell(record, update.sheet_index, update.row, update.col, update.value)
    except InvalidFileError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except WorkbookError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return CellUpdateResponse(sheet_index=update.sheet_index, row=update.row, col=update.col, value=value)


@router.post('/files/{file_id}/reformat', response_model=WorksheetsResponse)
def reformat_file(
    file_id: str,
    service: FileService = Depends(get_file_service),
    current_user: str = Depends(get_current_user)
):
    """
    Reformat the workbook into the standard trial balance layout.

    A file can only be reformatted once.
    """
    record = _get_record(service, current_user, file_id)

    try:
        worksheets = service.reformat_file(record)
    except InvalidFileError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except WorkbookError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return WorksheetsResponse(
        file_id=record.id,
        reformatted=True,
        has_account_type=record.has_account_type,
        worksheets=worksheets
    )


@router.post('/files/{file_id}/process', response_model=JobCreateResponse,
             status_code=status.HTTP_202_ACCEPTED)
def process_file(
    file_id: str,
    db: Session = Depends(get_db),
    service: FileService = Depends(get_file_service),
    current_user: str = Depends(get_current_user)
):
    """
    Start AI classification of a reformatted file.

    **Progress Tracking:**
    - Poll GET /api/jobs/{job_id} for status
    - Connect to WebSocket /ws/jobs/{job_id} for real-time updates
    """
    record = _get_record(service, current_user, file_id)

    if record.category != 'excel':
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Only Excel files can be classified")
    if not record.reformatted:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="File must be reformatted before processing")

    return _start_job(
        db, JobType.CLASSIFICATION, classify_file,
        args=[record.id, current_user],
        params={'filename': record.filename},
        file_id=record.id,
        user=current_user
    )


@router.post('/files/{file_id}/convert', response_model=JobCreateResponse,
             status_code=status.HTTP_202_ACCEPTED)
def convert_file(
    file_id: str,
    request: Request,
    db: Session = Depends(get_db),
    service: FileService = Depends(get_file_service),
    current_user: str = Depends(get_current_user)
):
    """
    Start conversion of a PDF trial balance into a new Excel file.

    The finished job's result holds `converted_file_id`.
    """
    record = _get_record(service, current_user, file_id)

    if record.category != 'pdf':
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Only PDF files can be converted")

    base_url = settings.PUBLIC_BASE_URL or str(request.base_url)

    return _start_job(
        db, JobType.CONVERSION, convert_pdf_file,
        args=[record.id, current_user, base_url],
        params={'filename': record.filename},
        file_id=record.id,
        user=current_user
    )
