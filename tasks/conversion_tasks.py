"""
PDF conversion background tasks.

This module defines the Celery task that turns an uploaded PDF trial
balance into a new Excel file via OCR.
"""

import logging
from typing import Dict, Any

from api.config import settings
from tasks.celery_app import celery_app
from tasks.classification_tasks import ClassifierTask, get_db_session, get_ocr, get_storage
from services.file_service import FileService

logger = logging.getLogger(__name__)


@celery_app.task(base=ClassifierTask, bind=True, name='tasks.conversion_tasks.convert_pdf_file')
def convert_pdf_file(self, file_id: str, user_id: str, base_url: str) -> Dict[str, Any]:
    """
    Background task to convert a PDF file into an Excel file.

    Args:
        file_id: PDF file record ID
        user_id: Owner of the file
        base_url: Public base URL of the API, used for the signed PDF link

    Returns:
        {'file_id': <pdf id>, 'converted_file_id': <new excel id>, 'filename': str}
    """
    job_id = self.request.id
    logger.info(f"Starting conversion task {job_id} for file {file_id}")

    if self.is_cancelled(job_id):
        logger.info(f"Job {job_id} was cancelled before it started")
        return {'file_id': file_id, 'cancelled': True}

    try:
        self.job_started(job_id)

        with get_db_session() as session:
            service = FileService(
                db_session=session,
                storage=get_storage(),
                ocr=get_ocr(),
                progress_callback=self.on_progress,
                signed_url_expiry=settings.SIGNED_URL_EXPIRY,
                api_prefix=settings.API_PREFIX
            )
            record = service.get_file(user_id, file_id)
            converted = service.convert_pdf(record, base_url=base_url)

            result = {
                'file_id': file_id,
                'converted_file_id': converted.id,
                'filename': converted.filename
            }

        self.job_succeeded(job_id, result)

        logger.info(f"Conversion task {job_id} completed: {result['converted_file_id']}")
        return result

    except Exception as e:
        logger.error(f"Conversion task {job_id} failed: {e}", exc_info=True)
        self.job_failed(job_id, e, file_id=file_id)
        raise
