"""
Relay router - Direct classification and OCR endpoints.

These endpoints keep the request/response contract the spreadsheet client
was built against: errors come back as ``{"error": "<message>"}``.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, status
from fastapi.responses import JSONResponse

from api.dependencies import get_classifier, get_ocr_service
from api.schemas.process_schema import ProcessPdfRequest, ProcessRequest
from services.classification_service import ClassificationService, convert_to_rows, extract_entries
from services.errors import ClassifierError
from services.ocr_service import OCRService

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(tags=['process'])


def _error(message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={'error': message})


def _field(payload: Any, name: str) -> Any:
    return payload.get(name) if isinstance(payload, dict) else None


@router.post('/process')
def process_data(
    payload: Any = Body(None, examples=[ProcessRequest.Config.json_schema_extra['example']]),
    classifier: ClassificationService = Depends(get_classifier)
):
    """
    Classify the account descriptions of the posted worksheets.

    The first cell of every row with at least four cells is sent for
    classification. The provider's answer is returned as rows of strings,
    split on newlines and commas.

    **Example:**
    ```bash
    curl -X POST http://localhost:3000/api/process \\
         -H 'Content-Type: application/json' \\
         -d '{"data": [{"name": "Sheet1", "data": [[{"value": "Cash"}, {"value": ""}, {"value": ""}, {"value": ""}]]}]}'
    ```

    **Returns:**
    ```json
    [["Asset", "Cash and Cash Equivalents", "Bank Balances", "Bank Balances"]]
    ```
    """
    try:
        entries = extract_entries(_field(payload, 'data'))
    except ClassifierError as e:
        logger.error(f"Error processing data: {e}")
        return _error('Failed to process data')

    if not entries:
        return _error('No entries to classify', status.HTTP_400_BAD_REQUEST)

    logger.info(f"Extracted {len(entries)} entries for classification")

    try:
        text = classifier.classify_text(entries)
    except ClassifierError as e:
        logger.error(f"Error processing data: {e}")
        return _error('Failed to process data')

    return convert_to_rows(text)


@router.post('/process-pdf')
def process_pdf(
    payload: Any = Body(None, examples=[ProcessPdfRequest.Config.json_schema_extra['example']]),
    ocr: OCRService = Depends(get_ocr_service)
):
    """
    Extract table rows from a PDF reachable at ``pdfUrl``.

    Separator lines and empty rows are dropped; cells are split on ``|``.
    """
    pdf_url = _field(payload, 'pdfUrl')
    if not pdf_url or not isinstance(pdf_url, str):
        return _error('PDF URL is required', status.HTTP_400_BAD_REQUEST)

    try:
        return ocr.extract_rows(pdf_url=pdf_url)
    except ClassifierError as e:
        logger.error(f"Error processing PDF: {e}")
        return _error(str(e))
