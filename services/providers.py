"""
Provider wiring shared by the API, the Celery workers and the CLI.

Builds the classification and OCR services from a settings object
(``api.config.Settings`` or anything with the same attributes).
"""

import logging
from typing import Optional

from services.classification_service import ClassificationService, create_provider, load_taxonomy
from services.ocr_service import OCRService, create_ocr_provider

logger = logging.getLogger(__name__)


def build_classifier(settings, provider_name: Optional[str] = None) -> ClassificationService:
    """
    Create the classification service.

    Args:
        settings: Application settings
        provider_name: Override for ``settings.CLASSIFIER_PROVIDER``
    """
    name = provider_name or settings.CLASSIFIER_PROVIDER

    if name == 'openai':
        options = {
            'api_key': settings.OPENAI_API_KEY,
            'model': settings.OPENAI_MODEL,
            'temperature': settings.OPENAI_TEMPERATURE,
            'max_tokens': settings.OPENAI_MAX_TOKENS,
        }
    elif name == 'prompt_engine':
        options = {
            'api_key': settings.JIGSAWSTACK_API_KEY,
            'url': settings.PROMPT_ENGINE_URL,
            'timeout': settings.EXTERNAL_TIMEOUT,
        }
    else:
        options = {}

    logger.info(f"Using classifier provider: {name}")
    return ClassificationService(create_provider(name, **options), load_taxonomy(settings.CLASSIFICATIONS_PATH))


def build_ocr(settings, provider_name: Optional[str] = None) -> OCRService:
    """Create the OCR service."""
    name = provider_name or settings.OCR_PROVIDER

    options = {}
    if name == 'jigsawstack':
        options = {
            'api_key': settings.JIGSAWSTACK_API_KEY,
            'url': settings.JIGSAWSTACK_VOCR_URL,
            'prompt': settings.OCR_PROMPT,
            'timeout': settings.EXTERNAL_TIMEOUT,
        }

    logger.info(f"Using OCR provider: {name}")
    return OCRService(create_ocr_provider(name, **options))
