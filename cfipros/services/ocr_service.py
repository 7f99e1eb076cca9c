"""
Document OCR through the Gemini generateContent REST API.

``process_document`` never raises; failures come back as an ``OcrResult``
with ``error_ocr_processing`` (not worth retrying) or
``error_api_unavailable`` (retried with exponential backoff by
``process_document_with_retry``).
"""
import base64
import logging
import os
import time
from typing import Optional

import requests
from pydantic import BaseModel

from cfipros.errors import OcrError
from cfipros.services.ocr_config import OCR_CONFIG, OcrConfig

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'success'
STATUS_PROCESSING_ERROR = 'error_ocr_processing'
STATUS_API_UNAVAILABLE = 'error_api_unavailable'

OCR_PROMPT = (
    "Extract all text content from this document. Return only the raw extracted text, "
    "preserving the original formatting as much as possible."
)

MIME_TYPES = {
    '.pdf': 'application/pdf',
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
}

SAFETY_CATEGORIES = (
    'HARM_CATEGORY_HARASSMENT',
    'HARM_CATEGORY_HATE_SPEECH',
    'HARM_CATEGORY_SEXUALLY_EXPLICIT',
    'HARM_CATEGORY_DANGEROUS_CONTENT',
)

# upstream status codes that mean "try again later"
UNAVAILABLE_STATUSES = (429, 500, 502, 503, 504)


class OcrRequest(BaseModel):
    file_id: str
    file_path: str
    file_type: str
    original_name: Optional[str] = None


class OcrResult(BaseModel):
    file_id: str
    status: str
    raw_text: Optional[str] = None
    ocr_error_message: Optional[str] = None
    model_used: Optional[str] = None


class OcrUnavailableError(OcrError):
    """The OCR backend could not be reached or asked us to back off."""


def mime_type_for(path: str, fallback: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    return MIME_TYPES.get(ext) or fallback or 'application/octet-stream'


def _extract_text(body: dict) -> str:
    feedback = body.get('promptFeedback') or {}
    if feedback.get('blockReason'):
        raise OcrError(f"Request blocked: {feedback['blockReason']}")
    candidates = body.get('candidates') or []
    if not candidates:
        raise OcrError("No candidates in OCR response")
    parts = (candidates[0].get('content') or {}).get('parts') or []
    return ''.join(p.get('text', '') for p in parts)


def _generate_content(config: OcrConfig, mime_type: str, data: bytes) -> str:
    url = f"{config.api_base}/models/{config.model_name}:generateContent"
    payload = {
        'contents': [{
            'parts': [
                {'text': OCR_PROMPT},
                {'inline_data': {'mime_type': mime_type, 'data': base64.b64encode(data).decode('ascii')}},
            ],
        }],
        'safetySettings': [
            {'category': c, 'threshold': 'BLOCK_NONE'} for c in SAFETY_CATEGORIES
        ],
    }
    try:
        response = requests.post(
            url,
            params={'key': config.api_key},
            json=payload,
            timeout=config.timeout_seconds,
        )
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
        raise OcrUnavailableError(f"Network error: {e}") from e

    if response.status_code in UNAVAILABLE_STATUSES:
        raise OcrUnavailableError(f"OCR backend returned {response.status_code}")
    if response.status_code >= 400:
        try:
            message = response.json().get('error', {}).get('message')
        except ValueError:
            message = None
        raise OcrError(message or f"OCR backend returned {response.status_code}")
    try:
        body = response.json()
    except ValueError as e:
        raise OcrError("OCR backend returned invalid JSON") from e
    return _extract_text(body)


def process_document(request: OcrRequest, config: Optional[OcrConfig] = None) -> OcrResult:
    config = config or OCR_CONFIG

    if not os.path.exists(request.file_path):
        logger.error(f"File not found for OCR processing: {request.file_path}")
        return OcrResult(file_id=request.file_id, status=STATUS_PROCESSING_ERROR,
                         ocr_error_message='File not found')

    mime_type = mime_type_for(request.file_path, request.file_type)
    try:
        with open(request.file_path, 'rb') as f:
            data = f.read()
        logger.info(f"Sending {request.file_id} ({mime_type}) for OCR processing")
        text = _generate_content(config, mime_type, data)
    except OcrUnavailableError as e:
        logger.warning(f"OCR backend unavailable for file {request.file_id}: {e}")
        return OcrResult(file_id=request.file_id, status=STATUS_API_UNAVAILABLE,
                         ocr_error_message=str(e))
    except (OcrError, OSError, requests.exceptions.RequestException) as e:
        logger.error(f"Error in OCR processing for file {request.file_id}: {e}")
        return OcrResult(file_id=request.file_id, status=STATUS_PROCESSING_ERROR,
                         ocr_error_message=str(e) or 'Unknown error during OCR processing')

    logger.info(f"OCR processing completed for file {request.file_id}")
    return OcrResult(file_id=request.file_id, status=STATUS_SUCCESS,
                     raw_text=text, model_used=config.model_name)


def process_document_with_retry(request: OcrRequest, max_retries: Optional[int] = None,
                                config: Optional[OcrConfig] = None, sleep=time.sleep) -> OcrResult:
    """Retry only API-unavailable results, backing off 1s, 2s, 4s..."""
    config = config or OCR_CONFIG
    max_retries = config.max_retries if max_retries is None else max_retries
    last_result = None

    for attempt in range(max_retries + 1):
        if attempt > 0:
            logger.info(f"Retry attempt {attempt} for file {request.file_id}")
            sleep(2 ** (attempt - 1))

        result = process_document(request, config)
        if result.status != STATUS_API_UNAVAILABLE:
            return result
        last_result = result

    return last_result or OcrResult(file_id=request.file_id, status=STATUS_PROCESSING_ERROR,
                                    ocr_error_message='Maximum retry attempts reached')
