"""
OCR backend (Gemini) settings.

Importing this module without GEMINI_API_KEY raises ConfigurationError.
"""
import logging
import os
from dataclasses import dataclass

from cfipros.errors import ConfigurationError

logger = logging.getLogger(__name__)

GEMINI_MODEL_NAME = 'gemini-pro-vision'
GEMINI_API_BASE = 'https://generativelanguage.googleapis.com/v1beta'


@dataclass(frozen=True)
class OcrConfig:
    api_key: str
    model_name: str = GEMINI_MODEL_NAME
    max_retries: int = 2
    timeout_seconds: int = 30
    api_base: str = GEMINI_API_BASE


def load_ocr_config() -> OcrConfig:
    api_key = os.getenv('GEMINI_API_KEY')
    if not api_key:
        logger.error("GEMINI_API_KEY environment variable is not set")
        raise ConfigurationError(
            "Gemini API key not configured. Please set the GEMINI_API_KEY environment variable.")
    return OcrConfig(
        api_key=api_key,
        model_name=os.getenv('GEMINI_MODEL', GEMINI_MODEL_NAME),
        api_base=os.getenv('GEMINI_API_BASE', GEMINI_API_BASE).rstrip('/'),
    )


OCR_CONFIG = load_ocr_config()
