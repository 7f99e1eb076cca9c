# -*- coding: utf-8 -*-
"""
Exception hierarchy shared by services and routes.
"""
from typing import Optional


class CFIProsError(Exception):
    """Base class for application errors."""


class ConfigurationError(CFIProsError):
    """A required environment setting is missing or malformed."""


class AuthBackendError(CFIProsError):
    """The auth backend rejected a call or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    def __repr__(self):
        return f"AuthBackendError(status={self.status}, code={self.code!r}, message={self.message!r})"


class ProfileProvisioningError(CFIProsError):
    """Reading or upserting a profile row failed."""


class OcrError(CFIProsError):
    """The OCR backend returned an unusable response."""
