# academy/exceptions.py
from typing import Any, Optional


class AcademyError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(AcademyError):
    status_code = 422


class NotFoundError(ValidationError):
    """A referenced id does not resolve."""

    status_code = 404


class ConflictError(AcademyError):
    """A concurrent ledger update could not be serialized within the retry budget."""

    status_code = 409


class PermissionDeniedError(AcademyError):
    status_code = 403


class AuthenticationError(AcademyError):
    status_code = 401
