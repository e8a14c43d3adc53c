"""
Domain error classes for the Wedding RSVP service.

These error classes provide explicit, typed exceptions that map cleanly to API responses.
Expected business conditions (bad input, unknown guest, lost races) are raised as
domain errors; anything else is an unexpected failure and is reported as UNAVAILABLE
at the request boundary.
"""

from typing import Dict, Any


class DomainError(Exception):
    """
    Base class for all domain errors.

    Domain errors are explicit business logic errors that should be mapped
    to appropriate HTTP responses by the handler layer.
    """

    def __init__(self, code: str, message: str, details: Dict[str, Any] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}


class ValidationError(DomainError):
    """
    Raised when input validation fails.

    Maps to HTTP 400 Bad Request.
    Details should contain field-level validation errors.
    """

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__('VALIDATION_ERROR', message, details or {})


class NotFoundError(DomainError):
    """
    Raised when a requested guest, group or invitation does not exist.

    Maps to HTTP 404 Not Found.
    """

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__('NOT_FOUND', message, details or {})


class ConflictError(DomainError):
    """
    Raised when an operation conflicts with existing state.

    Maps to HTTP 409 Conflict.
    Examples: duplicate guest, exhausted invitation code, retry budget spent.
    """

    def __init__(self, message: str, details: Dict[str, Any] = None, code: str = 'CONFLICT'):
        super().__init__(code, message, details or {})


class VersionMismatchError(ConflictError):
    """
    Raised by the storage gateway when an optimistic-locking update loses.

    Callers re-read and retry; it only reaches a client if a caller chooses
    not to retry (admin edits carrying an explicit version).
    """

    def __init__(self, message: str, expected_version: int, actual_version: Any = None):
        super().__init__(
            message,
            {'expectedVersion': expected_version, 'actualVersion': actual_version},
            code='VERSION_MISMATCH'
        )
        self.expected_version = expected_version
        self.actual_version = actual_version


class AuthenticationError(DomainError):
    """
    Raised when the admin bearer credential is missing or invalid.

    Maps to HTTP 401 Unauthorized.
    """

    def __init__(self, message: str):
        super().__init__('AUTHENTICATION_ERROR', message, {})


class UnavailableError(DomainError):
    """
    Raised when the storage layer times out, throttles or cannot be reached.

    Maps to HTTP 503 Service Unavailable; safe for the caller to retry with backoff.
    ``outcome_unknown`` is set for writes whose result could not be observed.
    """

    def __init__(self, message: str, outcome_unknown: bool = False):
        super().__init__('UNAVAILABLE', message, {})
        self.outcome_unknown = outcome_unknown
