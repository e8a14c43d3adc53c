"""Shared utilities for the Wedding RSVP service."""

from .types import (
    RsvpStatus,
    ResponseStatus,
    Guest,
    RsvpResponse,
    InvitationCode,
    GuestGroup,
    Event,
    InvitationCheck,
    SubmissionResult,
    ChangeEvent,
    ErrorResponse
)

from .errors import (
    DomainError,
    ValidationError,
    NotFoundError,
    ConflictError,
    VersionMismatchError,
    AuthenticationError,
    UnavailableError
)

from .responses import (
    create_success_response,
    create_error_response,
    create_domain_error_response
)

__all__ = [
    # Types
    'RsvpStatus',
    'ResponseStatus',
    'Guest',
    'RsvpResponse',
    'InvitationCode',
    'GuestGroup',
    'Event',
    'InvitationCheck',
    'SubmissionResult',
    'ChangeEvent',
    'ErrorResponse',
    # Errors
    'DomainError',
    'ValidationError',
    'NotFoundError',
    'ConflictError',
    'VersionMismatchError',
    'AuthenticationError',
    'UnavailableError',
    # Responses
    'create_success_response',
    'create_error_response',
    'create_domain_error_response',
]
