"""
Response helper functions for Lambda handlers.

These functions create consistent HTTP responses for every RSVP operation. Error
bodies always have the shape {"code", "message", "details"}.
"""

import json
import os
from decimal import Decimal
from typing import Dict, Any

from rsvp_shared.errors import DomainError


# Domain error code -> HTTP status
STATUS_CODE_MAP = {
    'VALIDATION_ERROR': 400,
    'AUTHENTICATION_ERROR': 401,
    'NOT_FOUND': 404,
    'CONFLICT': 409,
    'VERSION_MISMATCH': 409,
    'INVITATION_UNUSABLE': 409,
    'CONDITION_FAILED': 409,
    'UNAVAILABLE': 503,
}

UNAVAILABLE_MESSAGE = 'The service is temporarily unavailable. Please try again shortly.'

# Read once per cold start
CORS_ORIGIN = os.environ.get('CORS_ORIGIN', '*')


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f'Object of type {type(value).__name__} is not JSON serializable')


def _headers() -> Dict[str, str]:
    return {
        'Content-Type': 'application/json',
        'Access-Control-Allow-Origin': CORS_ORIGIN,
    }


def create_success_response(status_code: int, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Create a successful HTTP response.

    Args:
        status_code: HTTP status code (200, 201, etc.)
        data: Response payload to be JSON serialized

    Returns:
        Lambda proxy integration response object
    """
    return {
        'statusCode': status_code,
        'headers': _headers(),
        'body': json.dumps(data, default=_json_default)
    }


def create_error_response(
    status_code: int,
    code: str,
    message: str,
    details: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Create an error HTTP response with consistent structure.

    Args:
        status_code: HTTP status code (400, 404, 409, 503, etc.)
        code: Error code string (VALIDATION_ERROR, NOT_FOUND, CONFLICT, etc.)
        message: Human-readable, actionable message
        details: Additional error context (field errors, conflict info, etc.)

    Returns:
        Lambda proxy integration response object
    """
    return {
        'statusCode': status_code,
        'headers': _headers(),
        'body': json.dumps({
            'code': code,
            'message': message,
            'details': details
        }, default=_json_default)
    }


def create_domain_error_response(error: DomainError) -> Dict[str, Any]:
    """
    Map a domain error to its HTTP response (unknown codes become 503).

    Storage failures carry internal detail in their message; the client gets the
    generic unavailable response and the detail stays in the log.
    """
    if error.code == 'UNAVAILABLE':
        return create_unavailable_response()
    status_code = STATUS_CODE_MAP.get(error.code, 503)
    return create_error_response(status_code, error.code, error.message, error.details)


def create_unavailable_response() -> Dict[str, Any]:
    """Generic response for unexpected failures; never carries internal detail."""
    return create_error_response(503, 'UNAVAILABLE', UNAVAILABLE_MESSAGE, {})
