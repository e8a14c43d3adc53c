"""
RSVP status Lambda handler.

This handler implements GET /rsvp/{code}/status: a guest's current response
and response history, looked up by invitation code. Read-only; works for codes
that are exhausted or expired.

Follows steering rules:
- One handler per file
- Business logic in services, not handlers
- Configuration read once at startup
- Log request lifecycle with correlation ID
"""

from typing import Dict, Any

from rsvp_shared.config import DEFAULTS, load_config
from rsvp_shared.errors import DomainError, ValidationError
from rsvp_shared.gateway import StorageGateway
from rsvp_shared.guests import GuestService
from rsvp_shared.logger import create_logger
from rsvp_shared.responses import (
    create_domain_error_response,
    create_success_response,
    create_unavailable_response,
)
from rsvp_shared.rsvp_writer import RsvpWriter


config = load_config(['TABLE_NAME'], DEFAULTS)

gateway = StorageGateway(config['table_name'], config['storage_timeout_seconds'])
guest_service = GuestService(gateway, RsvpWriter(gateway, max_plus_ones=config['max_plus_ones']))


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for RSVP status lookup.

    Response codes:
        200: Current status and history
        400: Missing or malformed code
        404: No guest holds the code
        503: Storage unavailable
    """
    logger = create_logger(event, operation='rsvp-status-get')
    logger.log_request_start(
        path=event.get('path', '/rsvp/{code}/status'),
        method=event.get('httpMethod', 'GET')
    )

    try:
        code = (event.get('pathParameters') or {}).get('code')
        if not code:
            raise ValidationError('Invitation code is required', {'code': 'Field is required'})

        status = guest_service.status_by_code(code)

        logger.log_request_complete(status_code=200, rsvpStatus=status['status']['rsvpStatus'])
        logger.publish_metrics()
        return create_success_response(200, status)

    except DomainError as error:
        logger.log_domain_error(error_code=error.code, error_message=error.message)
        logger.publish_metrics()
        return create_domain_error_response(error)

    except Exception as error:
        logger.log_unexpected_error(error_type=type(error).__name__, error_message=str(error))
        logger.publish_metrics()
        return create_unavailable_response()
