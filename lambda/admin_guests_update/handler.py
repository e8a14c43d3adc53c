"""
Admin guest edit Lambda handler.

This handler implements PUT /admin/guests. The body names the guest by email and
carries the fields to change, optionally with expectedVersion for optimistic
locking. A status change is recorded as an admin RSVP. Requires an admin bearer
token.

Follows steering rules:
- One handler per file
- Business logic in services, not handlers
- Fail fast on invalid input
- Configuration read once at startup
- Log request lifecycle with correlation ID
"""

from typing import Dict, Any

from rsvp_shared.admin_query import guest_summary
from rsvp_shared.auth import verify_admin_token
from rsvp_shared.config import DEFAULTS, load_config
from rsvp_shared.errors import DomainError
from rsvp_shared.gateway import StorageGateway
from rsvp_shared.groups import GroupCoordinator
from rsvp_shared.guests import GuestService
from rsvp_shared.logger import create_logger
from rsvp_shared.responses import (
    create_domain_error_response,
    create_error_response,
    create_success_response,
    create_unavailable_response,
)
from rsvp_shared.rsvp_writer import RsvpWriter
from rsvp_shared.validation import parse_json_body, validate_guest_update_request


config = load_config(['TABLE_NAME', 'EVENT_ID', 'ADMIN_JWT_SECRET'], DEFAULTS)

gateway = StorageGateway(config['table_name'], config['storage_timeout_seconds'])
guest_service = GuestService(
    gateway,
    RsvpWriter(
        gateway,
        group_coordinator=GroupCoordinator(gateway),
        max_plus_ones=config['max_plus_ones'],
        max_retries=config['rsvp_max_retries']
    )
)


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for admin guest edits.

    Response codes:
        200: Guest after the edit
        400: Validation error
        401: Missing or invalid admin token
        404: Unknown guest
        409: expectedVersion is stale
        503: Storage unavailable
    """
    logger = create_logger(event, operation='admin-guests-update')
    logger.log_request_start(
        path=event.get('path', '/admin/guests'),
        method=event.get('httpMethod', 'PUT')
    )

    try:
        claims = verify_admin_token(event.get('headers'), config['admin_jwt_secret'])
        request = parse_json_body(event)

        validation_errors = validate_guest_update_request(request, config['max_plus_ones'])
        if validation_errors:
            logger.log_validation_error(errors=validation_errors)
            logger.publish_metrics()
            return create_error_response(
                400,
                'VALIDATION_ERROR',
                'Invalid request data',
                {'errors': validation_errors}
            )

        changes = {k: v for k, v in request.items() if k not in ('email', 'expectedVersion')}
        guest = guest_service.update_guest(
            config['event_id'],
            request['email'],
            changes,
            expected_version=request.get('expectedVersion')
        )

        logger.log_info('guest_updated', admin=claims.get('sub'), fields=sorted(changes))
        logger.log_request_complete(status_code=200, version=guest.get('version'))
        logger.publish_metrics()
        return create_success_response(200, guest_summary(guest))

    except DomainError as error:
        logger.log_domain_error(error_code=error.code, error_message=error.message)
        logger.publish_metrics()
        return create_domain_error_response(error)

    except Exception as error:
        logger.log_unexpected_error(error_type=type(error).__name__, error_message=str(error))
        logger.publish_metrics()
        return create_unavailable_response()
