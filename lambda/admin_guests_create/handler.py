"""
Admin guest registration Lambda handler.

This handler implements POST /admin/guests: registers a guest, reserves a unique
invitation code (generated unless one is supplied) and joins the guest to their
group. Requires an admin bearer token.

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
from rsvp_shared.guests import DEFAULT_MAX_USES, GuestService
from rsvp_shared.logger import create_logger
from rsvp_shared.responses import (
    create_domain_error_response,
    create_error_response,
    create_success_response,
    create_unavailable_response,
)
from rsvp_shared.rsvp_writer import RsvpWriter
from rsvp_shared.validation import parse_json_body, validate_guest_create_request


config = load_config(['TABLE_NAME', 'EVENT_ID', 'ADMIN_JWT_SECRET'], DEFAULTS)

gateway = StorageGateway(config['table_name'], config['storage_timeout_seconds'])
guest_service = GuestService(gateway, RsvpWriter(gateway, max_plus_ones=config['max_plus_ones']))


def handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda handler for admin guest registration.

    Response codes:
        201: Guest registered
        400: Validation error
        401: Missing or invalid admin token
        409: Guest or invitation code already exists
        503: Storage unavailable
    """
    logger = create_logger(event, operation='admin-guests-create')
    logger.log_request_start(
        path=event.get('path', '/admin/guests'),
        method=event.get('httpMethod', 'POST')
    )

    try:
        verify_admin_token(event.get('headers'), config['admin_jwt_secret'])
        request = parse_json_body(event)

        validation_errors = validate_guest_create_request(request, config['max_plus_ones'])
        if validation_errors:
            logger.log_validation_error(errors=validation_errors)
            logger.publish_metrics()
            return create_error_response(
                400,
                'VALIDATION_ERROR',
                'Invalid request data',
                {'errors': validation_errors}
            )

        guest = guest_service.create_guest(
            config['event_id'],
            name=request['name'],
            email=request['email'],
            phone=request.get('phone'),
            plus_ones_allowed=request.get('plusOnesAllowed'),
            invitation_code=request.get('invitationCode'),
            max_uses=request.get('maxUses', DEFAULT_MAX_USES),
            valid_from=request.get('validFrom'),
            valid_until=request.get('validUntil'),
            group_id=request.get('groupId'),
            group_name=request.get('groupName'),
            is_primary_contact=request.get('isPrimaryContact', False),
            table_number=request.get('tableNumber'),
            notes=request.get('notes')
        )

        logger.log_request_complete(status_code=201, invitationCode=guest['invitation_code'])
        logger.publish_metrics()
        return create_success_response(201, guest_summary(guest))

    except DomainError as error:
        logger.log_domain_error(error_code=error.code, error_message=error.message)
        logger.publish_metrics()
        return create_domain_error_response(error)

    except Exception as error:
        logger.log_unexpected_error(error_type=type(error).__name__, error_message=str(error))
        logger.publish_metrics()
        return create_unavailable_response()
